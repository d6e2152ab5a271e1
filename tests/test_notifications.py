"""Tests for notification read state and the deadline sweep."""
from datetime import date, timedelta

import pytest

from teamtasks.errors import NotFound
from teamtasks.models.domain import Notification
from teamtasks.models.enums import NotificationType, Role
from teamtasks.services.lifecycle import TaskLifecycle
from teamtasks.services.notifications import NotificationEmitter


@pytest.fixture
def emitter(db_session):
    return NotificationEmitter(db_session)


@pytest.fixture
def notification(db_session, emitter, member):
    created = emitter.emit(member.id, NotificationType.TASK_CREATED, "Hello")
    db_session.commit()
    return created


class TestMarkRead:
    def test_marks_read(self, emitter, notification, member):
        assert emitter.mark_read(member.id, notification.id).read is True

    def test_idempotent(self, emitter, notification, member):
        emitter.mark_read(member.id, notification.id)
        again = emitter.mark_read(member.id, notification.id)
        assert again.read is True
        assert again.message == "Hello"

    def test_other_users_notification_is_not_found(self, db_session, emitter, notification, manager):
        with pytest.raises(NotFound):
            emitter.mark_read(manager.id, notification.id)
        db_session.expire_all()
        assert db_session.get(Notification, notification.id).read is False

    def test_list_is_scoped_to_recipient(self, db_session, emitter, notification, member, manager):
        emitter.emit(manager.id, NotificationType.TASK_UPDATED, "For the manager")
        db_session.commit()
        assert [n.id for n in emitter.list_for(member.id)] == [notification.id]


class TestEmitIsTransactional:
    def test_emit_without_commit_is_discarded(self, db_session, emitter, member):
        emitter.emit(member.id, NotificationType.TASK_CREATED, "Never written")
        db_session.rollback()
        assert db_session.query(Notification).count() == 0


class TestDeadlineSweep:
    @pytest.fixture
    def lifecycle(self, db_session, storage):
        return TaskLifecycle(db_session, storage=storage)

    def test_warns_assignee_of_tasks_due_soon(self, lifecycle, emitter, manager, member, task_payload):
        tomorrow = date.today() + timedelta(days=1)
        lifecycle.create_task(manager.id, Role.MANAGER, task_payload(title="Due tomorrow", deadline=tomorrow.isoformat()))
        lifecycle.create_task(manager.id, Role.MANAGER, task_payload(title="Due next week"))

        [warning] = emitter.sweep_deadlines(within_days=1)

        assert warning.user_id == member.id
        assert warning.type is NotificationType.DEADLINE_APPROACHING
        assert warning.message == f'Task "Due tomorrow" is due on {tomorrow.isoformat()}'

    def test_each_warning_is_sent_once(self, lifecycle, emitter, manager, task_payload):
        lifecycle.create_task(manager.id, Role.MANAGER, task_payload(deadline=date.today().isoformat()))
        assert len(emitter.sweep_deadlines()) == 1
        assert emitter.sweep_deadlines() == []

    def test_completed_tasks_are_skipped(self, lifecycle, emitter, manager, task_payload):
        task = lifecycle.create_task(manager.id, Role.MANAGER, task_payload(deadline=date.today().isoformat()))
        lifecycle.complete_task(manager.id, Role.MANAGER, task.id)
        assert emitter.sweep_deadlines() == []

"""
Tests for the task lifecycle: permissions, notifications, the completion
flow and delete cascades.
"""
from datetime import date, timedelta

import pytest

from teamtasks.errors import AccessDenied, NotFound, ValidationFailed
from teamtasks.models.audit import AuditEvent, AuditEventType
from teamtasks.models.domain import Comment, Notification, Task
from teamtasks.models.enums import NotificationType, Role, TaskPriority, TaskStatus
from teamtasks.services.attachments import Attachment
from teamtasks.services.lifecycle import TaskLifecycle


@pytest.fixture
def lifecycle(db_session, storage):
    return TaskLifecycle(db_session, storage=storage)


@pytest.fixture
def task(lifecycle, manager, task_payload):
    return lifecycle.create_task(manager.id, Role.MANAGER, task_payload())


def notifications_for(db_session, user_id):
    return db_session.query(Notification).filter(Notification.user_id == user_id).all()


class TestCreateTask:
    def test_manager_creates_and_assignee_is_notified(self, db_session, task, manager, member):
        assert task.created_by == manager.id
        assert task.status is TaskStatus.PENDING
        assert task.priority is TaskPriority.HIGH

        [notification] = notifications_for(db_session, member.id)
        assert notification.type is NotificationType.TASK_CREATED
        assert notification.message == 'New task "Prepare quarterly report" assigned to Meg Member'
        assert notification.read is False

    def test_member_cannot_create(self, db_session, lifecycle, member, task_payload):
        with pytest.raises(AccessDenied):
            lifecycle.create_task(member.id, Role.MEMBER, task_payload())
        assert db_session.query(Task).count() == 0
        assert db_session.query(Notification).count() == 0

    def test_unresolved_role_cannot_create(self, db_session, lifecycle, member, task_payload):
        with pytest.raises(AccessDenied):
            lifecycle.create_task(member.id, None, task_payload())

    def test_denial_is_audited(self, db_session, lifecycle, member, task_payload):
        with pytest.raises(AccessDenied):
            lifecycle.create_task(member.id, Role.MEMBER, task_payload())
        audit = db_session.query(AuditEvent).one()
        assert audit.event_type == AuditEventType.ACCESS_DENIED
        assert audit.user_id == member.id

    def test_past_deadline_rejected(self, lifecycle, manager, task_payload):
        yesterday = (date.today() - timedelta(days=1)).isoformat()
        with pytest.raises(ValidationFailed) as exc_info:
            lifecycle.create_task(manager.id, Role.MANAGER, task_payload(deadline=yesterday))
        assert "deadline" in exc_info.value.field_errors

    def test_today_is_a_valid_deadline(self, lifecycle, manager, task_payload):
        created = lifecycle.create_task(manager.id, Role.MANAGER, task_payload(deadline=date.today().isoformat()))
        assert created.deadline == date.today()

    @pytest.mark.parametrize("title", ["ab", "x" * 201, "   "])
    def test_title_length(self, lifecycle, manager, task_payload, title):
        with pytest.raises(ValidationFailed) as exc_info:
            lifecycle.create_task(manager.id, Role.MANAGER, task_payload(title=title))
        assert "title" in exc_info.value.field_errors

    def test_unknown_assignee(self, lifecycle, manager, task_payload):
        with pytest.raises(ValidationFailed) as exc_info:
            lifecycle.create_task(manager.id, Role.MANAGER, task_payload(assigned_to="nobody"))
        assert "assigned_to" in exc_info.value.field_errors


class TestUpdateTask:
    def test_creator_manager_edits(self, lifecycle, task, manager):
        updated = lifecycle.update_task(manager.id, Role.MANAGER, task.id, {"title": "Revised report"})
        assert updated.title == "Revised report"
        assert updated.description == "Numbers for Q3"

    def test_other_manager_is_denied_and_task_unchanged(self, db_session, lifecycle, task, other_manager):
        with pytest.raises(AccessDenied):
            lifecycle.update_task(other_manager.id, Role.MANAGER, task.id, {"title": "Hijacked"})
        db_session.expire_all()
        assert db_session.get(Task, task.id).title == "Prepare quarterly report"

    def test_admin_edits_any_task(self, lifecycle, task, admin):
        updated = lifecycle.update_task(admin.id, Role.ADMIN, task.id, {"priority": "low"})
        assert updated.priority is TaskPriority.LOW

    def test_member_cannot_edit_even_own_assignment(self, lifecycle, task, member):
        with pytest.raises(AccessDenied):
            lifecycle.update_task(member.id, Role.MEMBER, task.id, {"status": "in-progress"})

    def test_status_change_notifies_creator(self, db_session, lifecycle, task, manager, admin):
        lifecycle.update_task(admin.id, Role.ADMIN, task.id, {"status": "in-progress"})
        [notification] = notifications_for(db_session, manager.id)
        assert notification.type is NotificationType.TASK_UPDATED

    def test_status_completed_sends_completed(self, db_session, lifecycle, task, manager):
        lifecycle.update_task(manager.id, Role.MANAGER, task.id, {"status": "completed"})
        [notification] = notifications_for(db_session, manager.id)
        assert notification.type is NotificationType.TASK_COMPLETED

    def test_reassignment_notifies_creator(self, db_session, lifecycle, task, manager, make_user):
        newcomer = make_user("Ned Newcomer")
        lifecycle.update_task(manager.id, Role.MANAGER, task.id, {"assigned_to": newcomer.id})

        [notification] = notifications_for(db_session, manager.id)
        assert notification.type is NotificationType.TASK_UPDATED
        assert notifications_for(db_session, newcomer.id) == []

    def test_unchanged_status_is_silent(self, db_session, lifecycle, task, manager):
        lifecycle.update_task(manager.id, Role.MANAGER, task.id, {"status": "pending", "title": "Same status"})
        assert notifications_for(db_session, manager.id) == []

    def test_null_for_required_field_rejected(self, lifecycle, task, manager):
        with pytest.raises(ValidationFailed):
            lifecycle.update_task(manager.id, Role.MANAGER, task.id, {"title": None})

    def test_missing_task(self, lifecycle, manager):
        with pytest.raises(NotFound):
            lifecycle.update_task(manager.id, Role.MANAGER, "missing", {"title": "Whatever"})


class TestCompleteTask:
    def test_member_completes_with_attachment(self, db_session, lifecycle, task, member, manager, pdf, storage):
        done = lifecycle.complete_task(member.id, Role.MEMBER, task.id, "All numbers in", pdf)

        assert done.status is TaskStatus.COMPLETED
        assert done.completion_note == "All numbers in"
        [path] = storage.uploads
        assert path.startswith(f"{task.id}/") and path.endswith(".pdf")
        assert done.attachment_url == f"http://files.test/{path}"
        assert storage.exists(path)

        [notification] = notifications_for(db_session, manager.id)
        assert notification.type is NotificationType.TASK_COMPLETED
        assert notification.message == 'Task "Prepare quarterly report" has been completed'

    def test_member_without_attachment_rejected_before_upload(self, db_session, lifecycle, task, member, storage):
        with pytest.raises(ValidationFailed) as exc_info:
            lifecycle.complete_task(member.id, Role.MEMBER, task.id, "Done")
        assert "attachment" in exc_info.value.field_errors
        assert storage.uploads == []
        db_session.expire_all()
        assert db_session.get(Task, task.id).status is TaskStatus.PENDING

    def test_manager_completes_without_attachment(self, lifecycle, task, manager, storage):
        done = lifecycle.complete_task(manager.id, Role.MANAGER, task.id)
        assert done.status is TaskStatus.COMPLETED
        assert done.attachment_url is None
        assert storage.uploads == []

    def test_recompleting_without_file_keeps_attachment(self, lifecycle, task, member, manager, pdf, storage):
        first = lifecycle.complete_task(member.id, Role.MEMBER, task.id, "All numbers in", pdf)
        url = first.attachment_url

        lifecycle.update_task(manager.id, Role.MANAGER, task.id, {"status": "in-progress"})
        again = lifecycle.complete_task(manager.id, Role.MANAGER, task.id, "Signed off")

        assert again.status is TaskStatus.COMPLETED
        assert again.attachment_url == url
        assert len(storage.uploads) == 1

    def test_member_not_assigned_is_denied(self, lifecycle, task, make_user, pdf, storage):
        bystander = make_user("Bea Bystander")
        with pytest.raises(AccessDenied):
            lifecycle.complete_task(bystander.id, Role.MEMBER, task.id, None, pdf)
        assert storage.uploads == []

    def test_oversized_file_rejected(self, lifecycle, task, member, storage):
        big = Attachment("big.pdf", "application/pdf", b"0" * (11 * 1024 * 1024))
        with pytest.raises(ValidationFailed) as exc_info:
            lifecycle.complete_task(member.id, Role.MEMBER, task.id, None, big)
        assert exc_info.value.message == "File size must be less than 10MB"
        assert storage.uploads == []

    def test_executable_rejected(self, lifecycle, task, member, storage):
        exe = Attachment("tool.exe", "application/x-msdownload", b"MZ")
        with pytest.raises(ValidationFailed) as exc_info:
            lifecycle.complete_task(member.id, Role.MEMBER, task.id, None, exe)
        assert exc_info.value.message == "Only PDF, images, and Word documents are allowed"
        assert storage.uploads == []

    def test_nine_megabyte_pdf_accepted(self, lifecycle, task, member, storage):
        pdf = Attachment("scan.pdf", "application/pdf", b"0" * (9 * 1024 * 1024))
        done = lifecycle.complete_task(member.id, Role.MEMBER, task.id, None, pdf)
        assert done.status is TaskStatus.COMPLETED
        assert len(storage.uploads) == 1

    def test_completion_is_audited(self, db_session, lifecycle, task, member, pdf):
        lifecycle.complete_task(member.id, Role.MEMBER, task.id, None, pdf)
        audit = db_session.query(AuditEvent).filter(AuditEvent.event_type == AuditEventType.TASK_COMPLETED).one()
        assert audit.entity_id == task.id
        assert audit.payload_json == {"attachment": True}


class TestDeleteTask:
    def test_cascades_to_own_comments_only(self, db_session, lifecycle, task, manager, member, task_payload):
        other = lifecycle.create_task(manager.id, Role.MANAGER, task_payload(title="Another task"))
        lifecycle.add_comment(member.id, task.id, {"content": "On it"})
        lifecycle.add_comment(manager.id, task.id, {"content": "Thanks"})
        kept = lifecycle.add_comment(member.id, other.id, {"content": "Later"})
        before = db_session.query(Notification).count()

        lifecycle.delete_task(manager.id, Role.MANAGER, task.id)

        assert db_session.get(Task, task.id) is None
        assert [c.id for c in db_session.query(Comment).all()] == [kept.id]
        assert db_session.query(Notification).count() == before

    def test_other_manager_cannot_delete(self, lifecycle, task, other_manager):
        with pytest.raises(AccessDenied):
            lifecycle.delete_task(other_manager.id, Role.MANAGER, task.id)
        assert lifecycle.get_task(task.id)

    def test_admin_deletes_any_task(self, lifecycle, task, admin):
        lifecycle.delete_task(admin.id, Role.ADMIN, task.id)
        with pytest.raises(NotFound):
            lifecycle.get_task(task.id)


class TestComments:
    def test_anyone_can_comment_in_order(self, lifecycle, task, member, manager):
        lifecycle.add_comment(member.id, task.id, {"content": "First"})
        lifecycle.add_comment(manager.id, task.id, {"content": "Second"})
        assert [c.content for c in lifecycle.list_comments(task.id)] == ["First", "Second"]

    @pytest.mark.parametrize("content", ["", "   ", "x" * 1001])
    def test_content_bounds(self, lifecycle, task, member, content):
        with pytest.raises(ValidationFailed):
            lifecycle.add_comment(member.id, task.id, {"content": content})

    def test_comment_on_missing_task(self, lifecycle, member):
        with pytest.raises(NotFound):
            lifecycle.add_comment(member.id, "missing", {"content": "Hello"})

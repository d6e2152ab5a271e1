"""Tests that row changes reach subscribers only after a commit."""
from teamtasks.models.domain import Comment
from teamtasks.models.enums import NotificationType, Role
from teamtasks.realtime import ChangeEvent, ChangeFeed
from teamtasks.services.lifecycle import TaskLifecycle
from teamtasks.services.notifications import NotificationEmitter


class TestChangeFeed:
    def test_publish_filters_by_table_and_predicate(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("tasks", seen.append)
        feed.subscribe("notifications", seen.append, predicate=lambda row: row.get("user_id") == "me")

        feed.publish(ChangeEvent("tasks", "insert", {"id": "t1"}))
        feed.publish(ChangeEvent("notifications", "insert", {"user_id": "someone"}))
        feed.publish(ChangeEvent("notifications", "insert", {"user_id": "me"}))

        assert [(c.table, c.row) for c in seen] == [("tasks", {"id": "t1"}), ("notifications", {"user_id": "me"})]

    def test_unsubscribe_stops_delivery(self):
        feed = ChangeFeed()
        seen = []
        subscription = feed.subscribe("tasks", seen.append)
        feed.unsubscribe(subscription)
        feed.unsubscribe(subscription)

        feed.publish(ChangeEvent("tasks", "insert"))
        assert seen == []
        assert feed.subscriber_count() == 0

    def test_failing_subscriber_does_not_block_others(self):
        feed = ChangeFeed()
        seen = []

        def broken(change):
            raise RuntimeError("boom")

        feed.subscribe("tasks", broken)
        feed.subscribe("tasks", seen.append)
        feed.publish(ChangeEvent("tasks", "update"))
        assert len(seen) == 1


class TestSessionIntegration:
    def test_commit_publishes_each_written_table(self, db_session, feed, manager, task_payload, storage):
        seen = []
        for table in ("tasks", "notifications", "comments"):
            feed.subscribe(table, seen.append)

        task = TaskLifecycle(db_session, storage=storage).create_task(manager.id, Role.MANAGER, task_payload())

        assert {(c.table, c.op) for c in seen} == {("tasks", "insert"), ("notifications", "insert")}
        assert [c.row["id"] for c in seen if c.table == "tasks"] == [task.id]

    def test_rollback_publishes_nothing(self, db_session, feed, member):
        seen = []
        feed.subscribe("notifications", seen.append)

        NotificationEmitter(db_session).emit(member.id, NotificationType.TASK_CREATED, "Draft")
        db_session.flush()
        db_session.rollback()

        assert seen == []

    def test_delete_cascade_is_announced(self, db_session, feed, manager, member, task_payload, storage):
        lifecycle = TaskLifecycle(db_session, storage=storage)
        task = lifecycle.create_task(manager.id, Role.MANAGER, task_payload())
        lifecycle.add_comment(member.id, task.id, {"content": "On it"})
        seen = []
        feed.subscribe("comments", seen.append)

        lifecycle.delete_task(manager.id, Role.MANAGER, task.id)

        assert [c.op for c in seen] == ["delete"]
        assert db_session.query(Comment).count() == 0

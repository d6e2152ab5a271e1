from teamtasks.models.enums import Role
from teamtasks.services import reports


def task(id, status="pending", priority="medium", assigned_to="u1", title="Task", deadline="2030-01-15",
         attachment_url=None):
    return {
        "id": id, "status": status, "priority": priority, "assigned_to": assigned_to,
        "title": title, "deadline": deadline, "attachment_url": attachment_url,
    }


PROFILES = [
    {"id": "u1", "name": "Meg Member", "email": "meg@co.com"},
    {"id": "u2", "name": "Max Manager", "email": "max@co.com"},
]


class TestTeamProgress:
    def test_counts_and_rate(self):
        tasks = [task("1"), task("2", "in-progress"), task("3", "completed"), task("4", "completed")]
        assert reports.team_progress(tasks) == {
            "total": 4, "pending": 1, "in_progress": 1, "completed": 2, "completion_rate": 50,
        }

    def test_rate_rounds_half_up(self):
        tasks = [task(str(i), "completed") for i in range(5)] + [task(str(i)) for i in range(5, 8)]
        assert reports.team_progress(tasks)["completion_rate"] == 63

    def test_empty(self):
        assert reports.team_progress([])["completion_rate"] == 0


class TestRoster:
    def test_counts_assigned_tasks_and_defaults_role(self):
        roster = reports.team_roster(PROFILES, {"u2": Role.MANAGER}, [task("1"), task("2")])
        by_id = {r["id"]: r for r in roster}
        assert by_id["u1"]["task_count"] == 2
        assert by_id["u1"]["role"] is Role.MEMBER
        assert by_id["u2"]["role"] is Role.MANAGER
        assert by_id["u2"]["task_count"] == 0


class TestAttachments:
    def test_only_completed_with_url(self):
        tasks = [
            task("1", "completed", attachment_url="http://files/1.pdf"),
            task("2", "completed"),
            task("3", "pending", attachment_url="http://files/3.pdf"),
        ]
        assert [t["id"] for t in reports.tasks_with_attachments(tasks)] == ["1"]


class TestFilterTasks:
    TASKS = [
        task("1", title="Quarterly report", priority="high"),
        task("2", title="Fix printer", assigned_to="u2", status="completed"),
        task("3", title="Plan offsite", deadline="2030-03-01"),
    ]

    def _ids(self, **kwargs):
        return [t["id"] for t in reports.filter_tasks(self.TASKS, PROFILES, **kwargs)]

    def test_search_title_assignee_and_deadline(self):
        assert self._ids(search="REPORT") == ["1"]
        assert self._ids(search="max") == ["2"]
        assert self._ids(search="2030-03") == ["3"]

    def test_status_and_priority(self):
        assert self._ids(status="completed") == ["2"]
        assert self._ids(priority="high") == ["1"]
        assert self._ids(status="all", priority="all") == ["1", "2", "3"]

"""Read-only views: team roster, progress aggregate, attachments overview, task filtering."""
from collections import Counter
from typing import Iterable, List, Optional

from teamtasks.models.enums import Role, TaskStatus


def _get(item, name):
    # Works for ORM rows and for plain dicts from the API
    return item[name] if isinstance(item, dict) else getattr(item, name)


def team_progress(tasks: Iterable) -> dict:
    """Totals per status and the completion rate as a whole percentage."""
    counts = Counter(TaskStatus(_get(t, "status")) for t in tasks)
    total = sum(counts.values())
    completed = counts[TaskStatus.COMPLETED]
    return {
        "total": total,
        "pending": counts[TaskStatus.PENDING],
        "in_progress": counts[TaskStatus.IN_PROGRESS],
        "completed": completed,
        # Rounds half up: 5 of 8 is 63
        "completion_rate": int(completed * 100 / total + 0.5) if total else 0,
    }


def team_roster(profiles: Iterable, roles: dict, tasks: Iterable) -> List[dict]:
    """
    One entry per profile with its role and how many tasks it is assigned.

    A profile without a role record shows up as a member.
    """
    assigned = Counter(_get(t, "assigned_to") for t in tasks)
    roster = []
    for profile in profiles:
        profile_id = _get(profile, "id")
        roster.append({
            "id": profile_id,
            "name": _get(profile, "name"),
            "email": _get(profile, "email"),
            "role": roles.get(profile_id, Role.MEMBER),
            "task_count": assigned[profile_id],
        })
    return roster


def tasks_with_attachments(tasks: Iterable) -> list:
    return [
        t for t in tasks
        if _get(t, "attachment_url") and TaskStatus(_get(t, "status")) is TaskStatus.COMPLETED
    ]


def filter_tasks(
    tasks: Iterable,
    profiles: Iterable = (),
    search: str = "",
    status: Optional[str] = None,
    priority: Optional[str] = None,
) -> list:
    """
    Match ``search`` against title, assignee name or the deadline text, then
    narrow by status and priority (None or "all" means no filter).
    """
    names = {_get(p, "id"): _get(p, "name") for p in profiles}
    needle = search.strip().lower()
    matched = []
    for task in tasks:
        if needle:
            assignee = (names.get(_get(task, "assigned_to")) or "").lower()
            deadline = str(_get(task, "deadline"))
            if needle not in _get(task, "title").lower() and needle not in assignee and needle not in deadline:
                continue
        if status not in (None, "all") and str(_value(_get(task, "status"))) != status:
            continue
        if priority not in (None, "all") and str(_value(_get(task, "priority"))) != priority:
            continue
        matched.append(task)
    return matched


def _value(member):
    return getattr(member, "value", member)

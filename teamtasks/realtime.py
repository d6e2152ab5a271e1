"""
Change-event feed.

Rows written through the ORM are recorded while the session flushes and
announced to subscribers once the transaction commits. A rolled back
transaction announces nothing. Subscribers receive a ``ChangeEvent`` but
should treat it as a bare "something changed" signal: delivery is
at-least-once and no diff is guaranteed.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session, object_session

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_changes"
_installed = False


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: str  # "insert", "update" or "delete"
    row: Dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class Subscription:
    table: str
    on_change: Callable[[ChangeEvent], None]
    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table:
            return False
        return self.predicate is None or bool(self.predicate(change.row))


class ChangeFeed:
    """Thread-safe fan-out of committed row changes, keyed by table."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(
        self,
        table: str,
        on_change: Callable[[ChangeEvent], None],
        predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
    ) -> Subscription:
        subscription = Subscription(table=table, on_change=on_change, predicate=predicate)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions if table is None or s.table == table)

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(change)]
        for subscription in targets:
            try:
                subscription.on_change(change)
            except Exception:
                # One broken subscriber must not starve the others
                logger.exception("Change subscriber for %s failed", change.table)


def _row_snapshot(mapper, target) -> Dict[str, Any]:
    # Read from __dict__ so a deleted row never triggers a lazy load
    return {attr.key: target.__dict__.get(attr.key) for attr in mapper.column_attrs}


def _record(op: str):
    def listener(mapper, connection, target):
        session = object_session(target)
        if session is None or "change_feed" not in session.info:
            return
        pending = session.info.setdefault(_PENDING_KEY, [])
        pending.append(ChangeEvent(table=mapper.local_table.name, op=op, row=_row_snapshot(mapper, target)))
    return listener


def _publish_pending(session):
    pending = session.info.pop(_PENDING_KEY, [])
    feed = session.info.get("change_feed")
    if feed is None:
        return
    for change in pending:
        feed.publish(change)


def _discard_pending(session, *args):
    session.info.pop(_PENDING_KEY, None)


def install_change_tracking(base) -> None:
    """Attach flush/commit listeners to every model derived from ``base``."""
    global _installed
    if _installed:
        return
    event.listen(base, "after_insert", _record("insert"), propagate=True)
    event.listen(base, "after_update", _record("update"), propagate=True)
    event.listen(base, "after_delete", _record("delete"), propagate=True)
    event.listen(Session, "after_commit", _publish_pending)
    event.listen(Session, "after_rollback", _discard_pending)
    _installed = True

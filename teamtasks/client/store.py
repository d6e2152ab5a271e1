"""
Shared mutable state store: the client's cached view of profiles, tasks,
comments and the principal's own notifications.

Consistency model
-----------------
Any change signal on tasks, comments or our notifications triggers a full
``refresh()``. There is no incremental merge, so there is no merge logic
to get wrong; the price is redundant reads.

``mutate()`` never edits the snapshot. A mutation shows up locally only
after the refresh its change signal triggers, i.e. the store is
eventually consistent, within a session and across sessions.

The four collections live in one immutable ``Snapshot`` that is replaced
whole, so readers never see a mix of two refreshes. When refreshes
overlap, the one that started last wins; an older result landing late is
dropped.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from teamtasks.errors import handle_error
from teamtasks.realtime import ChangeEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    profiles: Tuple[dict, ...] = ()
    tasks: Tuple[dict, ...] = ()
    comments: Tuple[dict, ...] = ()
    notifications: Tuple[dict, ...] = ()

    def task(self, task_id: str) -> Optional[dict]:
        return next((t for t in self.tasks if t["id"] == task_id), None)

    def comments_for(self, task_id: str) -> Tuple[dict, ...]:
        return tuple(c for c in self.comments if c["task_id"] == task_id)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n["read"])


EMPTY = Snapshot()


class SharedStateStore:
    """
    Owns the snapshot for one signed-in principal.

    Lifecycle: ``start()`` after sign-in, ``close()`` before sign-out. After
    ``close()`` no change signal can reach ``refresh()`` again.
    """

    def __init__(self, api, changes, principal_id: str):
        self.api = api
        self.changes = changes
        self.principal_id = principal_id
        self.refresh_count = 0
        self._snapshot = EMPTY
        self._subscriptions = []
        self._signals: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False
        # Refresh ordering: numbers handed out at start, highest applied so far
        self._refresh_seq = 0
        self._applied_seq = 0
        # Signals posted from other threads that have not reached the queue yet
        self._in_transit = 0
        self._in_transit_lock = threading.Lock()

        self._mutations: Dict[Tuple[str, str], Callable[..., Any]] = {
            ("task", "create"): lambda p: api.create_task(p),
            ("task", "update"): lambda p: api.update_task(p["id"], p["changes"]),
            ("task", "complete"): lambda p: api.complete_task(
                p["id"], p.get("completion_note"), p.get("attachment")
            ),
            ("task", "delete"): lambda p: api.delete_task(p["id"]),
            ("comment", "create"): lambda p: api.add_comment(p["task_id"], p["content"]),
            ("notification", "mark_read"): lambda p: api.mark_notification_read(p["id"]),
        }

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> Snapshot:
        """Subscribe to the three change streams, then load the first snapshot."""
        if self._closed:
            raise RuntimeError("Store has been closed")
        self._loop = asyncio.get_running_loop()
        self._signals = asyncio.Queue()
        self._subscriptions = [
            self.changes.subscribe("tasks", self._on_change),
            self.changes.subscribe("comments", self._on_change),
            self.changes.subscribe(
                "notifications",
                self._on_change,
                predicate=lambda row: row.get("user_id") == self.principal_id,
            ),
        ]
        self._consumer = asyncio.create_task(self._consume())
        return await self.refresh()

    def _on_change(self, change: ChangeEvent) -> None:
        # May run on whichever thread committed the change
        if self._closed or self._loop is None:
            return
        with self._in_transit_lock:
            self._in_transit += 1
        try:
            self._loop.call_soon_threadsafe(self._enqueue_signal)
        except RuntimeError:
            with self._in_transit_lock:
                self._in_transit -= 1
            logger.debug("Dropped %s change: event loop is closed", change.table)

    def _enqueue_signal(self) -> None:
        with self._in_transit_lock:
            self._in_transit -= 1
        if not self._closed:
            self._signals.put_nowait(None)

    async def _consume(self) -> None:
        while True:
            await self._signals.get()
            handled = 1
            # Signals that piled up while we waited are covered by the same refresh
            while not self._signals.empty():
                self._signals.get_nowait()
                handled += 1
            try:
                await self.refresh()
            except Exception as e:
                # A failed refresh must not stop later signals from being served
                handle_error(e, "Refresh after change")
            finally:
                for _ in range(handled):
                    self._signals.task_done()

    async def refresh(self) -> Snapshot:
        """
        Reload all four collections and swap them in as one snapshot.

        If a refresh that started later has already been applied, this
        one's result is stale and is dropped.
        """
        if self._closed:
            return self._snapshot
        self._refresh_seq += 1
        seq = self._refresh_seq
        profiles, tasks, comments, notifications = await asyncio.gather(
            self.api.list_profiles(),
            self.api.list_tasks(),
            self.api.list_comments(),
            self.api.list_notifications(),
        )
        if self._closed:
            # Closed while the reads were in flight: don't resurrect released state
            return self._snapshot
        if seq < self._applied_seq:
            logger.debug("Dropped refresh %d: refresh %d already applied", seq, self._applied_seq)
            return self._snapshot
        self._applied_seq = seq
        self._snapshot = Snapshot(
            profiles=tuple(profiles),
            tasks=tuple(tasks),
            comments=tuple(comments),
            notifications=tuple(notifications),
        )
        self.refresh_count += 1
        return self._snapshot

    async def mutate(self, entity: str, op: str, payload: Optional[dict] = None):
        """
        Send a mutation to the backend and return its result.

        The snapshot is left alone; it catches up on the next refresh.
        """
        if self._closed:
            raise RuntimeError("Store has been closed")
        handler = self._mutations.get((entity, op))
        if handler is None:
            raise ValueError(f"Unknown mutation {entity}.{op}")
        return await handler(payload or {})

    async def settled(self) -> None:
        """
        Wait until every change signal received so far has been refreshed.

        This includes signals published on other threads whose hand-off to
        the event loop is still pending.
        """
        while self._signals is not None and not self._closed:
            await self._signals.join()
            with self._in_transit_lock:
                pending = self._in_transit
            if not pending:
                return
            await asyncio.sleep(0)

    async def close(self) -> None:
        """Release every subscription, stop reacting to changes and clear the snapshot."""
        self._closed = True
        for subscription in self._subscriptions:
            self.changes.unsubscribe(subscription)
        self._subscriptions = []
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        if self._signals is not None:
            # Release anyone still waiting in settled()
            while not self._signals.empty():
                self._signals.get_nowait()
                self._signals.task_done()
        self._snapshot = EMPTY

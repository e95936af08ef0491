"""
Live queries over the record store.

A LiveQuery wraps a list query together with the tables it reads. Subscribers
get the query result once on subscribe and again after every committed change
to one of those tables, delivered on the event loop they subscribed from.

Change detection is done by the InvalidationTracker, which hooks the
SQLAlchemy session events of the store: tables touched by a flush are
remembered until the transaction commits (or forgotten on rollback). Rows
removed by ON DELETE CASCADE never pass through the session, so a change to a
table also invalidates every table that cascades from it.
"""

import asyncio
import threading
from itertools import chain
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

from sqlalchemy import event

from logger import get_logger
from outcomes import Outcome

T = TypeVar("T")

log = get_logger(__name__)

_TOUCHED_KEY = "touched_tables"


def cascade_dependents(metadata) -> dict[str, set[str]]:
    """Map each table name to the tables whose rows are deleted along with it."""
    dependents: dict[str, set[str]] = {}
    for table in metadata.sorted_tables:
        for fk in table.foreign_keys:
            if (fk.ondelete or "").upper() == "CASCADE":
                dependents.setdefault(fk.column.table.name, set()).add(table.name)
    return dependents


class InvalidationTracker:
    """Notifies observers after commits that touched the tables they watch."""

    def __init__(self, metadata):
        self._dependents = cascade_dependents(metadata)
        self._observers: list[tuple[frozenset, Callable[[], None]]] = []
        self._lock = threading.Lock()

    def install(self, session_factory) -> None:
        event.listen(session_factory, "after_flush", self._after_flush)
        event.listen(session_factory, "after_commit", self._after_commit)
        event.listen(session_factory, "after_rollback", self._after_rollback)

    def expand(self, tables: Iterable[str]) -> set[str]:
        changed = set()
        pending = list(tables)
        while pending:
            name = pending.pop()
            if name in changed:
                continue
            changed.add(name)
            pending.extend(self._dependents.get(name, ()))
        return changed

    def add_observer(self, tables: Iterable[str], callback: Callable[[], None]) -> None:
        with self._lock:
            self._observers.append((frozenset(tables), callback))

    def remove_observer(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._observers = [entry for entry in self._observers if entry[1] != callback]

    def notify(self, tables: Iterable[str]) -> None:
        changed = self.expand(tables)
        with self._lock:
            observers = list(self._observers)
        for watched, callback in observers:
            if watched & changed:
                callback()

    def _after_flush(self, session, flush_context):
        touched = session.info.setdefault(_TOUCHED_KEY, set())
        for instance in chain(session.new, session.dirty, session.deleted):
            touched.add(instance.__table__.name)

    def _after_commit(self, session):
        touched = session.info.pop(_TOUCHED_KEY, None)
        if touched:
            self.notify(touched)

    def _after_rollback(self, session):
        session.info.pop(_TOUCHED_KEY, None)


class Subscription:
    """Handle for one subscriber of a LiveQuery. Release it to stop delivery."""

    def __init__(self, live: "LiveQuery", callback: Callable[[Outcome], None], loop: asyncio.AbstractEventLoop):
        self._live = live
        self._callback = callback
        self._loop = loop
        self._pending: set[asyncio.Task] = set()
        self._released = False

    @property
    def active(self) -> bool:
        return not self._released

    def release(self) -> None:
        """Stop delivery. Call from the subscriber's event loop."""
        if self._released:
            return
        self._released = True
        self._live.tracker.remove_observer(self._on_tables_changed)
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def _on_tables_changed(self) -> None:
        # runs on the store worker thread
        try:
            self._loop.call_soon_threadsafe(self._schedule_refresh)
        except RuntimeError:
            # subscriber's loop is gone
            self._released = True
            self._live.tracker.remove_observer(self._on_tables_changed)
            log.debug("subscription_dropped", tables=sorted(self._live.tables))

    def _schedule_refresh(self) -> None:
        if self._released:
            return
        task = self._loop.create_task(self._refresh())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _refresh(self) -> None:
        outcome = await self._live.fetch()
        if not self._released:
            self._callback(outcome)


class LiveQuery(Generic[T]):
    def __init__(self, tracker: InvalidationTracker, tables: Iterable[str], fetch: Callable[[], Awaitable[Outcome]]):
        self.tracker = tracker
        self.tables = frozenset(tables)
        self._fetch = fetch

    async def fetch(self) -> Outcome:
        return await self._fetch()

    def subscribe(self, callback: Callable[[Outcome], None]) -> Subscription:
        """Deliver the current result, then a new one after each relevant commit."""
        loop = asyncio.get_running_loop()
        subscription = Subscription(self, callback, loop)
        self.tracker.add_observer(self.tables, subscription._on_tables_changed)
        subscription._schedule_refresh()
        return subscription

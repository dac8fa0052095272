"""Per-user donation history feed.

The history is split into partitions (one per event kind). Each partition
pushes complete snapshots whenever its slice of the ledger changes, in no
particular order relative to the others. ``StreamAggregator`` keeps the
latest snapshot of every partition and re-merges them on each arrival, so
the merged view never depends on which partition answered first.
"""

import asyncio
import functools
from typing import Callable, Iterable, Optional

from libs.common.change_feed import ChangeFeed, change_feed, donation_events_topic
from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc
from libs.common.logging import get_logger
from services.impact_service.models import DonationKind
from services.impact_service.schemas.events import HistoryEntry
from services.impact_service.services.ledger import list_user_events
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

Snapshot = list[HistoryEntry]
SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[Exception], None]
Disposer = Callable[[], None]


def merge_partitions(
    snapshots: Iterable[Iterable[HistoryEntry]], max_results: int
) -> Snapshot:
    """Merge partition snapshots newest first, ties by id, deduplicated by id."""
    merged = [entry for snapshot in snapshots for entry in snapshot]
    merged.sort(key=lambda entry: entry.id)
    merged.sort(key=lambda entry: as_utc(entry.created_at), reverse=True)

    seen = set()
    result: Snapshot = []
    for entry in merged:
        if entry.id in seen:
            continue
        seen.add(entry.id)
        result.append(entry)
        if len(result) >= max_results:
            break
    return result


# ---------------------------------------------------------------------------
# Partitions
# ---------------------------------------------------------------------------


class HistoryPartition:
    """A live source of snapshots for one slice of a user's history."""

    name = "partition"

    def subscribe(
        self, on_snapshot: SnapshotCallback, on_error: ErrorCallback
    ) -> Disposer:
        raise NotImplementedError


class DonationEventPartition(HistoryPartition):
    """One event kind for one user, reloaded from the store on every change.

    Notifications that arrive while a reload is running are coalesced into a
    single follow-up reload.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        user_auth_id: str,
        kind: DonationKind,
        *,
        max_results: int,
        feed: ChangeFeed = change_feed,
    ) -> None:
        self.session_factory = session_factory
        self.user_auth_id = user_auth_id
        self.kind = kind
        self.max_results = max_results
        self.feed = feed
        self.name = kind.value

    async def load(self) -> Snapshot:
        async with self.session_factory() as db:
            events = await list_user_events(
                db, self.user_auth_id, kind=self.kind, limit=self.max_results
            )
            return [HistoryEntry.model_validate(event) for event in events]

    def subscribe(
        self, on_snapshot: SnapshotCallback, on_error: ErrorCallback
    ) -> Disposer:
        loop = asyncio.get_running_loop()
        task: Optional[asyncio.Task] = None
        dirty = False
        closed = False

        async def reload_until_clean() -> None:
            nonlocal dirty
            while not closed:
                dirty = False
                try:
                    entries = await self.load()
                except Exception as exc:
                    if closed:
                        return
                    on_error(exc)
                else:
                    if closed:
                        return
                    on_snapshot(entries)
                if not dirty:
                    return

        def report_failure(finished: asyncio.Task) -> None:
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.error("History reload for %s failed", self.name, exc_info=exc)

        def request_reload() -> None:
            nonlocal task, dirty
            if closed:
                return
            if task is not None and not task.done():
                dirty = True
                return
            task = loop.create_task(reload_until_clean())
            task.add_done_callback(report_failure)

        unlisten = self.feed.listen(donation_events_topic(self.user_auth_id), request_reload)
        request_reload()

        def dispose() -> None:
            nonlocal closed
            if closed:
                return
            closed = True
            unlisten()
            if task is not None and not task.done():
                task.cancel()

        return dispose


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class StreamAggregator:
    """Combine partition snapshots into one bounded, ordered, deduplicated feed."""

    def __init__(
        self,
        partitions: Iterable[HistoryPartition],
        callback: SnapshotCallback,
        max_results: Optional[int] = None,
    ) -> None:
        self.partitions = list(partitions)
        self.callback = callback
        self.max_results = max_results or get_settings().HISTORY_MAX_RESULTS
        self._snapshots: dict[int, Snapshot] = {}
        self._disposers: list[Disposer] = []
        self._started = False
        self._disposed = False

    def start(self) -> Disposer:
        """Subscribe every partition. Returns a disposer that is safe to call twice."""
        if self._started:
            raise RuntimeError("StreamAggregator already started")
        self._started = True
        for index, partition in enumerate(self.partitions):
            self._disposers.append(
                partition.subscribe(
                    functools.partial(self._on_snapshot, index),
                    functools.partial(self._on_error, index),
                )
            )
        return self.dispose

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        disposers, self._disposers = self._disposers, []
        for dispose in disposers:
            dispose()

    def current(self) -> Snapshot:
        return merge_partitions(self._snapshots.values(), self.max_results)

    def _on_snapshot(self, index: int, entries: Snapshot) -> None:
        if self._disposed:
            return
        self._snapshots[index] = list(entries)
        self.callback(self.current())

    def _on_error(self, index: int, exc: Exception) -> None:
        if self._disposed:
            return
        logger.warning(
            "History partition %s failed, dropping its snapshot: %s",
            self.partitions[index].name,
            exc,
        )
        self._snapshots.pop(index, None)
        self.callback(self.current())


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def user_partitions(
    session_factory: async_sessionmaker[AsyncSession],
    user_auth_id: str,
    max_results: int,
    feed: ChangeFeed = change_feed,
) -> list[DonationEventPartition]:
    return [
        DonationEventPartition(
            session_factory, user_auth_id, kind, max_results=max_results, feed=feed
        )
        for kind in DonationKind
    ]


def subscribe_to_user_history(
    session_factory: async_sessionmaker[AsyncSession],
    user_auth_id: str,
    callback: SnapshotCallback,
    *,
    max_results: Optional[int] = None,
    feed: ChangeFeed = change_feed,
) -> Disposer:
    """Live merged history for a user. Must be called from a running event loop."""
    max_results = max_results or get_settings().HISTORY_MAX_RESULTS
    aggregator = StreamAggregator(
        user_partitions(session_factory, user_auth_id, max_results, feed),
        callback,
        max_results,
    )
    return aggregator.start()


async def history_snapshot(
    db: AsyncSession, user_auth_id: str, max_results: Optional[int] = None
) -> Snapshot:
    """The merged history view, read once."""
    max_results = max_results or get_settings().HISTORY_MAX_RESULTS
    snapshots = []
    for kind in DonationKind:
        events = await list_user_events(db, user_auth_id, kind=kind, limit=max_results)
        snapshots.append([HistoryEntry.model_validate(event) for event in events])
    return merge_partitions(snapshots, max_results)

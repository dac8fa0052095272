"""Unit tests for the merged donation history feed."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from libs.common.change_feed import change_feed, donation_events_topic
from services.impact_service.models import DonationKind, DonationStatus
from services.impact_service.schemas.events import AppointmentCreate, HistoryEntry
from services.impact_service.services import ledger
from services.impact_service.services.history import (
    DonationEventPartition,
    HistoryPartition,
    StreamAggregator,
    history_snapshot,
    merge_partitions,
    subscribe_to_user_history,
)
from tests.factories import DonationEventFactory

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _entry(created_offset: int, entry_id=None, kind=DonationKind.APPOINTMENT):
    return HistoryEntry(
        id=entry_id or uuid.uuid4(),
        kind=kind,
        status=DonationStatus.PENDING,
        scheduled_at=EPOCH,
        created_at=EPOCH + timedelta(seconds=created_offset),
    )


class FakePartition(HistoryPartition):
    """Partition driven by the test: push snapshots and errors by hand."""

    def __init__(self, name):
        self.name = name
        self.on_snapshot = None
        self.on_error = None
        self.dispose_calls = 0

    def subscribe(self, on_snapshot, on_error):
        self.on_snapshot = on_snapshot
        self.on_error = on_error

        def dispose():
            self.dispose_calls += 1

        return dispose


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# merge_partitions
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_merge_orders_newest_first_across_partitions():
    one, two, three = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    partition_a = [_entry(10, one), _entry(30, three)]
    partition_b = [_entry(20, two)]

    merged = merge_partitions([partition_a, partition_b], max_results=10)

    assert [e.id for e in merged] == [three, two, one]


@pytest.mark.unit
def test_merge_does_not_depend_on_partition_order():
    entries = [_entry(offset) for offset in (5, 50, 15, 40)]
    forward = merge_partitions([entries[:2], entries[2:]], max_results=10)
    backward = merge_partitions([entries[2:], entries[:2]], max_results=10)

    assert forward == backward


@pytest.mark.unit
def test_merge_breaks_created_at_ties_by_id():
    low, high = sorted([uuid.uuid4(), uuid.uuid4()])
    merged = merge_partitions([[_entry(10, high)], [_entry(10, low)]], max_results=10)

    assert [e.id for e in merged] == [low, high]


@pytest.mark.unit
def test_merge_dedupes_by_id_and_caps_results():
    shared = uuid.uuid4()
    partition_a = [_entry(100, shared)] + [_entry(i) for i in range(5)]
    partition_b = [_entry(100, shared)] + [_entry(i + 10) for i in range(5)]

    merged = merge_partitions([partition_a, partition_b], max_results=4)

    assert len(merged) == 4
    assert [e.id for e in merged].count(shared) == 1
    assert merged[0].id == shared


# ---------------------------------------------------------------------------
# StreamAggregator
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_aggregator_emits_merged_view_on_every_snapshot():
    partitions = [FakePartition("a"), FakePartition("b")]
    received = []
    aggregator = StreamAggregator(partitions, received.append, max_results=10)
    aggregator.start()

    older, newer = _entry(10), _entry(20)
    partitions[1].on_snapshot([newer])
    partitions[0].on_snapshot([older])

    assert [[e.id for e in feed] for feed in received] == [
        [newer.id],
        [newer.id, older.id],
    ]


@pytest.mark.unit
def test_aggregator_replaces_a_partitions_previous_snapshot():
    partition = FakePartition("a")
    received = []
    StreamAggregator([partition], received.append, max_results=10).start()

    first, second = _entry(10), _entry(20)
    partition.on_snapshot([first])
    partition.on_snapshot([second])

    assert [e.id for e in received[-1]] == [second.id]


@pytest.mark.unit
def test_partition_error_drops_its_snapshot_and_keeps_feeding():
    healthy, failing = FakePartition("healthy"), FakePartition("failing")
    received = []
    StreamAggregator([healthy, failing], received.append, max_results=10).start()

    kept, lost = _entry(10), _entry(20)
    healthy.on_snapshot([kept])
    failing.on_snapshot([lost])
    failing.on_error(RuntimeError("listener detached"))

    assert [e.id for e in received[-1]] == [kept.id]

    later = _entry(30)
    healthy.on_snapshot([later, kept])
    assert [e.id for e in received[-1]] == [later.id, kept.id]


@pytest.mark.unit
def test_disposer_tears_down_each_partition_once():
    partitions = [FakePartition("a"), FakePartition("b"), FakePartition("c")]
    received = []
    dispose = StreamAggregator(partitions, received.append, max_results=10).start()

    dispose()
    dispose()

    assert [p.dispose_calls for p in partitions] == [1, 1, 1]


@pytest.mark.unit
def test_no_callbacks_after_dispose():
    partition = FakePartition("a")
    received = []
    dispose = StreamAggregator([partition], received.append, max_results=10).start()

    dispose()
    partition.on_snapshot([_entry(10)])
    partition.on_error(RuntimeError("late"))

    assert received == []


@pytest.mark.unit
def test_aggregator_cannot_start_twice():
    aggregator = StreamAggregator([FakePartition("a")], lambda feed: None, max_results=5)
    aggregator.start()

    with pytest.raises(RuntimeError):
        aggregator.start()


# ---------------------------------------------------------------------------
# Store-backed history
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_history_snapshot_merges_all_kinds(db_session):
    user = "history-user"
    base = datetime.now(timezone.utc)
    events = [
        DonationEventFactory.create(user, kind=kind, created_at=base + timedelta(minutes=i))
        for i, kind in enumerate(
            [
                DonationKind.APPOINTMENT,
                DonationKind.DRIVE_REGISTRATION,
                DonationKind.APPOINTMENT,
            ]
        )
    ]
    db_session.add_all(events)
    db_session.add(DonationEventFactory.create("someone-else"))
    await db_session.commit()

    feed = await history_snapshot(db_session, user, max_results=10)

    assert [e.id for e in feed] == [events[2].id, events[1].id, events[0].id]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_live_subscription_sees_new_events(session_factory, db_session):
    user = "live-user"
    feeds = []
    dispose = subscribe_to_user_history(
        session_factory, user, feeds.append, max_results=5
    )
    try:
        await _wait_until(lambda: len(feeds) >= 3)
        assert feeds[-1] == []

        event = await ledger.record_event(
            db_session,
            user,
            AppointmentCreate(scheduled_at=datetime.now(timezone.utc) + timedelta(days=2)),
        )

        await _wait_until(lambda: feeds and [e.id for e in feeds[-1]] == [event.id])
    finally:
        dispose()

    assert change_feed.listener_count(donation_events_topic(user)) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failing_snapshot_callback_is_logged(session_factory, caplog):
    partition = DonationEventPartition(
        session_factory, "broken-listener", DonationKind.APPOINTMENT, max_results=5
    )

    def explode(entries):
        raise RuntimeError("listener blew up")

    caplog.set_level(logging.ERROR, logger="services.impact_service.services.history")
    dispose = partition.subscribe(explode, lambda exc: None)
    try:
        await _wait_until(
            lambda: any("History reload" in r.message for r in caplog.records)
        )
    finally:
        dispose()

    record = next(r for r in caplog.records if "History reload" in r.message)
    assert record.levelno == logging.ERROR
    assert isinstance(record.exc_info[1], RuntimeError)

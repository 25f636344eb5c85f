"""Tests for the join coordinator.

These exercise join/leave/close through the in-memory store, including the
concurrency guarantees of the per-offering critical section.
Run with: pytest tests/test_coordinator.py -v
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from django.utils import timezone

from conftest import RecordingSubscriber, SlowProfiles, make_offering
from smartgroups.domain import OfferingStatus, ParticipantId
from smartgroups.domain.errors import (
    AlreadyJoinedError,
    BusyError,
    DomainError,
    ErrorCode,
    InvalidOfferingIdError,
    NotParticipantError,
    OfferingFullError,
    OfferingNotFoundError,
    OfferingNotJoinableError,
)
from smartgroups.domain.pricing import resolve
from smartgroups.services import build_engine
from smartgroups.services.coordinator import JoinCoordinator
from smartgroups.services.fanout import NotificationFanout
from smartgroups.services.ledger import CapacityLedger
from smartgroups.services.locks import LockTimeout
from smartgroups.services.subscriptions import SubscriptionRegistry
from smartgroups.stores import InMemoryOfferingStore


def subscribe(engine, offering) -> RecordingSubscriber:
    subscriber = RecordingSubscriber()
    engine.registry.subscribe(f"conn-{uuid4()}", offering.id, subscriber)
    return subscriber


class TestJoin:
    def test_first_join_pays_base_price(self, engine, offering_factory, store):
        offering = offering_factory(target=3)
        outcome = engine.coordinator.join(str(offering.id.value), "alice")
        assert outcome.new_count == 1
        assert outcome.quote.effective_price == Decimal("100.00")
        assert not outcome.became_full
        records = store.list_participants(offering.id)
        assert [r.participant_id.value for r in records] == ["alice"]
        assert records[0].price_paid.amount == Decimal("100.00")

    def test_price_uses_post_join_count(self, engine, offering_factory, store):
        """The participant whose join reaches a threshold gets that discount."""
        offering = offering_factory(target=3)
        engine.coordinator.join(offering.id, "alice")
        second = engine.coordinator.join(offering.id, "bob")
        assert second.quote.effective_price == Decimal("90.00")
        assert second.quote.original_price == Decimal("100.00")
        paid = [r.price_paid.amount for r in store.list_participants(offering.id)]
        assert paid == [Decimal("100.00"), Decimal("90.00")]

    def test_last_place_fills_group(self, engine, offering_factory, store):
        offering = offering_factory(target=2, count=1)
        outcome = engine.coordinator.join(offering.id, "alice")
        assert outcome.became_full
        assert store.get_offering(offering.id).status is OfferingStatus.FULL

    def test_full_group_rejected(self, engine, offering_factory):
        offering = offering_factory(target=1, count=1, status=OfferingStatus.FULL)
        with pytest.raises(OfferingFullError):
            engine.coordinator.join(offering.id, "alice")

    def test_closed_group_rejected(self, engine, offering_factory):
        offering = offering_factory(target=5, status=OfferingStatus.EXPIRED)
        with pytest.raises(OfferingNotJoinableError) as exc_info:
            engine.coordinator.join(offering.id, "alice")
        assert exc_info.value.status == "expired"

    def test_unknown_offering(self, engine):
        with pytest.raises(OfferingNotFoundError):
            engine.coordinator.join(str(uuid4()), "alice")

    def test_invalid_offering_id(self, engine):
        with pytest.raises(InvalidOfferingIdError):
            engine.coordinator.join("not-a-uuid", "alice")

    def test_duplicate_join_rejected_without_changing_count(self, engine, offering_factory, store):
        offering = offering_factory(target=5)
        engine.coordinator.join(offering.id, "alice")
        with pytest.raises(AlreadyJoinedError):
            engine.coordinator.join(offering.id, "alice")
        assert store.get_offering(offering.id).current_participants == 1

    def test_rejected_join_publishes_nothing(self, engine, offering_factory):
        offering = offering_factory(target=1, count=1, status=OfferingStatus.FULL)
        subscriber = subscribe(engine, offering)
        with pytest.raises(OfferingFullError):
            engine.coordinator.join(offering.id, "alice")
        engine.close()
        assert subscriber.messages == []

    def test_join_publishes_event_with_name(self, engine, offering_factory):
        offering = offering_factory(target=3)
        subscriber = subscribe(engine, offering)
        engine.coordinator.join(offering.id, "alice")
        assert subscriber.wait_for(1) == [
            {
                "type": "participantJoined",
                "offeringId": str(offering.id),
                "newCount": 1,
                "effectivePrice": "100.00",
                "discountPercent": "0.00",
                "status": "active",
                "sequence": 1,
                "participantName": "Alice Smith",
            }
        ]

    def test_filling_join_also_publishes_status_change(self, engine, offering_factory):
        offering = offering_factory(target=2, count=1)
        subscriber = subscribe(engine, offering)
        engine.coordinator.join(offering.id, "bob")
        subscriber.wait_for(2)
        assert subscriber.types() == ["participantJoined", "statusChanged"]
        assert subscriber.messages[1]["status"] == "full"
        assert [m["sequence"] for m in subscriber.messages] == [1, 2]


class TestConcurrentJoins:
    def test_never_overbooks_and_prices_match_position(self, engine, offering_factory, store):
        offering = offering_factory(target=5, rules=((2, "10"), (4, "25")))

        def attempt(n):
            try:
                return engine.coordinator.join(offering.id, f"traveller-{n}")
            except DomainError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=12) as pool:
            results = list(pool.map(attempt, range(30)))

        successes = [r for r in results if not isinstance(r, DomainError)]
        failures = [r for r in results if isinstance(r, DomainError)]
        assert sorted(o.new_count for o in successes) == [1, 2, 3, 4, 5]
        assert all(f.code is ErrorCode.OFFERING_FULL for f in failures)
        for outcome in successes:
            expected = resolve(outcome.new_count, Decimal("100.00"), offering.discount_rules)
            assert outcome.quote == expected
            assert outcome.record.price_paid.amount == expected.effective_price
        assert sum(o.became_full for o in successes) == 1
        final = store.get_offering(offering.id)
        assert (final.current_participants, final.status) == (5, OfferingStatus.FULL)
        assert len(store.list_participants(offering.id)) == 5

    def test_same_participant_racing_joins_once(self, engine, offering_factory, store):
        offering = offering_factory(target=10)

        def attempt(_):
            try:
                engine.coordinator.join(offering.id, "alice")
                return True
            except AlreadyJoinedError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert results.count(True) == 1
        assert store.get_offering(offering.id).current_participants == 1

    def test_subscribers_see_increasing_sequences(self, engine, offering_factory):
        offering = offering_factory(target=20)
        subscriber = subscribe(engine, offering)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda n: engine.coordinator.join(offering.id, f"p{n}"), range(20)))

        engine.close()
        joined = [m for m in subscriber.messages if m["type"] == "participantJoined"]
        assert [m["newCount"] for m in joined] == list(range(1, 21))
        sequences = [m["sequence"] for m in subscriber.messages]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == len(sequences)


class TestBusy:
    def test_join_times_out_while_offering_locked(self, store, profiles, offering_factory, settings):
        settings.SMARTGROUPS = {"JOIN_LOCK_TIMEOUT": 0.05}
        engine = build_engine(store=store, profiles=profiles)
        offering = offering_factory(target=3)
        held = threading.Event()
        release = threading.Event()

        def owner():
            with engine.ledger.hold(offering.id):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=owner)
        thread.start()
        held.wait(5)
        try:
            with pytest.raises(BusyError) as exc_info:
                engine.coordinator.join(offering.id, "alice")
            assert exc_info.value.retryable
        finally:
            release.set()
            thread.join()
        assert store.get_offering(offering.id).current_participants == 0

    def test_other_offerings_not_blocked(self, engine, offering_factory):
        locked = offering_factory(target=3)
        free = offering_factory(target=3)
        held = threading.Event()
        release = threading.Event()

        def owner():
            with engine.ledger.hold(locked.id):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=owner)
        thread.start()
        held.wait(5)
        try:
            assert engine.coordinator.join(free.id, "alice").new_count == 1
        finally:
            release.set()
            thread.join()


class LockObserver:
    """Subscriber and profile directory that records whether the offering lock is free."""

    def __init__(self, ledger, offering_id) -> None:
        self._ledger = ledger
        self._offering_id = offering_id
        self.lock_free: list[bool] = []

    def _record(self) -> None:
        def try_lock():
            try:
                with self._ledger.hold(self._offering_id, timeout=0.5):
                    self.lock_free.append(True)
            except LockTimeout:
                self.lock_free.append(False)

        thread = threading.Thread(target=try_lock)
        thread.start()
        thread.join()

    def send(self, message: dict) -> None:
        self._record()

    def get_display_name(self, participant_id):
        self._record()
        return None


class TestDeliveryOutsideLock:
    def test_lookup_and_delivery_happen_after_lock_release(self, store, offering_factory):
        offering = offering_factory(target=2, count=1)
        ledger = CapacityLedger(store)
        registry = SubscriptionRegistry()
        observer = LockObserver(ledger, offering.id)
        fanout = NotificationFanout(registry, observer)
        coordinator = JoinCoordinator(store, ledger, fanout)
        registry.subscribe("conn-1", offering.id, observer)

        coordinator.join(offering.id, "alice")
        fanout.shutdown()

        # One name lookup plus two deliveries (joined, statusChanged).
        assert observer.lock_free == [True, True, True]


class TestLeave:
    def test_leave_frees_place_and_reprices(self, engine, offering_factory, store):
        offering = offering_factory(target=3)
        engine.coordinator.join(offering.id, "alice")
        engine.coordinator.join(offering.id, "bob")
        outcome = engine.coordinator.leave(offering.id, "bob")
        assert outcome.new_count == 1
        assert outcome.quote.effective_price == Decimal("100.00")
        assert not outcome.reopened
        assert [r.participant_id for r in store.list_participants(offering.id)] == [ParticipantId("alice")]

    def test_leave_keeps_prices_already_paid(self, engine, offering_factory, store):
        offering = offering_factory(target=4)
        for name in ("alice", "bob", "carol"):
            engine.coordinator.join(offering.id, name)
        engine.coordinator.leave(offering.id, "alice")
        paid = {r.participant_id.value: r.price_paid.amount for r in store.list_participants(offering.id)}
        assert paid == {"bob": Decimal("90.00"), "carol": Decimal("80.00")}

    def test_leave_reopens_full_group(self, engine, offering_factory):
        offering = offering_factory(target=2)
        engine.coordinator.join(offering.id, "alice")
        engine.coordinator.join(offering.id, "bob")
        subscriber = subscribe(engine, offering)
        outcome = engine.coordinator.leave(offering.id, "alice")
        assert outcome.reopened
        subscriber.wait_for(2)
        assert subscriber.types() == ["participantLeft", "statusChanged"]
        assert "participantName" not in subscriber.messages[0]
        assert subscriber.messages[1]["status"] == "active"

    def test_rejoin_after_leave(self, engine, offering_factory):
        offering = offering_factory(target=3)
        engine.coordinator.join(offering.id, "alice")
        engine.coordinator.leave(offering.id, "alice")
        assert engine.coordinator.join(offering.id, "alice").new_count == 1

    def test_leave_without_place(self, engine, offering_factory):
        offering = offering_factory(target=3)
        with pytest.raises(NotParticipantError):
            engine.coordinator.leave(offering.id, "alice")

    def test_leave_unknown_offering(self, engine):
        with pytest.raises(OfferingNotFoundError):
            engine.coordinator.leave(str(uuid4()), "alice")

    def test_leave_closed_group(self, engine, offering_factory):
        offering = offering_factory(target=3)
        engine.coordinator.join(offering.id, "alice")
        engine.coordinator.complete(offering.id)
        with pytest.raises(OfferingNotJoinableError):
            engine.coordinator.leave(offering.id, "alice")


class TestClose:
    def test_expire_publishes_status_change(self, engine, offering_factory, store):
        offering = offering_factory(target=3, count=1)
        subscriber = subscribe(engine, offering)
        entry = engine.coordinator.expire(offering.id)
        assert entry.new_status is OfferingStatus.EXPIRED
        assert store.get_offering(offering.id).status is OfferingStatus.EXPIRED
        subscriber.wait_for(1)
        assert subscriber.types() == ["statusChanged"]

    def test_closing_twice_rejected(self, engine, offering_factory):
        offering = offering_factory(target=3)
        engine.coordinator.complete(offering.id)
        with pytest.raises(OfferingNotJoinableError):
            engine.coordinator.expire(offering.id)

    def test_expire_due(self, engine, offering_factory, store):
        now = timezone.now()
        overdue = offering_factory(target=3, expires_at=now - timedelta(minutes=5))
        full_overdue = offering_factory(
            target=1, count=1, status=OfferingStatus.FULL, expires_at=now - timedelta(seconds=1)
        )
        later = offering_factory(target=3, expires_at=now + timedelta(hours=1))
        done = offering_factory(target=3, status=OfferingStatus.COMPLETED, expires_at=now - timedelta(days=1))
        no_deadline = offering_factory(target=3)

        expired = engine.coordinator.expire_due(now)

        assert set(expired) == {overdue.id, full_overdue.id}
        assert store.get_offering(later.id).status is OfferingStatus.ACTIVE
        assert store.get_offering(done.id).status is OfferingStatus.COMPLETED
        assert store.get_offering(no_deadline.id).status is OfferingStatus.ACTIVE


class TestCoordinatorClock:
    def test_joined_at_comes_from_clock(self, store, profiles, offering_factory):
        engine = build_engine(store=store, profiles=profiles)
        stamp = timezone.now() - timedelta(days=1)
        coordinator = JoinCoordinator(store, engine.ledger, engine.fanout, clock=lambda: stamp)
        offering = offering_factory(target=2)
        outcome = coordinator.join(offering.id, "alice")
        assert outcome.record.joined_at == stamp


class TestJoinLatency:
    def test_slow_profile_lookup_does_not_delay_next_join(self, store, offering_factory):
        engine = build_engine(store=store, profiles=SlowProfiles(delay=1.0, names={"alice": "Alice Smith"}))
        offering = offering_factory(target=5)
        subscriber = subscribe(engine, offering)
        try:
            started = time.monotonic()
            engine.coordinator.join(offering.id, "alice")
            engine.coordinator.join(offering.id, "bob")
            assert time.monotonic() - started < 0.5

            messages = subscriber.wait_for(2, timeout=5)
            assert [(m["sequence"], m["participantName"]) for m in messages] == [
                (1, "Alice Smith"),
                (2, "A fellow traveler"),
            ]
        finally:
            engine.close()

    def test_joins_from_other_threads_not_blocked_by_delivery(self, store, offering_factory):
        engine = build_engine(store=store, profiles=SlowProfiles(delay=1.0))
        offering = offering_factory(target=5)
        subscribe(engine, offering)
        try:
            first = threading.Thread(target=engine.coordinator.join, args=(offering.id, "alice"))
            first.start()
            first.join(5)
            started = time.monotonic()
            engine.coordinator.join(offering.id, "bob")
            assert time.monotonic() - started < 0.5
        finally:
            engine.close()


class TestDeadline:
    @pytest.fixture
    def clock(self):
        class Clock:
            now = timezone.now()

            def __call__(self):
                return self.now

        return Clock()

    @pytest.fixture
    def coordinator(self, engine, store, clock):
        return JoinCoordinator(store, engine.ledger, engine.fanout, read_model=engine.offerings, clock=clock)

    def test_join_after_deadline_expires_offering(self, engine, coordinator, clock, offering_factory, store):
        offering = offering_factory(target=3, count=1, expires_at=clock.now - timedelta(seconds=1))
        subscriber = subscribe(engine, offering)

        with pytest.raises(OfferingNotJoinableError) as exc_info:
            coordinator.join(offering.id, "alice")

        assert exc_info.value.status == "expired"
        current = store.get_offering(offering.id)
        assert (current.current_participants, current.status) == (1, OfferingStatus.EXPIRED)
        assert store.get_active_participant(offering.id, ParticipantId("alice")) is None
        message = subscriber.wait_for(1)[0]
        assert (message["type"], message["status"], message["newCount"]) == ("statusChanged", "expired", 1)

    def test_deadline_is_inclusive(self, coordinator, clock, offering_factory):
        offering = offering_factory(target=3, expires_at=clock.now)
        with pytest.raises(OfferingNotJoinableError):
            coordinator.join(offering.id, "alice")

    def test_expiry_announced_once(self, engine, coordinator, clock, offering_factory):
        offering = offering_factory(target=3, expires_at=clock.now - timedelta(minutes=1))
        subscriber = subscribe(engine, offering)

        for name in ("alice", "bob"):
            with pytest.raises(OfferingNotJoinableError):
                coordinator.join(offering.id, name)
        engine.close()

        assert subscriber.types() == ["statusChanged"]

    def test_leave_after_deadline_rejected(self, engine, coordinator, clock, offering_factory, store):
        offering = offering_factory(target=3, expires_at=clock.now + timedelta(hours=1))
        coordinator.join(offering.id, "alice")
        clock.now += timedelta(hours=2)

        with pytest.raises(OfferingNotJoinableError):
            coordinator.leave(offering.id, "alice")

        current = store.get_offering(offering.id)
        assert (current.current_participants, current.status) == (1, OfferingStatus.EXPIRED)
        assert store.get_active_participant(offering.id, ParticipantId("alice")) is not None

    def test_join_before_deadline_allowed(self, coordinator, clock, offering_factory):
        offering = offering_factory(target=3, expires_at=clock.now + timedelta(seconds=1))
        assert coordinator.join(offering.id, "alice").new_count == 1


class TestObserve:
    def test_snapshot_matches_last_sequence(self, engine, offering_factory):
        offering = offering_factory(target=3)
        engine.coordinator.join(offering.id, "alice")
        engine.coordinator.join(offering.id, "bob")

        snapshot, sequence = engine.coordinator.observe(offering.id)

        assert snapshot.current_participants == 2
        assert sequence == 2

    def test_reads_past_cached_snapshot(self, engine, offering_factory, store):
        offering = offering_factory(target=3)
        engine.offerings.get_snapshot(offering.id)
        store.save_state(offering.id, 2, OfferingStatus.ACTIVE)

        snapshot, sequence = engine.coordinator.observe(offering.id)

        assert snapshot.current_participants == 2
        assert sequence == 0

    def test_unknown_offering(self, engine):
        with pytest.raises(OfferingNotFoundError):
            engine.coordinator.observe(str(uuid4()))


class _Transaction:
    def __init__(self, store) -> None:
        self._store = store

    def __enter__(self):
        self._store.depth += 1

    def __exit__(self, exc_type, exc, tb):
        self._store.depth -= 1
        return False


class TransactionTrackingStore(InMemoryOfferingStore):
    """Records the transaction depth at every row-locking read."""

    def __init__(self) -> None:
        super().__init__()
        self.depth = 0
        self.row_lock_depths: list[int] = []

    def atomic(self):
        return _Transaction(self)

    def lock_offering(self, offering_id):
        self.row_lock_depths.append(self.depth)
        return super().lock_offering(offering_id)


class TestRowLocking:
    def test_count_is_read_through_row_lock_inside_transaction(self, profiles):
        store = TransactionTrackingStore()
        engine = build_engine(store=store, profiles=profiles)
        offering = store.add_offering(make_offering(target=3))
        try:
            engine.coordinator.join(offering.id, "alice")
            engine.coordinator.leave(offering.id, "alice")
            engine.coordinator.complete(offering.id)
        finally:
            engine.close()

        # expire check + increment, expire check + decrement, transition
        assert len(store.row_lock_depths) == 5
        assert all(depth > 0 for depth in store.row_lock_depths)
        assert store.depth == 0

"""Pytest configuration and shared fixtures."""

import threading
import time
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from rest_framework.test import APIClient

from smartgroups.domain import (
    Capacity,
    DiscountRule,
    JoinCode,
    Money,
    Offering,
    OfferingId,
    OfferingKind,
    OfferingStatus,
)
from smartgroups.domain.value_objects import JOIN_CODE_ALPHABET, JOIN_CODE_LENGTH
from smartgroups.services import build_engine, set_engine
from smartgroups.services.offering_service import snapshot_cache_key, snapshot_version_key
from smartgroups.services.profiles import ProfileDirectory
from smartgroups.stores import InMemoryOfferingStore


class FakeProfiles(ProfileDirectory):
    """Profile directory backed by a dict; can be told to fail."""

    def __init__(self, names: dict[str, str] | None = None, fail: bool = False) -> None:
        self.names = names or {}
        self.fail = fail
        self.lookups: list[str] = []

    def get_display_name(self, participant_id):
        self.lookups.append(participant_id.value)
        if self.fail:
            raise RuntimeError("profile service unavailable")
        return self.names.get(participant_id.value)


class SlowProfiles(FakeProfiles):
    """Directory whose lookups take a while."""

    def __init__(self, delay: float, names: dict[str, str] | None = None) -> None:
        super().__init__(names)
        self.delay = delay

    def get_display_name(self, participant_id):
        time.sleep(self.delay)
        return super().get_display_name(participant_id)


class RecordingSubscriber:
    """Subscriber collecting every message it is sent.

    Delivery happens on fan-out worker threads, so tests call ``wait_for``
    before asserting on ``messages``.
    """

    def __init__(self) -> None:
        self.messages: list[dict] = []
        self._arrived = threading.Condition()

    def send(self, message: dict) -> None:
        with self._arrived:
            self.messages.append(message)
            self._arrived.notify_all()

    def wait_for(self, count: int, timeout: float = 2.0) -> list[dict]:
        with self._arrived:
            self._arrived.wait_for(lambda: len(self.messages) >= count, timeout)
        return self.messages

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]


class BrokenSubscriber:
    def send(self, message: dict) -> None:
        raise ConnectionError("socket gone")


def cached_snapshot(offering_id):
    """The snapshot the read model would serve from cache right now, if any."""
    from django.core.cache import cache

    version = cache.get(snapshot_version_key(offering_id), 0)
    return cache.get(snapshot_cache_key(offering_id, version))


def random_join_code() -> JoinCode:
    raw = uuid4().bytes[:JOIN_CODE_LENGTH]
    return JoinCode("".join(JOIN_CODE_ALPHABET[b % len(JOIN_CODE_ALPHABET)] for b in raw))


def make_offering(
    target: int = 3,
    count: int = 0,
    status: OfferingStatus = OfferingStatus.ACTIVE,
    base_price: str = "100.00",
    rules: tuple[tuple[int, str], ...] = ((2, "10"), (3, "20")),
    expires_at: datetime | None = None,
    kind: OfferingKind = OfferingKind.TOUR,
    title: str = "Sunset kayak tour",
) -> Offering:
    return Offering(
        id=OfferingId(value=uuid4()),
        title=title,
        kind=kind,
        target_participants=Capacity(target),
        current_participants=count,
        base_price=Money(Decimal(base_price)),
        status=status,
        join_code=random_join_code(),
        discount_rules=tuple(DiscountRule(threshold=t, discount_percent=Decimal(p)) for t, p in rules),
        expires_at=expires_at,
    )


@pytest.fixture
def api_client() -> APIClient:
    return APIClient()


@pytest.fixture(autouse=True)
def clear_cache():
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def reset_engine():
    yield
    set_engine(None)


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles({"alice": "Alice Smith", "bob": "Bob Jones"})


@pytest.fixture
def store() -> InMemoryOfferingStore:
    return InMemoryOfferingStore()


@pytest.fixture
def engine(store, profiles):
    """Process engine over the in-memory store."""
    engine = build_engine(store=store, profiles=profiles)
    set_engine(engine)
    yield engine
    engine.close()


@pytest.fixture
def offering_factory(store):
    def create(**kwargs) -> Offering:
        return store.add_offering(make_offering(**kwargs))

    return create


@pytest.fixture
def django_engine(profiles):
    """Process engine over the ORM store; tests using it need the db."""
    from smartgroups.stores.django_store import DjangoOfferingStore

    engine = build_engine(store=DjangoOfferingStore(), profiles=profiles)
    set_engine(engine)
    yield engine
    engine.close()


@pytest.fixture
def offering_row():
    """Create an ORM offering with discount rules."""
    from smartgroups import models

    def create(target=3, base_price="100.00", rules=((2, "10"), (3, "20")), **kwargs):
        row = models.Offering.objects.create(
            title=kwargs.pop("title", "Old town food walk"),
            target_participants=target,
            base_price=Decimal(base_price),
            **kwargs,
        )
        for threshold, percent in rules:
            models.DiscountRule.objects.create(offering=row, threshold=threshold, discount_percent=Decimal(percent))
        return row

    return create

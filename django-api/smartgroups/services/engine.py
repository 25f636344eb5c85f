"""Process-wide wiring of the smart group services.

Handlers and consumers share one engine so that the keyed locks, the
subscription registry and the outboxes are the same objects everywhere in
the process.
"""

import logging
import threading
from dataclasses import dataclass

from smartgroups.conf import app_setting
from smartgroups.services.coordinator import JoinCoordinator
from smartgroups.services.fanout import NotificationFanout
from smartgroups.services.ledger import CapacityLedger
from smartgroups.services.offering_service import OfferingService
from smartgroups.services.profiles import DjangoUserDirectory, ProfileDirectory
from smartgroups.services.rate_limit import FixedWindowRateLimiter, RateLimitPolicy
from smartgroups.services.subscriptions import SubscriptionRegistry
from smartgroups.stores.interfaces import OfferingStore

logger = logging.getLogger(__name__)


@dataclass
class SmartGroupEngine:
    store: OfferingStore
    ledger: CapacityLedger
    registry: SubscriptionRegistry
    fanout: NotificationFanout
    offerings: OfferingService
    coordinator: JoinCoordinator
    join_limiter: FixedWindowRateLimiter

    def close(self, wait: bool = True) -> None:
        """Stop the fan-out workers; with ``wait`` deliver what is already staged first."""
        self.fanout.shutdown(wait=wait)


def _default_store() -> OfferingStore:
    backend = app_setting("STORE")
    if backend == "memory":
        from smartgroups.stores.memory_store import InMemoryOfferingStore

        return InMemoryOfferingStore()
    if backend == "django":
        from smartgroups.stores.django_store import DjangoOfferingStore

        return DjangoOfferingStore()
    raise ValueError(f"Unknown SMARTGROUPS store backend: {backend!r}")


def build_engine(
    store: OfferingStore | None = None,
    profiles: ProfileDirectory | None = None,
) -> SmartGroupEngine:
    store = store or _default_store()
    registry = SubscriptionRegistry()
    fanout = NotificationFanout(
        registry,
        profiles or DjangoUserDirectory(),
        placeholder_name=app_setting("PARTICIPANT_PLACEHOLDER_NAME"),
        max_workers=app_setting("FANOUT_WORKERS"),
    )
    ledger = CapacityLedger(store)
    offerings = OfferingService(store, ttl=app_setting("SNAPSHOT_CACHE_TTL"))
    coordinator = JoinCoordinator(
        store,
        ledger,
        fanout,
        read_model=offerings,
        lock_timeout=app_setting("JOIN_LOCK_TIMEOUT"),
    )
    limiter = FixedWindowRateLimiter(
        RateLimitPolicy(limit=app_setting("JOIN_RATE_LIMIT"), window_s=app_setting("JOIN_RATE_WINDOW"))
    )
    logger.info("Smart group engine ready (store=%s)", type(store).__name__)
    return SmartGroupEngine(
        store=store,
        ledger=ledger,
        registry=registry,
        fanout=fanout,
        offerings=offerings,
        coordinator=coordinator,
        join_limiter=limiter,
    )


_engine: SmartGroupEngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> SmartGroupEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = build_engine()
        return _engine


def set_engine(engine: SmartGroupEngine | None) -> None:
    """Replace the process engine; None rebuilds it from settings on next use."""
    global _engine
    with _engine_lock:
        previous, _engine = _engine, engine
    if previous is not None and previous is not engine:
        previous.close(wait=False)

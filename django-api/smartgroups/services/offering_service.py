"""Offering read model - snapshots for initial page render.

Snapshots are cached briefly under a per-offering version number. Every
committed change bumps the version, so a snapshot built from a read that
raced with a commit is stored under a version nobody asks for again.
Clients should switch to the live subscription once connected.
"""

import logging
from uuid import UUID

from django.core.cache import cache as default_cache

from smartgroups.domain import (
    JoinCode,
    Offering,
    OfferingId,
    OfferingSnapshot,
    ParticipantRecord,
)
from smartgroups.domain.errors import InvalidOfferingIdError, OfferingNotFoundError
from smartgroups.domain.pricing import resolve
from smartgroups.stores.interfaces import OfferingStore

logger = logging.getLogger(__name__)


def parse_offering_id(value: str | UUID | OfferingId) -> OfferingId:
    """Parse an offering id from client input.

    Raises:
        InvalidOfferingIdError: If the value is not a valid UUID.
    """
    if isinstance(value, OfferingId):
        return value
    try:
        return OfferingId.from_string(value)
    except (TypeError, ValueError, AttributeError):
        raise InvalidOfferingIdError() from None


def snapshot_version_key(offering_id: OfferingId) -> str:
    return f"smartgroups:offering:{offering_id}:version"


def snapshot_cache_key(offering_id: OfferingId, version: int) -> str:
    return f"smartgroups:offering:{offering_id}:v{version}"


def invalidate_snapshot(offering_id: OfferingId, cache=None) -> None:
    """Bump the offering's snapshot version so cached snapshots stop being served."""
    cache = cache if cache is not None else default_cache
    key = snapshot_version_key(offering_id)
    cache.add(key, 0, None)
    try:
        cache.incr(key)
    except ValueError:
        # Evicted between add and incr.
        cache.set(key, 1, None)


class OfferingService:
    """Service for offering read operations."""

    def __init__(self, store: OfferingStore, cache=None, ttl: int = 30) -> None:
        self._store = store
        self._cache = cache if cache is not None else default_cache
        self._ttl = ttl

    def get_snapshot(self, offering_id: str | OfferingId) -> OfferingSnapshot:
        """Return the current snapshot of an offering.

        Raises:
            InvalidOfferingIdError: If the offering_id is not a valid UUID.
            OfferingNotFoundError: If the offering does not exist.
        """
        oid = parse_offering_id(offering_id)
        # Version first: a commit after this point bumps it past the key we fill.
        key = snapshot_cache_key(oid, self._cache.get(snapshot_version_key(oid), 0))
        snapshot = self._cache.get(key)
        if snapshot is not None:
            return snapshot

        snapshot = self.read_snapshot(oid)
        self._cache.set(key, snapshot, self._ttl)
        return snapshot

    def read_snapshot(self, offering_id: OfferingId) -> OfferingSnapshot:
        """Build a snapshot straight from the store, bypassing the cache.

        Raises:
            OfferingNotFoundError: If the offering does not exist.
        """
        offering = self._store.get_offering(offering_id)
        if offering is None:
            raise OfferingNotFoundError(str(offering_id))
        return self._build(offering)

    def find_by_code(self, code: str) -> OfferingSnapshot:
        """Resolve an invite code.

        Raises:
            OfferingNotFoundError: If no offering uses the code.
        """
        try:
            join_code = JoinCode.from_string(code)
        except ValueError:
            raise OfferingNotFoundError(code) from None
        offering = self._store.find_by_join_code(join_code)
        if offering is None:
            raise OfferingNotFoundError(code)
        return self.get_snapshot(offering.id)

    def list_participants(self, offering_id: str | OfferingId) -> list[ParticipantRecord]:
        """Return the active participants of an offering.

        Raises:
            InvalidOfferingIdError: If the offering_id is not a valid UUID.
            OfferingNotFoundError: If the offering does not exist.
        """
        oid = parse_offering_id(offering_id)
        if self._store.get_offering(oid) is None:
            raise OfferingNotFoundError(str(oid))
        return self._store.list_participants(oid)

    def invalidate(self, offering_id: OfferingId) -> None:
        invalidate_snapshot(offering_id, self._cache)

    @staticmethod
    def _build(offering: Offering) -> OfferingSnapshot:
        return OfferingSnapshot(
            offering_id=offering.id,
            title=offering.title,
            kind=offering.kind,
            current_participants=offering.current_participants,
            target_participants=offering.target_participants.value,
            status=offering.status,
            quote=resolve(offering.current_participants, offering.base_price.amount, offering.discount_rules),
            join_code=offering.join_code.value,
            discount_rules=offering.discount_rules,
        )

"""Django ORM implementation of the OfferingStore."""

from datetime import datetime

from django.db import transaction

from smartgroups import models
from smartgroups.domain import (
    Capacity,
    DiscountRule,
    JoinCode,
    Money,
    Offering,
    OfferingId,
    OfferingKind,
    OfferingStatus,
    ParticipantId,
    ParticipantRecord,
    ParticipantStatus,
)
from smartgroups.stores.interfaces import OfferingStore


def _to_domain_offering(row: models.Offering) -> Offering:
    return Offering(
        id=OfferingId(value=row.id),
        title=row.title,
        kind=OfferingKind(row.kind),
        target_participants=Capacity(row.target_participants),
        current_participants=row.current_participants,
        base_price=Money(row.base_price),
        status=OfferingStatus(row.status),
        join_code=JoinCode(row.join_code),
        discount_rules=tuple(
            DiscountRule(threshold=r.threshold, discount_percent=r.discount_percent)
            for r in row.discount_rules.all()
        ),
        expires_at=row.expires_at,
    )


def _to_domain_participant(row: models.ParticipantRecord) -> ParticipantRecord:
    return ParticipantRecord(
        offering_id=OfferingId(value=row.offering_id),
        participant_id=ParticipantId(row.participant_id),
        joined_at=row.joined_at,
        price_paid=Money(row.price_paid),
        status=ParticipantStatus(row.status),
        left_at=row.left_at,
    )


class DjangoOfferingStore(OfferingStore):
    """Relational offering store using Django ORM."""

    def atomic(self):
        return transaction.atomic()

    def add_offering(self, offering: Offering) -> Offering:
        with transaction.atomic():
            row = models.Offering.objects.create(
                id=offering.id.value,
                title=offering.title,
                kind=offering.kind.value,
                target_participants=offering.target_participants.value,
                current_participants=offering.current_participants,
                base_price=offering.base_price.amount,
                status=offering.status.value,
                join_code=offering.join_code.value,
                expires_at=offering.expires_at,
            )
            models.DiscountRule.objects.bulk_create(
                models.DiscountRule(
                    offering=row,
                    threshold=rule.threshold,
                    discount_percent=rule.discount_percent,
                )
                for rule in offering.discount_rules
            )
        return offering

    def get_offering(self, offering_id: OfferingId) -> Offering | None:
        row = (
            models.Offering.objects.prefetch_related("discount_rules")
            .filter(pk=offering_id.value)
            .first()
        )
        return _to_domain_offering(row) if row else None

    def lock_offering(self, offering_id: OfferingId) -> Offering | None:
        row = (
            models.Offering.objects.select_for_update()
            .prefetch_related("discount_rules")
            .filter(pk=offering_id.value)
            .first()
        )
        return _to_domain_offering(row) if row else None

    def find_by_join_code(self, code: JoinCode) -> Offering | None:
        row = (
            models.Offering.objects.prefetch_related("discount_rules")
            .filter(join_code=code.value)
            .first()
        )
        return _to_domain_offering(row) if row else None

    def save_state(self, offering_id: OfferingId, count: int, status: OfferingStatus) -> None:
        # save() rather than QuerySet.update() so post_save invalidation fires.
        with transaction.atomic():
            row = models.Offering.objects.select_for_update().get(pk=offering_id.value)
            row.current_participants = count
            row.status = status.value
            row.save(update_fields=["current_participants", "status", "updated_at"])

    def get_active_participant(
        self, offering_id: OfferingId, participant_id: ParticipantId
    ) -> ParticipantRecord | None:
        row = models.ParticipantRecord.objects.filter(
            offering_id=offering_id.value,
            participant_id=participant_id.value,
            status=models.ParticipantRecord.Status.JOINED,
        ).first()
        return _to_domain_participant(row) if row else None

    def add_participant(self, record: ParticipantRecord) -> ParticipantRecord:
        models.ParticipantRecord.objects.create(
            offering_id=record.offering_id.value,
            participant_id=record.participant_id.value,
            price_paid=record.price_paid.amount,
            status=record.status.value,
            joined_at=record.joined_at,
        )
        return record

    def cancel_participant(
        self, offering_id: OfferingId, participant_id: ParticipantId, left_at: datetime
    ) -> ParticipantRecord:
        row = models.ParticipantRecord.objects.get(
            offering_id=offering_id.value,
            participant_id=participant_id.value,
            status=models.ParticipantRecord.Status.JOINED,
        )
        row.status = models.ParticipantRecord.Status.CANCELLED
        row.left_at = left_at
        row.save(update_fields=["status", "left_at"])
        return _to_domain_participant(row)

    def list_participants(self, offering_id: OfferingId) -> list[ParticipantRecord]:
        rows = models.ParticipantRecord.objects.filter(
            offering_id=offering_id.value,
            status=models.ParticipantRecord.Status.JOINED,
        ).order_by("joined_at")
        return [_to_domain_participant(row) for row in rows]

    def list_due_for_expiry(self, now: datetime) -> list[OfferingId]:
        ids = models.Offering.objects.filter(
            expires_at__lte=now,
            status__in=[models.Offering.Status.ACTIVE, models.Offering.Status.FULL],
        ).values_list("id", flat=True)
        return [OfferingId(value=pk) for pk in ids]

"""Django ORM models (persistence layer).

These models handle database concerns. Domain logic lives in domain/models.py.
"""

import secrets
import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from smartgroups.domain.value_objects import JOIN_CODE_ALPHABET, JOIN_CODE_LENGTH


def generate_join_code() -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


class Offering(models.Model):
    """Persistence model for a group-bookable tour or service."""

    class Kind(models.TextChoices):
        TOUR = "tour", "Tour"
        SERVICE = "service", "Service"

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        FULL = "full", "Full"
        EXPIRED = "expired", "Expired"
        COMPLETED = "completed", "Completed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=255)
    kind = models.CharField(max_length=16, choices=Kind.choices, default=Kind.TOUR)
    target_participants = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    current_participants = models.PositiveIntegerField(default=0)
    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    join_code = models.CharField(max_length=JOIN_CODE_LENGTH, unique=True, default=generate_join_code)
    expires_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "expires_at"], name="offering_status_expiry_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(current_participants__lte=models.F("target_participants")),
                name="offering_count_lte_target",
            ),
            models.CheckConstraint(
                condition=models.Q(target_participants__gte=1),
                name="offering_target_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.title} ({self.current_participants}/{self.target_participants})"


class DiscountRule(models.Model):
    """Persistence model for participant-count discount thresholds."""

    offering = models.ForeignKey(Offering, on_delete=models.CASCADE, related_name="discount_rules")
    threshold = models.PositiveIntegerField()
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )

    class Meta:
        ordering = ["threshold"]
        unique_together = [("offering", "threshold")]

    def __str__(self) -> str:
        return f"{self.discount_percent}% off from {self.threshold} participants"


class ParticipantRecord(models.Model):
    """Persistence model for one traveller's place in a group."""

    class Status(models.TextChoices):
        JOINED = "joined", "Joined"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    offering = models.ForeignKey(Offering, on_delete=models.CASCADE, related_name="participants")
    participant_id = models.CharField(max_length=255)
    price_paid = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.JOINED)
    joined_at = models.DateTimeField()
    left_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["joined_at"]
        indexes = [
            models.Index(fields=["offering", "participant_id"], name="participant_lookup_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["offering", "participant_id"],
                condition=models.Q(status="joined"),
                name="one_active_place_per_participant",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.participant_id} in {self.offering_id} at {self.price_paid}"

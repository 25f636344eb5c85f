import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models

import smartgroups.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Offering",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=255)),
                (
                    "kind",
                    models.CharField(
                        choices=[("tour", "Tour"), ("service", "Service")],
                        default="tour",
                        max_length=16,
                    ),
                ),
                (
                    "target_participants",
                    models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)]),
                ),
                ("current_participants", models.PositiveIntegerField(default=0)),
                ("base_price", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("full", "Full"),
                            ("expired", "Expired"),
                            ("completed", "Completed"),
                        ],
                        default="active",
                        max_length=16,
                    ),
                ),
                (
                    "join_code",
                    models.CharField(default=smartgroups.models.generate_join_code, max_length=8, unique=True),
                ),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["status", "expires_at"], name="offering_status_expiry_idx")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("current_participants__lte", models.F("target_participants"))),
                        name="offering_count_lte_target",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("target_participants__gte", 1)),
                        name="offering_target_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DiscountRule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("threshold", models.PositiveIntegerField()),
                (
                    "discount_percent",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=5,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                (
                    "offering",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="discount_rules",
                        to="smartgroups.offering",
                    ),
                ),
            ],
            options={
                "ordering": ["threshold"],
                "unique_together": {("offering", "threshold")},
            },
        ),
        migrations.CreateModel(
            name="ParticipantRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("participant_id", models.CharField(max_length=255)),
                ("price_paid", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "status",
                    models.CharField(
                        choices=[("joined", "Joined"), ("cancelled", "Cancelled")],
                        default="joined",
                        max_length=16,
                    ),
                ),
                ("joined_at", models.DateTimeField()),
                ("left_at", models.DateTimeField(blank=True, null=True)),
                (
                    "offering",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="participants",
                        to="smartgroups.offering",
                    ),
                ),
            ],
            options={
                "ordering": ["joined_at"],
                "indexes": [
                    models.Index(fields=["offering", "participant_id"], name="participant_lookup_idx")
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "joined")),
                        fields=("offering", "participant_id"),
                        name="one_active_place_per_participant",
                    )
                ],
            },
        ),
    ]

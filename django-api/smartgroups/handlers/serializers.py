"""Serializers for parsing join/leave requests and rendering domain models."""

from rest_framework import serializers


class MembershipRequestSerializer(serializers.Serializer):
    """Body of join and leave requests."""

    offeringId = serializers.CharField(max_length=64)
    participantId = serializers.CharField(max_length=255, trim_whitespace=True)


class DiscountRuleSerializer(serializers.Serializer):
    threshold = serializers.IntegerField()
    discountPercent = serializers.DecimalField(source="discount_percent", max_digits=5, decimal_places=2)


class _QuoteFieldsMixin(serializers.Serializer):
    effectivePrice = serializers.DecimalField(source="quote.effective_price", max_digits=10, decimal_places=2)
    discountPercent = serializers.DecimalField(source="quote.discount_percent", max_digits=5, decimal_places=2)
    originalPrice = serializers.DecimalField(
        source="quote.original_price", max_digits=10, decimal_places=2, allow_null=True
    )

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if data.get("originalPrice") is None:
            data.pop("originalPrice", None)
        return data


class JoinOutcomeSerializer(_QuoteFieldsMixin):
    newCount = serializers.IntegerField(source="new_count")
    becameFull = serializers.BooleanField(source="became_full")


class LeaveOutcomeSerializer(_QuoteFieldsMixin):
    newCount = serializers.IntegerField(source="new_count")
    reopened = serializers.BooleanField()


class OfferingSnapshotSerializer(_QuoteFieldsMixin):
    """Serializer for the offering read model."""

    offeringId = serializers.CharField(source="offering_id")
    title = serializers.CharField()
    kind = serializers.CharField(source="kind.value")
    currentParticipants = serializers.IntegerField(source="current_participants")
    targetParticipants = serializers.IntegerField(source="target_participants")
    status = serializers.CharField(source="status.value")
    joinCode = serializers.CharField(source="join_code")
    discountRules = DiscountRuleSerializer(source="discount_rules", many=True)


class ParticipantSerializer(serializers.Serializer):
    """Serializer for ParticipantRecord domain model."""

    participantId = serializers.CharField(source="participant_id.value")
    joinedAt = serializers.DateTimeField(source="joined_at")
    pricePaid = serializers.DecimalField(source="price_paid.amount", max_digits=10, decimal_places=2)

"""Django signals for read-model cache invalidation.

Covers writes that bypass the coordinator, such as admin edits.
"""

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from smartgroups.domain import OfferingId
from smartgroups.models import DiscountRule, Offering, ParticipantRecord
from smartgroups.services.offering_service import invalidate_snapshot


@receiver([post_save, post_delete], sender=Offering)
def invalidate_offering_cache(sender, instance, **kwargs):
    """Invalidate the snapshot when an offering is saved or deleted."""
    invalidate_snapshot(OfferingId(value=instance.pk))


@receiver([post_save, post_delete], sender=DiscountRule)
def invalidate_discount_rule_cache(sender, instance, **kwargs):
    """Invalidate the snapshot when one of its discount rules changes."""
    invalidate_snapshot(OfferingId(value=instance.offering_id))


@receiver([post_save, post_delete], sender=ParticipantRecord)
def invalidate_participant_cache(sender, instance, **kwargs):
    """Invalidate the snapshot when a participant record changes."""
    invalidate_snapshot(OfferingId(value=instance.offering_id))

"""User-profile lookup used to name joining participants in notifications."""

import logging
from abc import ABC, abstractmethod

from smartgroups.domain import ParticipantId

logger = logging.getLogger(__name__)


class ProfileDirectory(ABC):
    """Interface for the external user-profile collaborator."""

    @abstractmethod
    def get_display_name(self, participant_id: ParticipantId) -> str | None:
        """Return the participant's display name, or None when unavailable."""
        ...


class DjangoUserDirectory(ProfileDirectory):
    """Resolves names from ``django.contrib.auth`` users (pk first, then username)."""

    def get_display_name(self, participant_id: ParticipantId) -> str | None:
        from django.contrib.auth import get_user_model
        from django.core.exceptions import ValidationError

        User = get_user_model()
        try:
            user = User.objects.filter(pk=participant_id.value).first()
        except (ValueError, ValidationError):
            user = None
        if user is None:
            user = User.objects.filter(**{User.USERNAME_FIELD: participant_id.value}).first()
        if user is None:
            logger.debug("No profile for participant %s", participant_id)
            return None
        return user.get_full_name() or user.get_username()

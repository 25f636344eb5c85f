"""DRF throttle backed by the per-actor fixed-window limiter."""

from rest_framework.throttling import BaseThrottle

from smartgroups.services import get_engine


class BookingRateThrottle(BaseThrottle):
    """Limits join/leave attempts per participant (falls back to client address)."""

    def get_actor(self, request) -> str:
        participant_id = None
        if isinstance(request.data, dict):
            participant_id = request.data.get("participantId")
        if participant_id:
            return f"participant:{participant_id}"
        if request.user and request.user.is_authenticated:
            return f"user:{request.user.pk}"
        return f"ip:{self.get_ident(request)}"

    def allow_request(self, request, view) -> bool:
        limiter = get_engine().join_limiter
        self.actor = self.get_actor(request)
        self._wait = None
        if limiter.allow(self.actor):
            return True
        self._wait = limiter.retry_after(self.actor)
        return False

    def wait(self):
        return self._wait

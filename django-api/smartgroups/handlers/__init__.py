from smartgroups.handlers.views import (
    JoinView,
    LeaveView,
    OfferingByCodeView,
    OfferingDetailView,
    ParticipantListView,
)

__all__ = [
    "JoinView",
    "LeaveView",
    "OfferingByCodeView",
    "OfferingDetailView",
    "ParticipantListView",
]

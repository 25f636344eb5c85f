from django.urls import path

from smartgroups.handlers import (
    JoinView,
    LeaveView,
    OfferingByCodeView,
    OfferingDetailView,
    ParticipantListView,
)

urlpatterns = [
    path("offerings/join", JoinView.as_view(), name="offering-join"),
    path("offerings/leave", LeaveView.as_view(), name="offering-leave"),
    path("offerings/code/<str:join_code>", OfferingByCodeView.as_view(), name="offering-by-code"),
    path("offerings/<str:offering_id>", OfferingDetailView.as_view(), name="offering-detail"),
    path(
        "offerings/<str:offering_id>/participants",
        ParticipantListView.as_view(),
        name="offering-participants",
    ),
]

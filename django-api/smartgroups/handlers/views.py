"""HTTP handlers (views) - handle HTTP concerns only.

Handlers:
- Parse requests and validate input format
- Call services for business logic
- Map domain errors to HTTP responses
- Never contain business logic
- Never expose internal error details
"""

import logging

from rest_framework import status
from rest_framework.exceptions import ParseError, Throttled, ValidationError
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.settings import api_settings
from rest_framework.views import APIView, exception_handler

from smartgroups.domain.errors import DomainError, ErrorCode, InvalidRequestError, RateLimitedError
from smartgroups.handlers.serializers import (
    JoinOutcomeSerializer,
    LeaveOutcomeSerializer,
    MembershipRequestSerializer,
    OfferingSnapshotSerializer,
    ParticipantSerializer,
)
from smartgroups.handlers.throttles import BookingRateThrottle
from smartgroups.services import get_engine

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    ErrorCode.OFFERING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_OFFERING_ID: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.OFFERING_FULL: status.HTTP_409_CONFLICT,
    ErrorCode.OFFERING_NOT_JOINABLE: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_JOINED: status.HTTP_409_CONFLICT,
    ErrorCode.NOT_PARTICIPANT: status.HTTP_409_CONFLICT,
    ErrorCode.BUSY: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
}


def error_response(error: DomainError) -> Response:
    response = Response(
        {"code": error.code.value, "message": error.message},
        status=STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST),
    )
    if error.retryable:
        response["Retry-After"] = "1"
    return response


def api_exception_handler(exc, context):
    """Render unparseable or incomplete bodies in the same {code, message} shape as domain errors."""
    if isinstance(exc, (ParseError, ValidationError)):
        fields = ()
        if isinstance(exc.detail, dict):
            fields = tuple(sorted(name for name in exc.detail if name != api_settings.NON_FIELD_ERRORS_KEY))
        error = InvalidRequestError(fields)
        logger.info("Rejected request to %s: %s", context["request"].path, error.message)
        return error_response(error)
    return exception_handler(exc, context)


class _MembershipView(APIView):
    throttle_classes = [BookingRateThrottle]
    outcome_serializer = None

    def perform(self, offering_id: str, participant_id: str):
        raise NotImplementedError

    def post(self, request: Request) -> Response:
        body = MembershipRequestSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        try:
            outcome = self.perform(body.validated_data["offeringId"], body.validated_data["participantId"])
        except DomainError as exc:
            return error_response(exc)
        return Response(self.outcome_serializer(outcome).data, status=self.success_status)

    def throttled(self, request, wait):
        body = request.data if isinstance(request.data, dict) else {}
        error = RateLimitedError(str(body.get("participantId", "")))
        logger.info("Throttled %s for %ss", error.actor_id, wait)
        exc = Throttled(wait=wait)
        exc.detail = {"code": error.code.value, "message": error.message}
        raise exc


class JoinView(_MembershipView):
    """Handler for POST /api/offerings/join"""

    outcome_serializer = JoinOutcomeSerializer
    success_status = status.HTTP_201_CREATED

    def perform(self, offering_id: str, participant_id: str):
        return get_engine().coordinator.join(offering_id, participant_id)


class LeaveView(_MembershipView):
    """Handler for POST /api/offerings/leave"""

    outcome_serializer = LeaveOutcomeSerializer
    success_status = status.HTTP_200_OK

    def perform(self, offering_id: str, participant_id: str):
        return get_engine().coordinator.leave(offering_id, participant_id)


class OfferingDetailView(APIView):
    """Handler for GET /api/offerings/{offering_id}"""

    def get(self, request: Request, offering_id: str) -> Response:
        try:
            snapshot = get_engine().offerings.get_snapshot(offering_id)
        except DomainError as exc:
            return error_response(exc)
        return Response(OfferingSnapshotSerializer(snapshot).data)


class OfferingByCodeView(APIView):
    """Handler for GET /api/offerings/code/{join_code}"""

    def get(self, request: Request, join_code: str) -> Response:
        try:
            snapshot = get_engine().offerings.find_by_code(join_code)
        except DomainError as exc:
            return error_response(exc)
        return Response(OfferingSnapshotSerializer(snapshot).data)


class ParticipantListView(APIView):
    """Handler for GET /api/offerings/{offering_id}/participants"""

    def get(self, request: Request, offering_id: str) -> Response:
        try:
            participants = get_engine().offerings.list_participants(offering_id)
        except DomainError as exc:
            return error_response(exc)
        return Response(ParticipantSerializer(participants, many=True).data)

import logging
from typing import Mapping, Optional

from django.db import connection
from django.urls import reverse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.renderers import JSONRenderer
from rest_framework.response import Response
from rest_framework.views import APIView

from kvstore import metrics
from kvstore.conf import get_max_value_size
from kvstore.exceptions import (
    ERROR_STATUS,
    LengthRequired,
    StoreError,
    ValueTooLarge,
    VersionConflict,
)
from kvstore.negotiation import FallbackContentNegotiation
from kvstore.renderers import OctetStreamRenderer
from kvstore.serializers import (
    PinnedPathSerializer,
    PinnedValueSerializer,
    ValuePathSerializer,
    WritePathSerializer,
    WriteResultSerializer,
)
from kvstore.services import put_value, read_value, read_value_version

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"

TOKEN_PARAMETER = OpenApiParameter(
    name="token",
    type=OpenApiTypes.UUID,
    location=OpenApiParameter.PATH,
    description="Tenant identifier",
)
KEY_PARAMETER = OpenApiParameter(
    name="key",
    type=str,
    location=OpenApiParameter.PATH,
    description="The key within the tenant",
)
VERSION_PARAMETER = OpenApiParameter(
    name="version",
    type=int,
    location=OpenApiParameter.PATH,
    description="Value version",
)


class ValueAPIView(APIView):
    """
    Base view for value endpoints.

    Validates the URL segments with ``path_serializer_class`` and maps store
    errors to responses through ``error_status``, which is handed in through
    ``as_view(error_status=...)``. Any other unexpected exception is logged
    and answered with a generic 500.
    """

    error_status: Mapping[type, int] = ERROR_STATUS
    content_negotiation_class = FallbackContentNegotiation
    path_serializer_class = ValuePathSerializer
    operation = "value operation"

    def get_path_serializer_class(self):
        return self.path_serializer_class

    def get_path_values(self) -> dict:
        serializer = self.get_path_serializer_class()(data=self.kwargs)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    def get_error_status(self, exc: Exception) -> Optional[int]:
        for klass in type(exc).__mro__:
            if klass in self.error_status:
                return self.error_status[klass]
        return None

    def handle_exception(self, exc):
        # error bodies are always JSON, whatever representation was negotiated
        self.request.accepted_renderer = JSONRenderer()
        self.request.accepted_media_type = JSONRenderer.media_type

        status_code = self.get_error_status(exc)
        if status_code is not None:
            return Response(
                {"detail": exc.detail, "code": exc.code},
                status=status_code,
            )

        try:
            return super().handle_exception(exc)
        except Exception:
            logger.exception(f"{self.operation} failed")
            return Response(
                {"detail": "internal server error"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )


class LatestValueView(ValueAPIView):
    """Resolve the current version of a key and redirect to its pinned URL."""

    operation = "resolving latest version"

    @extend_schema(
        operation_id="read_latest",
        summary="Resolve the current version of a value",
        description=(
            "Look up the current version of the key and answer with a temporary "
            "redirect to the version-pinned URL. This response is never cached; "
            "the pinned URL is."
        ),
        parameters=[TOKEN_PARAMETER, KEY_PARAMETER],
        responses={
            307: OpenApiResponse(description="Redirect to the version-pinned URL"),
            400: OpenApiResponse(description="Malformed token or key"),
            404: OpenApiResponse(description="Key not found"),
        },
        tags=["Key-Value Operations"],
    )
    def get(self, request, token: str, key: str):
        values = self.get_path_values()

        try:
            _, version = read_value(values["token"], values["key"])
        except StoreError:
            metrics.mark(metrics.VALUE_GET_FAILURE)
            raise

        path = reverse(
            "kvstore:value-version",
            kwargs={"token": str(values["token"]), "key": values["key"], "version": str(version)},
        )

        prefix = request.headers.get("X-Forwarded-Prefix", "")

        metrics.mark(metrics.VALUE_GET_SUCCESS)
        return Response(
            status=status.HTTP_307_TEMPORARY_REDIRECT,
            headers={"Location": f"{prefix}{path}"},
        )


class ValueVersionView(ValueAPIView):
    """Read a value at an exact version, or conditionally write a new version."""

    def get_path_serializer_class(self):
        if self.request.method == "POST":
            return WritePathSerializer
        return PinnedPathSerializer

    def get_renderers(self):
        if getattr(self.request, "method", None) == "GET":
            return [OctetStreamRenderer(), JSONRenderer()]
        return [JSONRenderer()]

    @extend_schema(
        operation_id="read_version",
        summary="Read a value at an exact version",
        description=(
            "Return the payload if the key is still at the requested version. The "
            "response never changes for a given version and is served as immutable. "
            "Raw bytes by default, or JSON with a base64 value when requested."
        ),
        parameters=[TOKEN_PARAMETER, KEY_PARAMETER, VERSION_PARAMETER],
        responses={
            (200, "application/octet-stream"): OpenApiResponse(
                response=OpenApiTypes.BINARY,
                description="The raw payload",
            ),
            (200, "application/json"): OpenApiResponse(
                response=PinnedValueSerializer,
                description="The payload with its version",
            ),
            400: OpenApiResponse(description="Malformed token, key or version"),
            404: OpenApiResponse(description="Key not found"),
            409: OpenApiResponse(description="Key is at another version"),
        },
        tags=["Key-Value Operations"],
    )
    def get(self, request, token: str, key: str, version: str):
        self.operation = "reading pinned version"
        values = self.get_path_values()

        try:
            payload = read_value_version(values["token"], values["key"], values["version"])
        except StoreError:
            metrics.mark(metrics.VALUE_GET_FAILURE)
            raise

        metrics.mark(metrics.VALUE_GET_SUCCESS)

        if request.accepted_renderer.format == "json":
            data = PinnedValueSerializer({"version": values["version"], "value": payload}).data
        else:
            data = payload

        # queried with the version, so the content can never change
        return Response(data, headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL})

    @extend_schema(
        operation_id="write_version",
        summary="Conditionally write a new version of a value",
        description=(
            "Store the request body as the next version of the key, but only if "
            "the key is currently at the version in the URL. Version 0 creates "
            "the key and fails if it already exists."
        ),
        parameters=[TOKEN_PARAMETER, KEY_PARAMETER, VERSION_PARAMETER],
        request={"application/octet-stream": OpenApiTypes.BINARY},
        responses={
            200: OpenApiResponse(
                response=WriteResultSerializer,
                description="The value was stored",
            ),
            400: OpenApiResponse(description="Malformed token, key or version"),
            409: OpenApiResponse(description="The key is not at the expected version"),
            411: OpenApiResponse(description="The request did not declare a Content-Length"),
            413: OpenApiResponse(description="The value exceeds the size limit"),
        },
        tags=["Key-Value Operations"],
    )
    def post(self, request, token: str, key: str, version: str):
        self.operation = "storing value"
        values = self.get_path_values()
        max_size = get_max_value_size()

        metrics.mark(metrics.VALUE_PUT)

        # the WSGI request only exposes as many body bytes as were declared
        declared_length = _declared_length(request)
        if declared_length is None:
            raise LengthRequired()

        if declared_length > max_size:
            metrics.observe_size(declared_length)
            metrics.mark(metrics.VALUE_TOO_LARGE)
            raise ValueTooLarge(f"value exceeds {max_size} bytes")

        # read the complete value into memory
        payload = request.body
        metrics.observe_size(len(payload))

        try:
            new_version = put_value(values["token"], values["key"], payload, values["version"])
        except VersionConflict:
            metrics.mark(metrics.VALUE_VERSION_CONFLICT)
            raise

        return Response(WriteResultSerializer({"version": new_version}).data)


class HealthCheckView(APIView):
    """Health check including database reachability."""

    @extend_schema(
        operation_id="health_check",
        summary="Health check",
        description="Returns the health of this node and whether the database answers.",
        responses={
            200: OpenApiResponse(description="Node and database are healthy"),
            503: OpenApiResponse(description="Database is unreachable"),
        },
        tags=["Health & Monitoring"],
    )
    def get(self, request):
        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
        except Exception:
            logger.exception("Health check could not reach the database")
            return Response(
                {"status": "unhealthy", "database": "unreachable"},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        return Response({"status": "healthy", "database": "ok"}, status=status.HTTP_200_OK)


class MetricsView(APIView):
    """Current request counters."""

    @extend_schema(
        operation_id="metrics",
        summary="Request counters",
        description="Counters for writes, conflicts, oversize values, reads and payload sizes.",
        responses={200: OpenApiResponse(description="Counter values by name")},
        tags=["Health & Monitoring"],
    )
    def get(self, request):
        return Response(metrics.snapshot())


def _declared_length(request) -> Optional[int]:
    try:
        length = int(request.META["CONTENT_LENGTH"])
    except (KeyError, ValueError):
        return None
    return length if length >= 0 else None

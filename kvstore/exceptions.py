"""
Domain errors raised by the value store.

These are expected outcomes of normal operation (a missing key, a lost write
race) and are mapped to HTTP statuses by the views through ``ERROR_STATUS``.
They are never logged as failures.
"""

from types import MappingProxyType
from typing import Optional

from rest_framework import status


class StoreError(Exception):
    """Base class for all expected store outcomes."""

    default_detail = "store error"
    default_code = "store_error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        self.code = self.default_code
        super().__init__(self.detail)


class NoSuchKey(StoreError):
    default_detail = "no such key"
    default_code = "no_such_key"


class VersionConflict(StoreError):
    default_detail = "version conflict"
    default_code = "version_conflict"


class VersionMismatch(StoreError):
    default_detail = "version mismatch"
    default_code = "version_mismatch"


class ValueTooLarge(StoreError):
    default_detail = "value too large"
    default_code = "value_too_large"


class LengthRequired(StoreError):
    default_detail = "request must declare a Content-Length"
    default_code = "length_required"


# Read-only, handed to the views via as_view(error_status=...).
ERROR_STATUS = MappingProxyType(
    {
        NoSuchKey: status.HTTP_404_NOT_FOUND,
        VersionConflict: status.HTTP_409_CONFLICT,
        VersionMismatch: status.HTTP_409_CONFLICT,
        ValueTooLarge: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        LengthRequired: status.HTTP_411_LENGTH_REQUIRED,
    }
)

import logging
from typing import Tuple
from uuid import UUID

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from kvstore.exceptions import NoSuchKey, VersionConflict, VersionMismatch
from kvstore.models import ValueEntry

logger = logging.getLogger(__name__)


def put_value(token: UUID, key: str, payload: bytes, expected_version: int) -> int:
    """
    Conditionally write a value (compare-and-swap on the version counter).

    An expected version of 0 means "create, must not exist yet"; the insert is
    guarded by the unique (token, key) constraint. Any other expected version
    is applied as a single UPDATE whose WHERE clause carries the version check,
    so concurrent writers with the same expected version cannot both succeed.
    There is no read-then-write window.

    The payload size is not checked here; callers validate it.

    Args:
        token: Tenant identifier
        key: The key to write
        payload: The new value
        expected_version: Version the caller believes is current (0 for none)

    Returns:
        The new version of the value

    Raises:
        VersionConflict: If the stored version differs from the expected one
    """
    now = timezone.now()

    with transaction.atomic():
        if expected_version == 0:
            try:
                # savepoint, so a failed insert does not poison the outer transaction
                with transaction.atomic():
                    ValueEntry.objects.create(
                        token=token, key=key, version=1, created_at=now, payload=payload
                    )
            except IntegrityError as exc:
                raise VersionConflict(f"key {key!r} already exists") from exc

            new_version = 1

        else:
            updated = ValueEntry.objects.filter(
                token=token, key=key, version=expected_version
            ).update(
                payload=payload,
                created_at=now,
                version=F("version") + 1,
            )

            # no matching row: either absent or at another version
            if not updated:
                raise VersionConflict(f"key {key!r} is not at version {expected_version}")

            new_version = expected_version + 1

    logger.debug(f"Stored {len(payload)} bytes for {token}/{key} at version {new_version}")
    return new_version


def read_value(token: UUID, key: str) -> Tuple[bytes, int]:
    """
    Read the current payload and version of a key.

    Raises:
        NoSuchKey: If nothing was ever written to (token, key)
    """
    with transaction.atomic():
        try:
            payload, version = ValueEntry.objects.values_list("payload", "version").get(
                token=token, key=key
            )
        except ValueEntry.DoesNotExist as exc:
            raise NoSuchKey(f"no value for key {key!r}") from exc

    # postgres hands out memoryview, sqlite bytes
    return bytes(payload), version


def read_value_version(token: UUID, key: str, version: int) -> bytes:
    """
    Read the payload of a key only if it is still at the given version.

    Superseded versions are not retained, so any version other than the
    current one is unsatisfiable.

    Raises:
        NoSuchKey: If nothing was ever written to (token, key)
        VersionMismatch: If the current version differs from ``version``
    """
    payload, current_version = read_value(token, key)
    if current_version != version:
        raise VersionMismatch(
            f"key {key!r} is at version {current_version}, not {version}"
        )

    return payload

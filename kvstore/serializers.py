import base64

from rest_framework import serializers

# PositiveIntegerField upper bound on every supported database
MAX_VERSION = 2**31 - 1


class Base64BytesField(serializers.Field):
    """Read-only field rendering bytes as standard base64 text."""

    def __init__(self, **kwargs):
        kwargs["read_only"] = True
        super().__init__(**kwargs)

    def to_representation(self, value):
        return base64.b64encode(bytes(value)).decode("ascii")


class ValuePathSerializer(serializers.Serializer):
    """Validates the token and key segments of a value URL."""

    token = serializers.UUIDField(help_text="Tenant identifier (UUID)")
    key = serializers.CharField(
        trim_whitespace=False,
        help_text="The key within the tenant. Must not be empty.",
    )


class WritePathSerializer(ValuePathSerializer):
    """Path of a conditional write; version 0 means the key must not exist yet."""

    version = serializers.IntegerField(
        min_value=0,
        max_value=MAX_VERSION - 1,
        help_text="The version the client expects to be current (0 to create)",
    )


class PinnedPathSerializer(ValuePathSerializer):
    """Path of a version-pinned read."""

    version = serializers.IntegerField(
        min_value=1,
        max_value=MAX_VERSION,
        help_text="The exact version to read",
    )


class WriteResultSerializer(serializers.Serializer):
    version = serializers.IntegerField(help_text="The new version of the value")


class PinnedValueSerializer(serializers.Serializer):
    """JSON representation of a version-pinned value."""

    version = serializers.IntegerField(help_text="The version of the value")
    value = Base64BytesField(help_text="The payload, base64 encoded")

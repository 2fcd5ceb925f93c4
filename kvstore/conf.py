from typing import Any, Dict

from django.conf import settings

DEFAULTS: Dict[str, Any] = {
    "MAX_VALUE_SIZE": 1024 * 256,
    "METRICS_PREFIX": "kv",
}


def get_setting(name: str) -> Any:
    """
    Read a value from ``settings.KV_STORE``, falling back to the defaults.

    Args:
        name: Setting name, e.g. ``MAX_VALUE_SIZE``

    Returns:
        The configured value or its default
    """
    return getattr(settings, "KV_STORE", {}).get(name, DEFAULTS[name])


def get_max_value_size() -> int:
    return int(get_setting("MAX_VALUE_SIZE"))

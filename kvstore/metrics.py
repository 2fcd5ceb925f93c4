"""
Request counters kept in the Django cache.

Counters are observational only; nothing reads them back except the
``/metrics/`` endpoint. Payload sizes are recorded into power-of-two buckets.
"""

import bisect
from typing import Dict, List

from django.core.cache import cache

from kvstore.conf import get_max_value_size, get_setting

CACHE_KEY_PREFIX = "metrics:"

VALUE_PUT = "value.put"
VALUE_TOO_LARGE = "value.toolarge"
VALUE_VERSION_CONFLICT = "value.version.conflict"
VALUE_GET_SUCCESS = "value.get[success:true]"
VALUE_GET_FAILURE = "value.get[success:false]"

COUNTERS = (
    VALUE_PUT,
    VALUE_TOO_LARGE,
    VALUE_VERSION_CONFLICT,
    VALUE_GET_SUCCESS,
    VALUE_GET_FAILURE,
)


def _size_buckets() -> List[int]:
    buckets = [1]
    while buckets[-1] < get_max_value_size():
        buckets.append(buckets[-1] * 2)
    return buckets


def _size_metric(bucket) -> str:
    return f"value.size[le:{bucket}]"


def _metric_name(name: str) -> str:
    return f"{get_setting('METRICS_PREFIX')}.{name}"


def _cache_key(name: str) -> str:
    return f"{CACHE_KEY_PREFIX}{_metric_name(name)}"


def mark(name: str, count: int = 1) -> None:
    """Increment the counter ``name`` by ``count``."""
    key = _cache_key(name)
    cache.add(key, 0, timeout=None)
    try:
        cache.incr(key, count)
    except ValueError:
        # evicted between add and incr
        cache.set(key, count, timeout=None)


def observe_size(size: int) -> None:
    """Record a payload size in the size histogram."""
    buckets = _size_buckets()
    index = bisect.bisect_left(buckets, size)
    bucket = buckets[index] if index < len(buckets) else "+Inf"
    mark(_size_metric(bucket))


def snapshot() -> Dict[str, int]:
    """
    Return the current value of every counter and size bucket.

    Counters that were never incremented are reported as 0.
    """
    names = list(COUNTERS)
    names.extend(_size_metric(bucket) for bucket in _size_buckets())
    names.append(_size_metric("+Inf"))

    stored = cache.get_many([_cache_key(name) for name in names])
    return {_metric_name(name): stored.get(_cache_key(name), 0) for name in names}

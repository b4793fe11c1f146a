"""certflow kernel utilities."""

from .errors import StoreError, describe_store_error
from .fingerprint import CanonicalJsonTypeError, canonical_dumps, fingerprint
from .record_map import ABSENT, RecordMap, same_value

__all__ = [
    "ABSENT",
    "CanonicalJsonTypeError",
    "RecordMap",
    "StoreError",
    "canonical_dumps",
    "describe_store_error",
    "fingerprint",
    "same_value",
]

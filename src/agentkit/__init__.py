"""agentkit kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, fingerprint
from .field_path import FieldPathError, get_field, has_field, set_field

__all__ = [
    "CanonicalJsonTypeError",
    "FieldPathError",
    "canonical_dumps",
    "fingerprint",
    "get_field",
    "has_field",
    "set_field",
]

"""Utility modules."""

from reconciler.utils.normalization import (
    NormalizedPhone,
    canonical_phone,
    normalize_email,
    normalize_name,
    normalize_phone,
    split_full_name,
)

__all__ = [
    "NormalizedPhone",
    "canonical_phone",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "split_full_name",
]

"""Data normalization utilities for consistent identity matching."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import phonenumbers
from phonenumbers import NumberParseException

logger = logging.getLogger(__name__)

DEFAULT_REGION = "US"


@dataclass(frozen=True)
class NormalizedPhone:
    """
    Result of phone normalization.

    phone_e164 is None when the input could not be parsed; callers must
    treat it as optional and fall back to phone_raw for display.
    """

    phone_raw: str | None
    phone_e164: str | None

    @property
    def is_canonical(self) -> bool:
        return self.phone_e164 is not None


def _parse_e164(text: str, region: str) -> str | None:
    try:
        number = phonenumbers.parse(text, region)
    except NumberParseException:
        return None
    if not phonenumbers.is_possible_number(number):
        return None
    return phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164)


def normalize_phone(phone: Any, region: str = DEFAULT_REGION) -> NormalizedPhone:
    """
    Normalize free-text phone input to E.164 (+15551234567).

    Accepts any formatting the phonenumbers parser understands:
    "(555) 123-4567", "555.123.4567", "+1 555 123 4567", "15551234567".
    Numbers only need to be *possible* for the region, not assigned, so
    test and fictional ranges still canonicalize.

    Never raises. Unparseable input returns the stripped raw text with
    phone_e164=None.
    """
    if phone is None:
        return NormalizedPhone(phone_raw=None, phone_e164=None)

    raw = str(phone).strip()
    if not raw:
        return NormalizedPhone(phone_raw=None, phone_e164=None)

    e164 = _parse_e164(raw, region or DEFAULT_REGION)
    if e164 is None:
        logger.info("Phone could not be normalized; keeping raw value only")
    return NormalizedPhone(phone_raw=raw, phone_e164=e164)


def canonical_phone(phone: Any, region: str = DEFAULT_REGION) -> Optional[str]:
    """
    Canonical form of a phone string.

    E.164 when parseable, otherwise the stripped input. Idempotent:
    canonical_phone(canonical_phone(x)) == canonical_phone(x).
    """
    normalized = normalize_phone(phone, region)
    return normalized.phone_e164 or normalized.phone_raw


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Args:
        email: Raw email input

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    """
    Normalize name by stripping whitespace and collapsing multiple spaces.

    Args:
        name: Raw name input

    Returns:
        Cleaned name or None if empty
    """
    if not name:
        return None
    cleaned = " ".join(str(name).split())
    return cleaned or None


def split_full_name(full_name: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split "John Smith" into ("John", "Smith"); single tokens become first names."""
    cleaned = normalize_name(full_name)
    if not cleaned:
        return None, None
    first, _, last = cleaned.partition(" ")
    return first, (last or None)

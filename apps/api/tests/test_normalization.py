"""Tests for phone, email and name normalization."""

import pytest

from reconciler.utils.normalization import (
    canonical_phone,
    normalize_email,
    normalize_name,
    normalize_phone,
    split_full_name,
)


@pytest.mark.parametrize(
    "raw",
    [
        "(555) 123-4567",
        "555.123.4567",
        "555-123-4567",
        "+1 555 123 4567",
        "15551234567",
        "  5551234567 ",
    ],
)
def test_normalize_phone_formats_converge_on_e164(raw):
    result = normalize_phone(raw)
    assert result.phone_e164 == "+15551234567"
    assert result.phone_raw == raw.strip()
    assert result.is_canonical


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_normalize_phone_blank_input(raw):
    result = normalize_phone(raw)
    assert result.phone_e164 is None
    assert result.phone_raw is None


def test_normalize_phone_unparseable_keeps_raw():
    result = normalize_phone("call me maybe")
    assert result.phone_e164 is None
    assert result.phone_raw == "call me maybe"
    assert not result.is_canonical


def test_normalize_phone_uses_region_for_national_numbers():
    assert normalize_phone("020 7946 0958", region="GB").phone_e164 == "+442079460958"


def test_normalize_phone_accepts_numeric_input():
    assert normalize_phone(5551234567).phone_e164 == "+15551234567"


@pytest.mark.parametrize(
    "raw",
    ["(555) 123-4567", "+1 555 123 4567", "not a phone", "12", "+44 20 7946 0958"],
)
def test_canonical_phone_is_idempotent(raw):
    once = canonical_phone(raw)
    assert canonical_phone(once) == once


def test_normalize_email():
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
    assert normalize_email("") is None
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


def test_normalize_name_collapses_whitespace():
    assert normalize_name("  Mary   Ann  ") == "Mary Ann"
    assert normalize_name("") is None


def test_split_full_name():
    assert split_full_name("Jane Doe") == ("Jane", "Doe")
    assert split_full_name("Jane  van der Berg") == ("Jane", "van der Berg")
    assert split_full_name("Cher") == ("Cher", None)
    assert split_full_name("  ") == (None, None)

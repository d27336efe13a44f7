"""
GSTIN validation - structure, state code and check digit.

A GSTIN is 15 characters: two-digit state code, ten-character PAN, entity
number, the letter Z and a mod-36 check digit.

Pure functions with no I/O.

Usage:
    from voucher_engines.gstin import validate_gstin

    result = validate_gstin("27AAPFU0939F1ZV")
    result.is_valid     # True
    result.state_code   # "27"
    result.pan          # "AAPFU0939F"
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# 01-38 are states and union territories; 97 is "other territory"
_DEFAULT_STATE_CODES = frozenset({f"{n:02d}" for n in range(1, 39)} | {"97"})


@dataclass(frozen=True)
class GstinValidation:
    gstin: str
    is_valid: bool
    error: str | None = None
    state_code: str | None = None
    state_name: str | None = None
    pan: str | None = None
    entity_number: str | None = None
    check_digit: str | None = None


def check_digit(body: str) -> str:
    """
    Check character for the first 14 characters of a GSTIN.

    Each character's value is multiplied by 1 or 2 alternately; the quotient
    and remainder of each product by 36 are summed.
    """
    total = 0
    for index, char in enumerate(body):
        product = _ALPHABET.index(char) * (2 if index % 2 else 1)
        total += product // 36 + product % 36
    return _ALPHABET[(36 - total % 36) % 36]


def validate_gstin(
    gstin: str | None,
    state_names: Mapping[str, str] | None = None,
) -> GstinValidation:
    """
    Validate a GSTIN.

    Args:
        gstin: Candidate identifier; surrounding spaces and case are ignored.
        state_names: State code -> display name.  When given, the state code
            must be one of its keys; otherwise codes 01-38 and 97 pass.

    Returns:
        GstinValidation; ``error`` names the first failed check.
    """
    if not gstin or not isinstance(gstin, str):
        return GstinValidation(gstin=str(gstin or ""), is_valid=False, error="GSTIN is required")

    clean = gstin.strip().upper()
    if len(clean) != 15:
        return GstinValidation(clean, False, "GSTIN must be exactly 15 characters long")
    if not _PATTERN.match(clean):
        return GstinValidation(clean, False, "GSTIN format is invalid")

    state_code = clean[:2]
    known = state_names.keys() if state_names is not None else _DEFAULT_STATE_CODES
    if state_code not in known:
        return GstinValidation(
            clean, False, f"Invalid state code: {state_code}", state_code=state_code
        )

    expected = check_digit(clean[:14])
    if clean[14] != expected:
        return GstinValidation(
            clean, False, "GSTIN check digit is invalid", state_code=state_code
        )

    return GstinValidation(
        gstin=clean,
        is_valid=True,
        state_code=state_code,
        state_name=state_names.get(state_code) if state_names is not None else None,
        pan=clean[2:12],
        entity_number=clean[12],
        check_digit=clean[14],
    )

"""
Phone number validation for attendee and profile forms.

Accepted inputs (Indian mobile numbers):
- 10 digits: 9876543210
- with country code: +919876543210, 919876543210
- with spaces/dashes/parentheses: +91 98765 43210, 98765-43210
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Optional

_STRIP = re.compile(r"[\s\-()]")

_PATTERNS = (
    re.compile(r"^\+91[6-9]\d{9}$"),
    re.compile(r"^91[6-9]\d{9}$"),
    re.compile(r"^[6-9]\d{9}$"),
)

_STORED = re.compile(r"^\+91[6-9]\d{9}$")


@dataclass(frozen=True)
class PhoneValidation:
    is_valid: bool
    error: Optional[str] = None
    formatted: Optional[str] = None


def validate_phone_number(phone: Optional[str]) -> PhoneValidation:
    if not phone or not isinstance(phone, str):
        return PhoneValidation(False, error="Phone number is required")

    cleaned = _STRIP.sub("", phone)

    if not any(p.fullmatch(cleaned) for p in _PATTERNS):
        return PhoneValidation(
            False, error="Please enter a valid 10-digit Indian phone number"
        )

    digits = cleaned
    if cleaned.startswith("+91"):
        digits = cleaned[3:]
    elif cleaned.startswith("91") and len(cleaned) == 12:
        digits = cleaned[2:]

    return PhoneValidation(True, formatted=f"+91{digits}")


def format_phone_for_display(phone: Optional[str]) -> str:
    """+919876543210 -> +91 98765 43210"""
    if not phone:
        return ""

    cleaned = _STRIP.sub("", phone)

    if cleaned.startswith("+91") and len(cleaned) == 13:
        digits = cleaned[3:]
        return f"+91 {digits[:5]} {digits[5:]}"

    if len(cleaned) == 10:
        return f"+91 {cleaned[:5]} {cleaned[5:]}"

    return phone


def is_valid_phone_number(phone: Optional[str]) -> bool:
    return validate_phone_number(phone).is_valid


def is_phone_number(value: str) -> bool:
    # the stored form only: +91 followed by ten digits
    return bool(_STORED.fullmatch(value or ""))


def to_phone_number(value: str) -> str:
    if not is_phone_number(value):
        raise ValueError(f"Invalid phone number format: {value}")
    return value

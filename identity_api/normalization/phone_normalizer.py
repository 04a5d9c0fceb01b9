"""Phone number normalizer.

Converts a submitted phone string to E.164 (e.g. ``+12125551234``) when
``phonenumbers`` recognises it.  Submissions are free-form strings, so a
value that cannot be parsed as a valid number is kept in a compact form
(surrounding whitespace and common separators removed) rather than
rejected.

Raw values are never logged.
"""
from __future__ import annotations

import logging
import re

import phonenumbers

logger = logging.getLogger(__name__)

_DEFAULT_REGION = "US"
_SEPARATORS = re.compile(r"[\s().\-]")


def to_e164(raw: str, *, default_region: str = _DEFAULT_REGION) -> str | None:
    """Return *raw* in E.164 format, or ``None`` if it is not a valid number."""
    if not raw or not raw.strip():
        return None

    try:
        parsed = phonenumbers.parse(raw, default_region)
    except phonenumbers.NumberParseException:
        logger.debug("phone_normalizer: could not parse input (length=%d)", len(raw))
        return None

    if not phonenumbers.is_valid_number(parsed):
        logger.debug("phone_normalizer: parsed but invalid number")
        return None

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def normalize_contact_phone(raw: str, *, default_region: str = _DEFAULT_REGION) -> str | None:
    """Return the canonical form of a submitted phone number.

    ``None`` only for blank input.
    """
    if not raw or not raw.strip():
        return None
    e164 = to_e164(raw, default_region=default_region)
    if e164 is not None:
        return e164
    return _SEPARATORS.sub("", raw.strip())

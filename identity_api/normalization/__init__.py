"""Normalization package.

Optional canonicalization applied to an observation before it is matched
against stored contacts.  Enabled with ``NORMALIZE_CONTACTS=true``; when
disabled, emails and phone numbers are matched exactly as submitted.
"""
from __future__ import annotations

from identity_api.normalization.email_normalizer import normalize_email
from identity_api.normalization.phone_normalizer import normalize_contact_phone


def normalize_observation(
    email: str | None,
    phone_number: str | None,
    *,
    default_region: str = "US",
) -> tuple[str | None, str | None]:
    """Return the canonical ``(email, phone_number)`` pair.

    Values that normalize to an empty string become ``None``.
    """
    if email is not None:
        email = normalize_email(email) or None
    if phone_number is not None:
        phone_number = normalize_contact_phone(phone_number, default_region=default_region)
    return email, phone_number

"""POST /identify — resolve an email/phone observation to its identity.

The request and response bodies are a fixed wire contract::

    request   {"email"?: str, "phoneNumber"?: str}
    response  {"contact": {"primaryContactId": int, "emails": [str],
               "phoneNumbers": [str], "secondaryContactIds": [int]}}

Validation failures never reach the resolver.  When
``IDENTIFY_CONFLICT_RETRIES`` is set, a resolution aborted by a
serialization failure or deadlock is re-run in a fresh transaction.
"""
from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.exc import DBAPIError

from identity_api.api.deps import get_identity_resolver
from identity_api.core.settings import Settings, get_settings
from identity_api.identity.resolver import IdentityResolver
from identity_api.normalization import normalize_observation

logger = logging.getLogger(__name__)

router = APIRouter(tags=["identify"])

# PostgreSQL serialization_failure and deadlock_detected
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------

class IdentifyBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    phone_number: str | None = Field(default=None, alias="phoneNumber")

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_absent(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("phone_number", mode="before")
    @classmethod
    def coerce_phone_number(cls, value):
        if isinstance(value, bool):
            raise ValueError("phoneNumber must be a string")
        if isinstance(value, int):
            value = str(value)
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("email")
    @classmethod
    def email_shape(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        # Syntax only; the stored value stays exactly as received.
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError("Invalid email") from exc
        return value

    @model_validator(mode="after")
    def email_or_phone_number(self):
        if self.email is None and self.phone_number is None:
            raise ValueError("At least one of email or phoneNumber is required")
        return self


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in _CONFLICT_SQLSTATES


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/identify", summary="Resolve a contact identity")
def identify(
    body: IdentifyBody,
    resolver: IdentityResolver = Depends(get_identity_resolver),
    settings: Settings = Depends(get_settings),
) -> dict:
    email, phone_number = body.email, body.phone_number
    if settings.normalize_contacts:
        email, phone_number = normalize_observation(
            email,
            phone_number,
            default_region=settings.default_phone_region,
        )

    attempts = settings.identify_conflict_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            projection = resolver.resolve(email, phone_number)
        except DBAPIError as exc:
            if attempt < attempts and _is_conflict(exc):
                logger.warning("Identify transaction conflict, retrying (attempt %d/%d)", attempt, attempts)
                continue
            raise
        return projection.to_payload()

"""Append-only audit logger for identity link mutations.

Provides ``record_event()`` to persist ``AuditEvent`` rows.  The detail
payload carries ids and precedence values only; email addresses and
phone numbers are never written to the audit trail or to log output.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from identity_api.audit.events import VALID_EVENT_TYPES
from identity_api.db.models import AuditEvent
from identity_api.db.repositories import AuditEventRepository

logger = logging.getLogger(__name__)


def record_event(
    db_session: Session,
    event_type: str,
    *,
    contact_id: int | None = None,
    primary_contact_id: int | None = None,
    actor: str = "system",
    detail: dict | None = None,
) -> AuditEvent:
    """Create and persist an immutable ``AuditEvent``.

    Raises ``ValueError`` for invalid inputs.  Flushes but does **not**
    commit; the caller controls the transaction boundary.
    """
    if event_type not in VALID_EVENT_TYPES:
        raise ValueError(
            f"Invalid event_type {event_type!r}; "
            f"must be one of {sorted(VALID_EVENT_TYPES)}"
        )

    if not actor or not actor.strip():
        raise ValueError("actor must be a non-empty string")

    event = AuditEventRepository(db_session).create(
        event_type=event_type,
        contact_id=contact_id,
        primary_contact_id=primary_contact_id,
        actor=actor,
        detail=detail,
        immutable=True,
    )

    logger.debug(
        "Audit event recorded: type=%s contact_id=%s primary_contact_id=%s",
        event_type,
        contact_id,
        primary_contact_id,
    )
    return event


def get_contact_history(db_session: Session, contact_id: int) -> list[AuditEvent]:
    """Return all ``AuditEvent`` rows for *contact_id*, oldest first."""
    stmt = (
        select(AuditEvent)
        .where(AuditEvent.contact_id == contact_id)
        .order_by(AuditEvent.timestamp.asc())
    )
    return list(db_session.execute(stmt).scalars().all())


def get_recent_events(db_session: Session, limit: int = 10) -> list[AuditEvent]:
    """Return the *limit* most recent ``AuditEvent`` rows, newest first."""
    stmt = select(AuditEvent).order_by(AuditEvent.timestamp.desc()).limit(limit)
    return list(db_session.execute(stmt).scalars().all())

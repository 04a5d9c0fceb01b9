"""Audit trail routes — GET /audit/{contact_id}/history, GET /audit/recent."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from identity_api.api.deps import get_db
from identity_api.audit.audit_log import get_contact_history, get_recent_events
from identity_api.db.models import AuditEvent

router = APIRouter(prefix="/audit", tags=["audit"])


def _serialize_event(ev: AuditEvent) -> dict:
    return {
        "event_type": ev.event_type,
        "contact_id": ev.contact_id,
        "primary_contact_id": ev.primary_contact_id,
        "actor": ev.actor,
        "detail": ev.detail or {},
        "timestamp": ev.timestamp.isoformat() if ev.timestamp else None,
    }


@router.get("/recent", summary="Get most recent audit events")
def get_recent(limit: int = Query(default=10, ge=1, le=500), db: Session = Depends(get_db)):
    return [_serialize_event(ev) for ev in get_recent_events(db, limit)]


@router.get("/{contact_id}/history", summary="Get audit history for a contact")
def get_history(contact_id: int, db: Session = Depends(get_db)):
    events = get_contact_history(db, contact_id)
    if not events:
        raise HTTPException(status_code=404, detail=f"No audit history for contact {contact_id}")

    return [_serialize_event(ev) for ev in events]

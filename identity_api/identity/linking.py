"""Pure link-graph logic over an in-memory cluster snapshot.

Nothing here touches the database.  The resolver loads a cluster, asks
this module what to change, then issues exactly those writes.

Reconciliation is union-by-earliest-created: of all primaries in a
cluster, the one with the oldest ``created_at`` (lowest ``id`` on a tie)
stays canonical and every other member is pointed straight at it.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from identity_api.core.errors import ClusterIntegrityError
from identity_api.db.models import Contact, LinkPrecedence


# ---------------------------------------------------------------------------
# Output dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LinkChange:
    """One contact whose precedence or link target must be rewritten."""

    contact_id: int
    previous_precedence: str
    previous_linked_id: int | None

    @property
    def is_demotion(self) -> bool:
        return self.previous_precedence == LinkPrecedence.PRIMARY.value


@dataclass(frozen=True)
class ContactProjection:
    """The unified view of one identity cluster."""

    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    def to_payload(self) -> dict:
        return {
            "contact": {
                "primaryContactId": self.primary_contact_id,
                "emails": list(self.emails),
                "phoneNumbers": list(self.phone_numbers),
                "secondaryContactIds": list(self.secondary_contact_ids),
            }
        }


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ordering_key(contact: Contact) -> tuple[datetime, int]:
    """Sort key: creation time, then id."""
    return _as_utc(contact.created_at), contact.id


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def choose_canonical(cluster: Iterable[Contact]) -> Contact:
    """Return the oldest primary in *cluster*.

    Raises ``ClusterIntegrityError`` when the cluster has no primary,
    which only happens if the stored links already form a cycle.
    """
    primaries = [c for c in cluster if c.is_primary]
    if not primaries:
        raise ClusterIntegrityError(
            "Contact cluster has no primary record",
            meta={"contact_ids": sorted(c.id for c in cluster)},
        )
    return min(primaries, key=ordering_key)


def plan_reconciliation(cluster: Sequence[Contact], canonical: Contact) -> list[LinkChange]:
    """Return the minimal set of link rewrites that flattens *cluster*.

    Every member other than *canonical* must end up ``secondary`` with
    ``linked_id == canonical.id``; members already in that state are
    left out.
    """
    changes: list[LinkChange] = []
    for contact in sorted(cluster, key=ordering_key):
        if contact.id == canonical.id:
            continue
        if (
            contact.link_precedence == LinkPrecedence.SECONDARY.value
            and contact.linked_id == canonical.id
        ):
            continue
        changes.append(LinkChange(
            contact_id=contact.id,
            previous_precedence=contact.link_precedence,
            previous_linked_id=contact.linked_id,
        ))
    return changes


# ---------------------------------------------------------------------------
# Augmentation
# ---------------------------------------------------------------------------

def has_new_information(
    cluster: Iterable[Contact],
    email: str | None,
    phone_number: str | None,
) -> bool:
    """Return True when the observation adds an email or phone to *cluster*.

    A new email and a new phone are independent triggers.  An observation
    whose exact ``(email, phone_number)`` pair is already stored never
    adds anything.
    """
    members = list(cluster)
    known_emails = {c.email for c in members if c.email is not None}
    known_phones = {c.phone_number for c in members if c.phone_number is not None}

    new_email = email is not None and email not in known_emails
    new_phone = phone_number is not None and phone_number not in known_phones
    if not (new_email or new_phone):
        return False

    return not any(c.email == email and c.phone_number == phone_number for c in members)


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

def _unique(values: Iterable[str | None]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value is None or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def build_projection(canonical: Contact, cluster: Iterable[Contact]) -> ContactProjection:
    """Project a reconciled cluster into its response view.

    The canonical record's values come first, then the secondaries in
    creation order.  Ordering depends only on stored data, so repeating a
    resolution yields an identical projection.
    """
    secondaries = sorted(
        (c for c in cluster if c.id != canonical.id),
        key=ordering_key,
    )
    members = [canonical, *secondaries]
    return ContactProjection(
        primary_contact_id=canonical.id,
        emails=_unique(c.email for c in members),
        phone_numbers=_unique(c.phone_number for c in members),
        secondary_contact_ids=[c.id for c in secondaries],
    )

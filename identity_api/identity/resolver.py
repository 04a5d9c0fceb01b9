"""Identity resolver.

Links an observation (email, phone number, or both) to the stored contact
graph and returns the unified view of the identity it belongs to.  One
call runs five phases inside a single transaction:

  match      live contacts sharing the email or the phone number
  expand     walk primary/secondary links until the cluster is closed
  reconcile  keep the oldest primary, point every other member at it
  augment    store a new secondary if the observation adds information
  project    canonical id, emails, phone numbers, secondary ids

Either every write of a resolution commits or none does.  The resolver
holds no locks of its own; concurrent resolutions on one cluster are
serialized by the row locks ``ContactRepository`` takes while reading.
No retries happen here.
"""
from __future__ import annotations

import logging
from collections import deque

from sqlalchemy.orm import Session

from identity_api.audit.audit_log import record_event
from identity_api.audit.events import (
    EVENT_CONTACT_CREATED,
    EVENT_CONTACT_DEMOTED,
    EVENT_CONTACT_LINKED,
    EVENT_CONTACT_RELINKED,
)
from identity_api.core.errors import ClusterIntegrityError, ObservationError
from identity_api.db.models import Contact, LinkPrecedence, utcnow
from identity_api.db.repositories import ContactRepository
from identity_api.db.session import transaction
from identity_api.identity.linking import (
    ContactProjection,
    LinkChange,
    build_projection,
    choose_canonical,
    has_new_information,
    ordering_key,
    plan_reconciliation,
)

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Resolve observations against the contact graph."""

    def __init__(self, db_session: Session, *, audit_enabled: bool = True, actor: str = "system") -> None:
        self.db = db_session
        self.contacts = ContactRepository(db_session)
        self.audit_enabled = audit_enabled
        self.actor = actor

    def resolve(self, email: str | None = None, phone_number: str | None = None) -> ContactProjection:
        """Resolve one observation and return its cluster projection.

        Blank strings count as absent.  Raises ``ObservationError`` when
        both values are absent, before any query runs.
        """
        email = email or None
        phone_number = phone_number or None
        if email is None and phone_number is None:
            raise ObservationError("At least one of email or phoneNumber is required")

        with transaction(self.db):
            return self._resolve(email, phone_number)

    # -- phases -------------------------------------------------------------

    def _resolve(self, email: str | None, phone_number: str | None) -> ContactProjection:
        matches = self.contacts.find_matching(email, phone_number)
        if not matches:
            contact = self._create_contact(email, phone_number, linked_to=None)
            logger.info("Created primary contact: contact_id=%d", contact.id)
            return build_projection(contact, [contact])

        cluster = self._expand(matches)
        canonical = choose_canonical(cluster)

        changes = plan_reconciliation(cluster, canonical)
        self._apply_link_changes(changes, canonical)

        created: Contact | None = None
        if has_new_information(cluster, email, phone_number):
            created = self._create_contact(email, phone_number, linked_to=canonical)
            cluster.append(created)

        projection = build_projection(canonical, cluster)
        logger.info(
            "Resolved observation: primary_contact_id=%d matched=%d cluster_size=%d "
            "relinked=%d created_contact_id=%s",
            canonical.id,
            len(matches),
            len(cluster),
            len(changes),
            created.id if created is not None else None,
        )
        return projection

    def _expand(self, matches: list[Contact]) -> list[Contact]:
        """Return every live contact linked to *matches*, oldest first."""
        known: dict[int, Contact] = {c.id: c for c in matches}
        frontier: deque[Contact] = deque(matches)

        while frontier:
            contact = frontier.popleft()
            if contact.is_primary:
                discovered = [
                    linked for linked in self.contacts.find_linked_to(contact.id)
                    if linked.id not in known
                ]
            else:
                discovered = self._follow_link(contact, known)

            for found in discovered:
                known[found.id] = found
                frontier.append(found)
            if discovered:
                logger.debug(
                    "Cluster expansion: contact_id=%d discovered=%d frontier=%d",
                    contact.id,
                    len(discovered),
                    len(frontier),
                )

        return sorted(known.values(), key=ordering_key)

    def _follow_link(self, contact: Contact, known: dict[int, Contact]) -> list[Contact]:
        if contact.linked_id is None:
            raise ClusterIntegrityError(
                "Secondary contact has no linked primary",
                meta={"contact_id": contact.id},
            )
        if contact.linked_id in known:
            return []
        parent = self.contacts.find_by_id(contact.linked_id)
        if parent is None:
            raise ClusterIntegrityError(
                "Secondary contact links to a missing or deleted contact",
                meta={"contact_id": contact.id, "linked_id": contact.linked_id},
            )
        return [parent]

    def _apply_link_changes(self, changes: list[LinkChange], canonical: Contact) -> None:
        now = utcnow()
        for change in changes:
            self.contacts.update_by_id(
                change.contact_id,
                link_precedence=LinkPrecedence.SECONDARY.value,
                linked_id=canonical.id,
                updated_at=now,
            )
            if change.is_demotion:
                logger.info(
                    "Demoted primary contact: contact_id=%d primary_contact_id=%d",
                    change.contact_id,
                    canonical.id,
                )
            self._audit(
                EVENT_CONTACT_DEMOTED if change.is_demotion else EVENT_CONTACT_RELINKED,
                contact_id=change.contact_id,
                primary_contact_id=canonical.id,
                detail={
                    "previous_precedence": change.previous_precedence,
                    "previous_linked_id": change.previous_linked_id,
                },
            )

    def _create_contact(
        self,
        email: str | None,
        phone_number: str | None,
        *,
        linked_to: Contact | None,
    ) -> Contact:
        precedence = LinkPrecedence.PRIMARY if linked_to is None else LinkPrecedence.SECONDARY
        contact = self.contacts.create(
            email=email,
            phone_number=phone_number,
            link_precedence=precedence.value,
            linked_id=linked_to.id if linked_to is not None else None,
        )
        if linked_to is None:
            self._audit(EVENT_CONTACT_CREATED, contact_id=contact.id, primary_contact_id=contact.id)
            return contact

        self._audit(
            EVENT_CONTACT_LINKED,
            contact_id=contact.id,
            primary_contact_id=linked_to.id,
            detail={"has_email": email is not None, "has_phone_number": phone_number is not None},
        )
        return contact

    def _audit(self, event_type: str, **kwargs) -> None:
        if self.audit_enabled:
            record_event(self.db, event_type, actor=self.actor, **kwargs)

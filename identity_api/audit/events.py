"""Event type constants for the identity audit trail."""
from __future__ import annotations

EVENT_CONTACT_CREATED = "contact_created"
EVENT_CONTACT_LINKED = "contact_linked"
EVENT_CONTACT_DEMOTED = "contact_demoted"
EVENT_CONTACT_RELINKED = "contact_relinked"

VALID_EVENT_TYPES: frozenset[str] = frozenset({
    EVENT_CONTACT_CREATED,
    EVENT_CONTACT_LINKED,
    EVENT_CONTACT_DEMOTED,
    EVENT_CONTACT_RELINKED,
})

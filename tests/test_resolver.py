"""Tests for identity_api/identity/resolver.py — transactional resolution."""
from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from identity_api.audit.events import (
    EVENT_CONTACT_CREATED,
    EVENT_CONTACT_DEMOTED,
    EVENT_CONTACT_LINKED,
    EVENT_CONTACT_RELINKED,
)
from identity_api.core.errors import ClusterIntegrityError, ObservationError
from identity_api.db.models import AuditEvent, Contact
from identity_api.identity.resolver import IdentityResolver


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _count(db_session, model=Contact) -> int:
    return db_session.execute(select(func.count()).select_from(model)).scalar_one()


def _all_contacts(db_session) -> list[Contact]:
    db_session.expire_all()
    return list(db_session.execute(select(Contact).order_by(Contact.id)).scalars().all())


def _assert_flat(db_session) -> None:
    """No secondary may point at anything but a live primary."""
    contacts = {c.id: c for c in _all_contacts(db_session)}
    for contact in contacts.values():
        if contact.link_precedence == "primary":
            assert contact.linked_id is None
        else:
            assert contact.linked_id in contacts
            assert contacts[contact.linked_id].link_precedence == "primary"


@pytest.fixture()
def resolver(db_session) -> IdentityResolver:
    return IdentityResolver(db_session)


# ===========================================================================
# Step 1 — match / singleton creation
# ===========================================================================

class TestNoMatch:
    def test_creates_primary_singleton(self, resolver, db_session):
        projection = resolver.resolve("lorraine@hillvalley.edu", "123456")

        assert projection.emails == ["lorraine@hillvalley.edu"]
        assert projection.phone_numbers == ["123456"]
        assert projection.secondary_contact_ids == []

        stored = db_session.get(Contact, projection.primary_contact_id)
        assert stored.link_precedence == "primary"
        assert stored.linked_id is None

    def test_email_only_observation(self, resolver):
        projection = resolver.resolve("doc@hillvalley.edu", None)
        assert projection.emails == ["doc@hillvalley.edu"]
        assert projection.phone_numbers == []

    def test_phone_only_observation(self, resolver):
        projection = resolver.resolve(None, "555010")
        assert projection.emails == []
        assert projection.phone_numbers == ["555010"]

    def test_both_absent_raises_before_store_access(self, resolver, db_session):
        with patch.object(resolver.contacts, "find_matching") as find_matching:
            with pytest.raises(ObservationError):
                resolver.resolve(None, None)
            find_matching.assert_not_called()
        assert _count(db_session) == 0

    def test_blank_strings_count_as_absent(self, resolver):
        with pytest.raises(ObservationError):
            resolver.resolve("", "")


# ===========================================================================
# Exact duplicates and idempotency
# ===========================================================================

class TestDuplicates:
    def test_exact_duplicate_creates_nothing(self, resolver, db_session):
        first = resolver.resolve("lorraine@hillvalley.edu", "123456")
        second = resolver.resolve("lorraine@hillvalley.edu", "123456")

        assert second == first
        assert _count(db_session) == 1

    def test_repeated_resolution_is_identical(self, resolver, make_contact):
        p = make_contact("lorraine@hillvalley.edu", "123456")
        make_contact("mcfly@hillvalley.edu", "123456", linked_to=p, minutes=1)

        results = [resolver.resolve("mcfly@hillvalley.edu", "123456").to_payload() for _ in range(5)]

        assert all(r == results[0] for r in results)

    def test_partial_observation_of_known_values_creates_nothing(self, resolver, db_session, make_contact):
        p = make_contact("lorraine@hillvalley.edu", "123456")
        make_contact("mcfly@hillvalley.edu", "123456", linked_to=p, minutes=1)

        for email, phone in [(None, "123456"), ("lorraine@hillvalley.edu", None), ("mcfly@hillvalley.edu", None)]:
            projection = resolver.resolve(email, phone)
            assert projection.primary_contact_id == p.id
            assert projection.emails == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]
            assert projection.phone_numbers == ["123456"]

        assert _count(db_session) == 2


# ===========================================================================
# Step 4 — augmentation
# ===========================================================================

class TestAugmentation:
    def test_new_phone_adds_exactly_one_secondary(self, resolver, db_session, make_contact):
        p = make_contact("lorraine@hillvalley.edu", "123456")

        projection = resolver.resolve("lorraine@hillvalley.edu", "999999")

        assert _count(db_session) == 2
        assert projection.primary_contact_id == p.id
        assert projection.phone_numbers == ["123456", "999999"]
        assert len(projection.secondary_contact_ids) == 1

        created = db_session.get(Contact, projection.secondary_contact_ids[0])
        assert created.link_precedence == "secondary"
        assert created.linked_id == p.id
        assert created.phone_number == "999999"

    def test_new_phone_is_visible_to_later_observations(self, resolver, make_contact):
        p = make_contact("lorraine@hillvalley.edu", "123456")
        added = resolver.resolve("lorraine@hillvalley.edu", "999999")

        by_pair = resolver.resolve("lorraine@hillvalley.edu", "999999")
        by_phone = resolver.resolve(None, "999999")

        assert by_pair == added
        assert by_phone.primary_contact_id == p.id
        assert "999999" in by_phone.phone_numbers

    def test_new_email_with_known_phone_adds_secondary(self, resolver, db_session, make_contact):
        p = make_contact("lorraine@hillvalley.edu", "123456")

        projection = resolver.resolve("mcfly@hillvalley.edu", "123456")

        assert projection.primary_contact_id == p.id
        assert projection.emails == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]
        assert projection.phone_numbers == ["123456"]
        assert _count(db_session) == 2

    def test_duplicate_values_are_not_repeated_in_projection(self, resolver, make_contact):
        p = make_contact("a@hillvalley.edu", "111")
        make_contact("a@hillvalley.edu", "222", linked_to=p, minutes=1)
        make_contact("b@hillvalley.edu", "111", linked_to=p, minutes=2)

        projection = resolver.resolve("a@hillvalley.edu", None)

        assert projection.emails == ["a@hillvalley.edu", "b@hillvalley.edu"]
        assert projection.phone_numbers == ["111", "222"]


# ===========================================================================
# Step 3 — reconciliation
# ===========================================================================

class TestMerge:
    def test_older_primary_absorbs_younger_cluster(self, resolver, db_session, make_contact):
        a = make_contact("george@hillvalley.edu", "919191", minutes=0)
        b = make_contact("biffsucks@hillvalley.edu", "717171", minutes=10)

        projection = resolver.resolve("george@hillvalley.edu", "717171")

        assert projection.primary_contact_id == a.id
        assert projection.emails == ["george@hillvalley.edu", "biffsucks@hillvalley.edu"]
        assert projection.phone_numbers == ["919191", "717171"]
        assert projection.secondary_contact_ids == [b.id]
        assert _count(db_session) == 2

        demoted = db_session.get(Contact, b.id)
        assert demoted.link_precedence == "secondary"
        assert demoted.linked_id == a.id

    def test_merge_direction_ignores_observation_side(self, resolver, make_contact):
        a = make_contact("george@hillvalley.edu", "919191", minutes=0)
        make_contact("biffsucks@hillvalley.edu", "717171", minutes=10)

        projection = resolver.resolve("biffsucks@hillvalley.edu", "919191")

        assert projection.primary_contact_id == a.id

    def test_younger_cluster_secondaries_point_at_new_canonical(self, resolver, db_session, make_contact):
        a = make_contact("a@hillvalley.edu", "111", minutes=0)
        a_child = make_contact("a2@hillvalley.edu", "111", linked_to=a, minutes=1)
        b = make_contact("b@hillvalley.edu", "222", minutes=10)
        b_child = make_contact("b2@hillvalley.edu", "222", linked_to=b, minutes=11)
        b_child2 = make_contact("b3@hillvalley.edu", "222", linked_to=b, minutes=12)

        projection = resolver.resolve("a2@hillvalley.edu", "222")

        assert projection.primary_contact_id == a.id
        assert projection.secondary_contact_ids == [a_child.id, b.id, b_child.id, b_child2.id]
        for contact_id in (b.id, b_child.id, b_child2.id):
            assert db_session.get(Contact, contact_id).linked_id == a.id
        _assert_flat(db_session)

    def test_created_at_tie_prefers_lowest_id(self, resolver, make_contact):
        first = make_contact("a@hillvalley.edu", "111", minutes=0)
        make_contact("b@hillvalley.edu", "222", minutes=0)

        projection = resolver.resolve("b@hillvalley.edu", "111")

        assert projection.primary_contact_id == first.id

    def test_merge_then_observation_with_new_info(self, resolver, db_session, make_contact):
        a = make_contact("a@hillvalley.edu", "111", minutes=0)
        b = make_contact(None, "222", minutes=10)

        resolver.resolve("a@hillvalley.edu", "222")
        projection = resolver.resolve("c@hillvalley.edu", "222")

        assert projection.primary_contact_id == a.id
        assert projection.emails == ["a@hillvalley.edu", "c@hillvalley.edu"]
        assert projection.secondary_contact_ids[0] == b.id
        assert _count(db_session) == 3
        _assert_flat(db_session)

    def test_flattening_holds_across_a_sequence_of_merges(self, resolver, db_session, make_contact):
        make_contact("a@x.com", "1", minutes=0)
        make_contact("b@x.com", "2", minutes=1)
        make_contact("c@x.com", "3", minutes=2)
        make_contact("d@x.com", "4", minutes=3)

        resolver.resolve("c@x.com", "4")
        resolver.resolve("b@x.com", "3")
        projection = resolver.resolve("a@x.com", "4")

        assert projection.emails == ["a@x.com", "b@x.com", "c@x.com", "d@x.com"]
        assert len(projection.secondary_contact_ids) == 3
        primaries = [c for c in _all_contacts(db_session) if c.link_precedence == "primary"]
        assert len(primaries) == 1
        _assert_flat(db_session)

    def test_legacy_secondary_chain_is_flattened(self, resolver, db_session, make_contact):
        p = make_contact("a@x.com", "1", minutes=0)
        mid = make_contact("b@x.com", "1", linked_to=p, minutes=1)
        tail = make_contact("c@x.com", "3", linked_to=mid, minutes=2)

        projection = resolver.resolve("c@x.com", None)

        assert projection.primary_contact_id == p.id
        assert db_session.get(Contact, tail.id).linked_id == p.id
        _assert_flat(db_session)


# ===========================================================================
# Soft delete
# ===========================================================================

class TestSoftDelete:
    def test_deleted_contact_never_matches(self, resolver, db_session, make_contact):
        deleted = make_contact("lorraine@hillvalley.edu", "123456", deleted=True)

        projection = resolver.resolve("lorraine@hillvalley.edu", "123456")

        assert projection.primary_contact_id != deleted.id
        assert _count(db_session) == 2

    def test_deleted_secondary_is_left_out_of_projection(self, resolver, make_contact):
        p = make_contact("a@x.com", "1")
        make_contact("gone@x.com", "1", linked_to=p, minutes=1, deleted=True)

        projection = resolver.resolve("a@x.com", None)

        assert projection.emails == ["a@x.com"]
        assert projection.secondary_contact_ids == []


# ===========================================================================
# Invariant violations and atomicity
# ===========================================================================

class TestFailures:
    def test_secondary_linked_to_deleted_primary_raises(self, resolver, make_contact):
        p = make_contact("a@x.com", "1", deleted=True)
        make_contact("b@x.com", "2", linked_to=p, minutes=1)

        with pytest.raises(ClusterIntegrityError, match="missing or deleted"):
            resolver.resolve("b@x.com", None)

    def test_integrity_failure_writes_nothing(self, resolver, db_session, make_contact):
        a = make_contact("a@x.com", "1", minutes=0)
        b = make_contact("b@x.com", "2", minutes=10)
        orphan_parent = make_contact("gone@x.com", None, minutes=11, deleted=True)
        make_contact("c@x.com", "2", linked_to=orphan_parent, minutes=12)

        with pytest.raises(ClusterIntegrityError):
            resolver.resolve("a@x.com", "2")

        assert db_session.get(Contact, b.id).link_precedence == "primary"
        assert db_session.get(Contact, a.id).link_precedence == "primary"
        assert _count(db_session) == 4
        assert _count(db_session, AuditEvent) == 0

    def test_store_failure_mid_merge_leaves_no_partial_writes(self, resolver, db_session, make_contact):
        make_contact("a@x.com", "1", minutes=0)
        b = make_contact("b@x.com", "2", minutes=10)
        make_contact("b2@x.com", "2", linked_to=b, minutes=11)

        original_update = resolver.contacts.update_by_id
        calls = []

        def failing_update(contact_id, **fields):
            calls.append(contact_id)
            if len(calls) == 2:
                raise OperationalError("UPDATE contacts", {}, Exception("connection lost"))
            return original_update(contact_id, **fields)

        with patch.object(resolver.contacts, "update_by_id", side_effect=failing_update):
            with pytest.raises(OperationalError):
                resolver.resolve("a@x.com", "2")

        assert len(calls) == 2
        assert db_session.get(Contact, b.id).link_precedence == "primary"
        assert _count(db_session) == 3
        assert _count(db_session, AuditEvent) == 0


# ===========================================================================
# Audit trail
# ===========================================================================

class TestAudit:
    def _events(self, db_session) -> list[AuditEvent]:
        return list(db_session.execute(select(AuditEvent)).scalars().all())

    def test_creation_and_linking_are_audited(self, resolver, db_session):
        first = resolver.resolve("a@x.com", "1")
        second = resolver.resolve("a@x.com", "2")

        events = {(e.event_type, e.contact_id) for e in self._events(db_session)}
        assert (EVENT_CONTACT_CREATED, first.primary_contact_id) in events
        assert (EVENT_CONTACT_LINKED, second.secondary_contact_ids[0]) in events

    def test_demotion_and_relink_are_audited(self, resolver, db_session, make_contact):
        make_contact("a@x.com", "1", minutes=0)
        b = make_contact("b@x.com", "2", minutes=10)
        b_child = make_contact("b2@x.com", "2", linked_to=b, minutes=11)

        resolver.resolve("a@x.com", "2")

        by_type = {e.event_type: e for e in self._events(db_session)}
        assert by_type[EVENT_CONTACT_DEMOTED].contact_id == b.id
        assert by_type[EVENT_CONTACT_DEMOTED].detail == {
            "previous_precedence": "primary",
            "previous_linked_id": None,
        }
        assert by_type[EVENT_CONTACT_RELINKED].contact_id == b_child.id
        assert by_type[EVENT_CONTACT_RELINKED].detail["previous_linked_id"] == b.id

    def test_audit_can_be_disabled(self, db_session):
        IdentityResolver(db_session, audit_enabled=False).resolve("a@x.com", "1")
        assert _count(db_session, AuditEvent) == 0

    def test_audit_never_stores_contact_values(self, resolver, db_session):
        resolver.resolve("a@x.com", "1")
        resolver.resolve("a@x.com", "2")

        for event in self._events(db_session):
            assert "a@x.com" not in str(event.detail)
            assert "2" not in {str(v) for v in (event.detail or {}).values()}

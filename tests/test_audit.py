"""
Tests for the hash-chained audit trail
"""

import pytest
from datetime import datetime, timezone

from resolve_core.storage import InMemoryStorage
from resolve_core.audit import AuditTrail, AuditEvent, AuditEventType
from resolve_core.complaints import ComplaintStatus


class TestAuditEvent:
    """Test AuditEvent hashing"""

    def _event(self, **overrides):
        now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
        fields = dict(
            id="evt_1",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.COMPLAINT_CREATED,
            entity_type="complaint",
            entity_id="cmp_1",
            previous_hash="",
            current_hash="",
            metadata={"title": "Broken heater"},
        )
        fields.update(overrides)
        return AuditEvent(**fields)

    def test_hash_verification(self):
        event = self._event()
        event.current_hash = event.calculate_hash()
        assert len(event.current_hash) == 64
        assert event.verify_hash()

        event.metadata["title"] = "Something else"
        assert not event.verify_hash()

    def test_hash_covers_user(self):
        first = self._event(user_id="usr_1")
        second = self._event(user_id="usr_2")
        assert first.calculate_hash() != second.calculate_hash()

    def test_metadata_made_json_safe(self):
        event = self._event(metadata={
            "status": ComplaintStatus.RESOLVED,
            "at": datetime(2026, 1, 5, tzinfo=timezone.utc),
            "nested": {"statuses": [ComplaintStatus.OPEN]},
        })
        assert event.metadata == {
            "status": "Resolved",
            "at": "2026-01-05T00:00:00+00:00",
            "nested": {"statuses": ["Open"]},
        }

    def test_dict_round_trip(self):
        event = self._event(user_id="usr_1")
        event.current_hash = event.calculate_hash()
        restored = AuditEvent.from_dict(event.to_dict())
        assert restored == event
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_log_first_event(self):
        event = self.audit_trail.log_event(
            event_type=AuditEventType.ORGANIZATION_REGISTERED,
            entity_type="organization",
            entity_id="org_1",
            metadata={"name": "Northfield University"},
            user_id="usr_admin",
        )
        assert event.previous_hash == ""
        assert event.user_id == "usr_admin"
        assert self.storage.count(self.audit_trail.table_name) == 1

    def test_events_chain(self):
        first = self.audit_trail.log_event(AuditEventType.COMPLAINT_CREATED, "complaint", "cmp_1")
        second = self.audit_trail.log_event(AuditEventType.STATUS_UPDATED, "complaint", "cmp_1")
        third = self.audit_trail.log_event(AuditEventType.WORKFLOW_UPDATED, "workflow_instance", "wf_1")
        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash

    def test_chain_continues_after_restart(self):
        first = self.audit_trail.log_event(AuditEventType.COMPLAINT_CREATED, "complaint", "cmp_1")
        reopened = AuditTrail(self.storage)
        second = reopened.log_event(AuditEventType.STATUS_UPDATED, "complaint", "cmp_1")
        assert second.previous_hash == first.current_hash
        assert reopened.verify_integrity()["valid"]

    def test_get_events_for_entity(self):
        self.audit_trail.log_event(AuditEventType.COMPLAINT_CREATED, "complaint", "cmp_1")
        self.audit_trail.log_event(AuditEventType.COMPLAINT_CREATED, "complaint", "cmp_2")
        self.audit_trail.log_event(AuditEventType.STATUS_UPDATED, "complaint", "cmp_1")
        self.audit_trail.log_event(AuditEventType.COMPLAINT_ESCALATED, "complaint", "cmp_1")

        events = self.audit_trail.get_events_for_entity("complaint", "cmp_1")
        assert [e.event_type for e in events] == [
            AuditEventType.COMPLAINT_CREATED, AuditEventType.STATUS_UPDATED, AuditEventType.COMPLAINT_ESCALATED,
        ]

        status_only = self.audit_trail.get_events_for_entity(
            "complaint", "cmp_1", event_types=[AuditEventType.STATUS_UPDATED]
        )
        assert len(status_only) == 1

        latest = self.audit_trail.get_events_for_entity("complaint", "cmp_1", limit=1)
        assert [e.event_type for e in latest] == [AuditEventType.COMPLAINT_ESCALATED]

    def test_verify_integrity_valid_chain(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.COMPLAINT_CREATED, "complaint", f"cmp_{i}")
        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_hash_tampering(self):
        event = self.audit_trail.log_event(
            AuditEventType.STATUS_UPDATED, "complaint", "cmp_1", {"new_status": "Resolved"}
        )
        self.audit_trail.log_event(AuditEventType.STATUS_UPDATED, "complaint", "cmp_1", {"new_status": "Closed"})

        tampered = self.storage.load(self.audit_trail.table_name, event.id)
        tampered["metadata"]["new_status"] = "Open"
        self.storage.save(self.audit_trail.table_name, event.id, tampered)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [event.id]

    def test_verify_integrity_detects_chain_break(self):
        self.audit_trail.log_event(AuditEventType.COMPLAINT_CREATED, "complaint", "cmp_1")
        second = self.audit_trail.log_event(AuditEventType.STATUS_UPDATED, "complaint", "cmp_1")

        tampered = self.storage.load(self.audit_trail.table_name, second.id)
        tampered["previous_hash"] = "broken_chain_hash"
        self.storage.save(self.audit_trail.table_name, second.id, tampered)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["chain_breaks"] == [{"event_id": second.id, "position": 1}]

    def test_verify_integrity_empty_trail(self):
        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 0

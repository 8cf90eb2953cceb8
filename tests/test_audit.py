"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection and event queries.
"""

import threading
import pytest
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from secure_bank.audit import AuditTrail, AuditEvent, AuditEventType


@pytest.fixture
def audit_trail():
    return AuditTrail()


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_metadata_is_stored_as_plain_values(self, audit_trail):
        """Test that metadata is converted to JSON-friendly values"""
        now = datetime.now(timezone.utc)

        event = audit_trail.log_event(
            AuditEventType.FUNDS_DEPOSITED, "account", 1,
            {
                "amount": Decimal("250.00"),
                "at": now,
                "kind": AuditEventType.ACCOUNT_CREATED,
                "ids": (1, 2),
            }
        )

        assert event.entity_id == "1"
        assert event.metadata == {
            "amount": "250.00",
            "at": now.isoformat(),
            "kind": "account_created",
            "ids": [1, 2],
        }
        assert event.verify_hash()

    def test_hash_covers_content(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001", sequence=3, created_at=now,
            event_type=AuditEventType.ACCOUNT_CLOSED, entity_type="account",
            entity_id="1", user_id="sally", previous_hash="abc",
            metadata={"closing_balance": "10.00"}
        )

        assert event.calculate_hash() == replace(event).calculate_hash()
        assert event.calculate_hash() != replace(event, user_id="dan").calculate_hash()
        assert event.calculate_hash() != replace(event, previous_hash="abd").calculate_hash()


class TestAuditTrail:
    """Test chaining, queries and integrity verification"""

    def test_events_are_chained(self, audit_trail):
        first = audit_trail.log_event(AuditEventType.SERVICE_STARTED, "service", "bank")
        second = audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "1", user_id="dan")

        assert first.sequence == 1
        assert first.previous_hash == ""
        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert audit_trail.get_latest_hash() == second.current_hash
        assert audit_trail.count_events() == 2

    def test_empty_trail(self, audit_trail):
        assert audit_trail.get_latest_hash() == ""
        assert audit_trail.verify_integrity() == {
            "valid": True, "total_events": 0, "hash_errors": [], "chain_breaks": []
        }

    def test_queries(self, audit_trail):
        audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "1")
        audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "2")
        audit_trail.log_event(AuditEventType.FUNDS_DEPOSITED, "account", "1", {"amount": "5.00"})

        for_account = audit_trail.get_events_for_entity("account", "1")
        assert [e.event_type for e in for_account] == [
            AuditEventType.ACCOUNT_CREATED, AuditEventType.FUNDS_DEPOSITED
        ]
        latest = audit_trail.get_events_for_entity("account", 1, limit=1)
        assert [e.event_type for e in latest] == [AuditEventType.FUNDS_DEPOSITED]

        created = audit_trail.get_events_by_type(AuditEventType.ACCOUNT_CREATED)
        assert [e.entity_id for e in created] == ["1", "2"]
        assert [e.sequence for e in audit_trail.get_all_events()] == [1, 2, 3]

    def test_integrity_of_untouched_chain(self, audit_trail):
        for i in range(5):
            audit_trail.log_event(AuditEventType.FUNDS_DEPOSITED, "account", "1", {"n": i})

        result = audit_trail.verify_integrity()

        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_edited_metadata_is_detected(self, audit_trail):
        audit_trail.log_event(AuditEventType.FUNDS_DEPOSITED, "account", "1", {"amount": "5.00"})
        target = audit_trail.log_event(
            AuditEventType.FUNDS_WITHDRAWN, "account", "1", {"amount": "2.00"}
        )
        audit_trail.log_event(AuditEventType.ACCOUNT_CLOSED, "account", "1")

        target.metadata["amount"] = "2000.00"

        result = audit_trail.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [target.id]
        assert result["chain_breaks"] == []

    def test_dropped_event_breaks_chain(self, audit_trail):
        audit_trail.log_event(AuditEventType.SERVICE_STARTED, "service", "bank")
        dropped = audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "1")
        after = audit_trail.log_event(AuditEventType.SERVICE_STOPPED, "service", "bank")

        audit_trail._events.remove(dropped)

        result = audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"] == []
        assert [e["event_id"] for e in result["chain_breaks"]] == [after.id]

    def test_concurrent_appends_keep_chain_valid(self, audit_trail):
        def worker():
            for i in range(50):
                audit_trail.log_event(AuditEventType.FUNDS_DEPOSITED, "account", "1", {"n": i})

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert audit_trail.count_events() == 200
        assert [e.sequence for e in audit_trail.get_all_events()] == list(range(1, 201))
        assert audit_trail.verify_integrity()["valid"]

"""
Test suite for audit module

Tests the hash-chained audit trail, tamper detection and integrity
verification.
"""

import pytest
import threading
from datetime import datetime, timezone
from decimal import Decimal

from flashpay.storage import InMemoryStorage
from flashpay.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def make_event(self, **overrides):
        now = datetime.now(timezone.utc)
        fields = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            sequence=1,
            event_type=AuditEventType.TRANSFER_COMPLETED,
            entity_type="transfer",
            entity_id="TRF001",
            previous_hash="",
            current_hash="",
            metadata={"amount": Decimal("40.00")},
            user_id="ACC001"
        )
        fields.update(overrides)
        return AuditEvent(**fields)

    def test_metadata_serialization(self):
        """Decimals, datetimes and enums in metadata become JSON-safe"""
        now = datetime.now(timezone.utc)
        event = self.make_event(metadata={
            "amount": Decimal("12.34"),
            "at": now,
            "kind": AuditEventType.ACCOUNT_CREATED,
            "nested": {"values": [Decimal("1.10"), Decimal("2.20")]}
        })

        assert event.metadata["amount"] == "12.34"
        assert event.metadata["at"] == now.isoformat()
        assert event.metadata["kind"] == "account_created"
        assert event.metadata["nested"]["values"] == ["1.10", "2.20"]

    def test_hash_is_deterministic(self):
        event = self.make_event()
        assert event.digest() == event.digest()
        assert len(event.digest()) == 64

    def test_is_intact(self):
        event = self.make_event()
        event.current_hash = event.digest()
        assert event.is_intact()

        event.metadata["amount"] = "99999.00"
        assert not event.is_intact()

    def test_dict_round_trip_preserves_hash(self):
        event = self.make_event()
        event.current_hash = event.digest()

        restored = AuditEvent.from_dict(event.to_dict())
        assert restored.event_type == AuditEventType.TRANSFER_COMPLETED
        assert restored.is_intact()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_first_event_starts_chain(self):
        event = self.audit_trail.log_event(
            AuditEventType.ACCOUNT_CREATED, "account", "ACC001", {"role": "ORDINARY"}
        )
        assert event.sequence == 1
        assert event.previous_hash == ""
        assert event.is_intact()

    def test_events_are_chained(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        second = self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "ACC001")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash

    def test_get_events_for_entity(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC002")
        self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "ACC001")

        events = self.audit_trail.get_events_for_entity("account", "ACC001")
        assert [e.event_type for e in events] == [
            AuditEventType.ACCOUNT_CREATED, AuditEventType.LOGIN_SUCCESS
        ]

    def test_get_events_by_type_with_limit(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transfer", f"TRF{i}")
        self.audit_trail.log_event(AuditEventType.LOGIN_FAILED, "account", "ACC001")

        events = self.audit_trail.get_events_by_type(AuditEventType.TRANSFER_COMPLETED)
        assert len(events) == 5

        latest = self.audit_trail.get_events_by_type(AuditEventType.TRANSFER_COMPLETED, limit=2)
        assert [e.entity_id for e in latest] == ["TRF3", "TRF4"]

    def test_verify_integrity_clean_chain(self):
        for i in range(3):
            self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transfer", f"TRF{i}")

        result = self.audit_trail.verify_integrity()
        assert result["valid"] is True
        assert result["total_events"] == 3
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_tampering(self):
        event = self.audit_trail.log_event(
            AuditEventType.TRANSFER_COMPLETED, "transfer", "TRF001", {"amount": "10.00"}
        )
        self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transfer", "TRF002")

        data = self.storage.load("audit_events", event.id)
        data["metadata"]["amount"] = "10000.00"
        self.storage.save("audit_events", event.id, data)

        result = self.audit_trail.verify_integrity()
        assert result["valid"] is False
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_verify_integrity_detects_chain_break(self):
        self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "ACC001")
        second = self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "ACC001")

        self.storage.delete("audit_events", self.audit_trail.get_events_for_entity("account", "ACC001")[0].id)

        result = self.audit_trail.verify_integrity()
        assert result["valid"] is False
        assert result["chain_breaks"][0]["event_id"] == second.id

    def test_count_events(self):
        assert self.audit_trail.count_events() == 0
        self.audit_trail.log_event(AuditEventType.TOKENS_PURGED, "refresh_token", "sweep_expired")
        assert self.audit_trail.count_events() == 1

    def test_concurrent_logging_keeps_chain_valid(self):
        errors = []

        def create_events(thread_id):
            try:
                for i in range(5):
                    self.audit_trail.log_event(
                        AuditEventType.TRANSFER_COMPLETED, "transfer", f"T{thread_id}-{i}"
                    )
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create_events, args=(i,)) for i in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert self.audit_trail.count_events() == 15
        assert self.audit_trail.verify_integrity()["valid"] is True

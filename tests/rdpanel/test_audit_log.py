"""Tests for rdpanel/storage/audit.py."""

from unittest.mock import MagicMock

import pytest

from rdpanel.core.types import AuditStatus
from rdpanel.storage import AuditLog, record_audit
from rdpanel.storage.audit import AUDIT_KEY


@pytest.fixture
def audit(memory_store) -> AuditLog:
    return AuditLog(memory_store)


def add(audit: AuditLog, action: str = "POWER_START", **kwargs):
    fields = {
        "details": "started",
        "account_name": "Main",
        "status": AuditStatus.SUCCESS,
        **kwargs,
    }
    return audit.add(action, **fields)


class TestAuditLog:
    """Tests for AuditLog."""

    def test_newest_first(self, audit):
        """Entries come back in reverse insertion order."""
        add(audit, "FIRST")
        add(audit, "SECOND")

        assert [e.action for e in audit.entries()] == ["SECOND", "FIRST"]

    def test_status_accepts_string(self, audit):
        """Plain status strings are coerced."""
        entry = add(audit, status="failure")
        assert entry.status == AuditStatus.FAILURE

    def test_affected_servers(self, audit):
        """Affected servers are copied into the entry."""
        entry = add(audit, affected_servers=("srv-1", "srv-2"))
        assert entry.affected_servers == ["srv-1", "srv-2"]
        assert add(audit).affected_servers is None

    def test_bounded(self, memory_store):
        """Only the newest max_entries are kept."""
        audit = AuditLog(memory_store, max_entries=3)
        for i in range(5):
            add(audit, f"A{i}")

        assert [e.action for e in audit.entries()] == ["A4", "A3", "A2"]

    def test_limit(self, audit):
        """entries(limit) truncates the result."""
        for i in range(4):
            add(audit, f"A{i}")
        assert len(audit.entries(limit=2)) == 2

    def test_corrupt_entries_skipped(self, audit, memory_store):
        """Unreadable records are ignored."""
        add(audit, "GOOD")
        memory_store.set(AUDIT_KEY, [{"bogus": True}] + memory_store.get(AUDIT_KEY))

        assert [e.action for e in audit.entries()] == ["GOOD"]

    def test_clear(self, audit):
        """clear() removes everything."""
        add(audit)
        audit.clear()
        assert audit.entries() == []


class TestRecordAudit:
    """Tests for record_audit()."""

    def test_none_sink(self):
        """No sink means nothing is recorded."""
        assert (
            record_audit(None, action="X", details="d", account_name="a", status="success")
            is None
        )

    def test_failing_sink_swallowed(self):
        """A broken sink never propagates to the caller."""
        sink = MagicMock()
        sink.add.side_effect = OSError("disk full")

        result = record_audit(sink, action="X", details="d", account_name="a", status="success")

        assert result is None
        sink.add.assert_called_once()

    def test_records(self, audit):
        """Entries are forwarded to the sink."""
        entry = record_audit(
            audit, action="X", details="d", account_name="a", status=AuditStatus.SUCCESS
        )
        assert audit.entries() == [entry]

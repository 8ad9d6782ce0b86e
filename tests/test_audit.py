"""
Tests for the background audit writer.
"""

import logging
from unittest.mock import MagicMock

import pytest

from sunny.audit import AuditLog, sanitize_for_log


class TestSanitizeForLog:
    def test_redacts_secret_keys(self):
        out = sanitize_for_log({"api_key": "sk-1", "body": "hello"})
        assert out == {"api_key": "[REDACTED]", "body": "hello"}

    def test_nested(self):
        out = sanitize_for_log({"outer": {"password": "x", "n": 1}})
        assert out == {"outer": {"password": "[REDACTED]", "n": 1}}

    def test_truncates_long_strings(self):
        out = sanitize_for_log("a" * 20_000)
        assert out.endswith("...[TRUNCATED]")
        assert len(out) < 20_000

    def test_limits_list_length(self):
        assert len(sanitize_for_log(list(range(500)))) == 100

    def test_passes_scalars(self):
        assert sanitize_for_log(12.5) == 12.5
        assert sanitize_for_log(None) is None


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_tool_call_written_in_background(self, db, tenants):
        audit = AuditLog(db)
        task = audit.record_tool_call(
            tenants["a"], "user-a", "update_price", {"item_id": "1", "confirmed": True}, {"success": True}
        )
        assert task is not None
        await audit.drain()
        assert audit.pending == 0

        session = db.get_session()
        try:
            rows = db.get_tool_audits(session, tenants["a"])
            assert len(rows) == 1
            assert rows[0].tool_name == "update_price"
            assert rows[0].arguments == {"item_id": "1", "confirmed": True}
            assert rows[0].result == {"success": True}
            assert db.get_tool_audits(session, tenants["b"]) == []
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_message_row_keeps_only_channel_recipient(self, db, tenants):
        audit = AuditLog(db)
        audit.record_message(
            tenants["a"],
            None,
            "sms",
            "Hi!",
            recipient_email="maya@example.com",
            recipient_phone="+15550001",
            subject="ignored",
        )
        await audit.drain()

        session = db.get_session()
        try:
            (row,) = db.get_message_logs(session, tenants["a"])
            assert row.channel == "sms"
            assert row.recipient_phone == "+15550001"
            assert row.recipient_email is None
            assert row.subject is None
            assert row.direction == "outbound"
            assert row.source == "sunny_ai"
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_knowledge_gap(self, db, tenants):
        audit = AuditLog(db)
        audit.record_knowledge_gap(
            tenants["a"], "user-a", "what is orbital welding?", "Not sure.", "unknown_answer", "welding"
        )
        await audit.drain()

        session = db.get_session()
        try:
            (row,) = db.get_knowledge_gaps(session, tenants["a"])
            assert row.category == "unknown_answer"
            assert row.topic == "welding"
            assert row.status == "pending"
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_failed_write_is_logged_not_raised(self, db, caplog):
        broken = MagicMock(wraps=db)
        broken.create_tool_audit.side_effect = RuntimeError("disk full")
        audit = AuditLog(broken)

        with caplog.at_level(logging.ERROR, logger="sunny.audit"):
            audit.record_tool_call("t", "u", "add_inventory", {}, {})
            await audit.drain()

        assert "Failed to write tool call audit record" in caplog.text

    @pytest.mark.asyncio
    async def test_unavailable_datastore_is_logged_not_raised(self, caplog):
        unavailable = MagicMock()
        unavailable.get_session.side_effect = RuntimeError("db down")
        audit = AuditLog(unavailable)

        with caplog.at_level(logging.ERROR, logger="sunny.audit"):
            task = audit.record_tool_call("t", "u", "add_inventory", {}, {})
            await audit.drain()

        assert task.exception() is None
        assert "Failed to write tool call audit record" in caplog.text
        assert "db down" in caplog.text

    def test_writes_synchronously_without_loop(self, db, tenants):
        audit = AuditLog(db)
        assert audit.record_tool_call(tenants["a"], None, "tag_client", {}, {}) is None

        session = db.get_session()
        try:
            assert len(db.get_tool_audits(session, tenants["a"])) == 1
        finally:
            session.close()

"""
Tests for the client and outreach tools.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from sunny.audit import AuditLog
from sunny.database import (
    ClientModel,
    ClientNoteModel,
    ClientTagAssignmentModel,
    ClientTagModel,
)
from sunny.exceptions import MessagingError
from sunny.models import EnvelopeKind, ToolContext
from sunny.tools import build_registry


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def messenger():
    messenger = MagicMock()
    messenger.send = AsyncMock(return_value=True)
    return messenger


@pytest.fixture
def outreach_ctx(db, tenants, messenger):
    return ToolContext(
        db=db, tenant_id=tenants["a"], user_id="user-a", messenger=messenger, audit=AuditLog(db)
    )


def seed_client(db, tenant_id, first, last=None, email=None, phone=None):
    session = db.get_session()
    try:
        return db.create_client(
            session, tenant_id=tenant_id, first_name=first, last_name=last, email=email, phone=phone
        ).id
    finally:
        session.close()


def seed_tag(db, tenant_id, name, client_ids):
    with db.session_scope() as session:
        tag = ClientTagModel(tenant_id=tenant_id, name=name)
        session.add(tag)
        session.flush()
        for client_id in client_ids:
            session.add(ClientTagAssignmentModel(client_id=client_id, tag_id=tag.id))
        return tag.id


def count(db, model, **filters):
    session = db.get_session()
    try:
        return session.query(model).filter_by(**filters).count()
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Client tools
# ---------------------------------------------------------------------------


class TestSearchClients:
    @pytest.mark.asyncio
    async def test_matches_full_name_email_and_phone(self, registry, ctx, db, tenants):
        maya = seed_client(db, tenants["a"], "Maya", "Lopez", "maya@example.com", "+15550101")
        seed_client(db, tenants["a"], "Jordan", "Reyes", "jr@example.com")

        for query in ("maya lopez", "LOPEZ", "maya@ex", "0101"):
            env = await registry.execute("search_clients", {"query": query}, ctx)
            assert [c["id"] for c in env.result["clients"]] == [maya], query

    @pytest.mark.asyncio
    async def test_scoped_to_tenant(self, registry, ctx, db, tenants):
        seed_client(db, tenants["b"], "Maya", "Other")
        env = await registry.execute("search_clients", {"query": "maya"}, ctx)
        assert env.result == {"clients": [], "total": 0}

    @pytest.mark.asyncio
    async def test_limit(self, registry, ctx, db, tenants):
        for i in range(4):
            seed_client(db, tenants["a"], f"Sam{i}")
        env = await registry.execute("search_clients", {"query": "sam", "limit": 2}, ctx)
        assert env.result["total"] == 2


class TestClientDetails:
    @pytest.mark.asyncio
    async def test_details_include_tags_notes_and_spend(self, registry, ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya", "Lopez")
        seed_tag(db, tenants["a"], "VIP", [client_id])
        session = db.get_session()
        try:
            db.record_sale(session, tenant_id=tenants["a"], client_id=client_id, subtotal=60, total=65)
            db.record_sale(session, tenant_id=tenants["a"], client_id=client_id, subtotal=40, total=42.5)
            db.record_sale(
                session, tenant_id=tenants["a"], client_id=client_id, total=99, status="refunded"
            )
        finally:
            session.close()
        with db.session_scope() as session:
            session.add(ClientNoteModel(tenant_id=tenants["a"], client_id=client_id, body="Loves gold"))

        env = await registry.execute("get_client_details", {"client_id": client_id}, ctx)

        assert env.result["name"] == "Maya Lopez"
        assert env.result["tags"] == ["VIP"]
        assert env.result["recent_notes"][0]["body"] == "Loves gold"
        assert env.result["purchase_count"] == 2
        assert env.result["total_spend"] == 107.5

    @pytest.mark.asyncio
    async def test_other_tenants_client_is_not_found(self, registry, ctx, db, tenants):
        other = seed_client(db, tenants["b"], "Maya")
        env = await registry.execute("get_client_details", {"client_id": other}, ctx)
        assert env.result == {"error": "Client not found"}

    @pytest.mark.asyncio
    async def test_client_stats(self, registry, ctx, db, tenants):
        seed_client(db, tenants["a"], "Maya")
        seed_client(db, tenants["a"], "Jordan")
        seed_client(db, tenants["b"], "Sam")
        env = await registry.execute("get_client_stats", {}, ctx)
        assert env.result == {"total_clients": 2, "new_this_month": 2}


class TestTagClient:
    @pytest.mark.asyncio
    async def test_creates_tag_on_demand(self, registry, ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya")

        pending = await registry.execute("tag_client", {"client_id": client_id, "tag_name": "VIP"}, ctx)
        assert pending.result["preview"]["creates_tag"] is True
        assert count(db, ClientTagModel) == 0

        done = await registry.execute(
            "tag_client", {"client_id": client_id, "tag_name": "VIP", "confirmed": True}, ctx
        )
        assert done.result == {"success": True, "tag_name": "VIP", "client_id": client_id}

        session = db.get_session()
        try:
            tag = session.query(ClientTagModel).one()
            assert tag.color == "#7A8B8C"
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_reuses_existing_tag_case_insensitively(self, registry, ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya")
        seed_tag(db, tenants["a"], "VIP", [client_id])

        pending = await registry.execute("tag_client", {"client_id": client_id, "tag_name": "vip"}, ctx)
        assert pending.result["preview"]["creates_tag"] is False
        assert pending.result["preview"]["tag_name"] == "VIP"

        await registry.execute(
            "tag_client", {"client_id": client_id, "tag_name": "vip", "confirmed": True}, ctx
        )
        assert count(db, ClientTagModel) == 1
        assert count(db, ClientTagAssignmentModel) == 1


class TestNotesAndUpdates:
    @pytest.mark.asyncio
    async def test_add_note(self, registry, ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya")
        args = {"client_id": client_id, "note": "Prefers rose gold"}

        await registry.execute("add_client_note", args, ctx)
        assert count(db, ClientNoteModel) == 0

        done = await registry.execute("add_client_note", {**args, "confirmed": True}, ctx)
        assert done.kind == EnvelopeKind.OK
        session = db.get_session()
        try:
            note = session.query(ClientNoteModel).one()
            assert note.body == "Prefers rose gold"
            assert note.created_by == "user-a"
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_update_client_splits_name(self, registry, ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya", "Lopez")
        args = {"client_name": "maya", "updates": {"name": "Maya Lopez Reyes", "phone": "+1555"}}

        pending = await registry.execute("update_client", args, ctx)
        assert pending.result["preview"]["changes"]["last_name"] == {"from": "Lopez", "to": "Lopez Reyes"}

        await registry.execute("update_client", {**args, "confirmed": True}, ctx)
        session = db.get_session()
        try:
            client = session.query(ClientModel).filter_by(id=client_id).one()
            assert (client.first_name, client.last_name, client.phone) == ("Maya", "Lopez Reyes", "+1555")
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_update_client_ambiguous_name(self, registry, ctx, db, tenants):
        seed_client(db, tenants["a"], "Maya", "Lopez")
        seed_client(db, tenants["a"], "Maya", "Chen")
        env = await registry.execute(
            "update_client", {"client_name": "Maya", "updates": {"phone": "1"}, "confirmed": True}, ctx
        )
        assert env.kind == EnvelopeKind.NEEDS_CLARIFICATION
        assert env.result["message"] == 'Multiple clients match "Maya". Which one?'

    @pytest.mark.asyncio
    async def test_update_client_needs_a_target(self, registry, ctx):
        env = await registry.execute("update_client", {"updates": {"phone": "1"}}, ctx)
        assert env.result == {"error": "Provide client_id or client_name to find the client"}


# ---------------------------------------------------------------------------
# Outreach
# ---------------------------------------------------------------------------


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_sms_preview_renders_variables(self, registry, outreach_ctx, db, tenants, messenger):
        client_id = seed_client(db, tenants["a"], "Maya", "Lopez", phone="+15550101")
        args = {
            "client_id": client_id,
            "channel": "sms",
            "body": "Hi {{client_first_name}}! Thanks for visiting {{business_name}}.",
        }

        pending = await registry.execute("send_message", args, outreach_ctx)
        preview = pending.result["preview"]
        assert preview["body"] == "Hi Maya! Thanks for visiting Golden Hour PJ."
        assert preview["to"] == "Maya Lopez"
        assert preview["to_contact"] == "+15550101"
        messenger.send.assert_not_called()

        done = await registry.execute("send_message", {**args, "confirmed": True}, outreach_ctx)
        assert done.result == {
            "success": True,
            "sent_to": "Maya Lopez",
            "channel": "sms",
            "delivered": True,
        }
        messenger.send.assert_awaited_once_with(
            "sms", "+15550101", "Hi Maya! Thanks for visiting Golden Hour PJ.", None
        )

        await outreach_ctx.audit.drain()
        session = db.get_session()
        try:
            (log,) = db.get_message_logs(session, tenants["a"])
            assert log.recipient_phone == "+15550101"
            assert log.client_id == client_id
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_email_default_subject(self, registry, outreach_ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya", email="maya@example.com")
        pending = await registry.execute(
            "send_message", {"client_id": client_id, "channel": "email", "body": "Hello"}, outreach_ctx
        )
        assert pending.result["preview"]["subject"] == "Message from Golden Hour PJ"

    @pytest.mark.asyncio
    async def test_missing_contact(self, registry, outreach_ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya", email="maya@example.com")
        env = await registry.execute(
            "send_message", {"client_id": client_id, "channel": "sms", "body": "Hi"}, outreach_ctx
        )
        assert env.result == {"error": "Client has no phone number"}

    @pytest.mark.asyncio
    async def test_delivery_failure_is_an_error(self, registry, outreach_ctx, db, tenants, messenger):
        messenger.send.side_effect = MessagingError("sms delivery failed with status 400", channel="sms")
        client_id = seed_client(db, tenants["a"], "Maya", phone="+1555")
        env = await registry.execute(
            "send_message",
            {"client_id": client_id, "channel": "sms", "body": "Hi", "confirmed": True},
            outreach_ctx,
        )
        assert env.result == {"error": "sms delivery failed with status 400"}

    @pytest.mark.asyncio
    async def test_messaging_unavailable(self, registry, ctx, db, tenants):
        client_id = seed_client(db, tenants["a"], "Maya", phone="+1555")
        env = await registry.execute(
            "send_message",
            {"client_id": client_id, "channel": "sms", "body": "Hi", "confirmed": True},
            ctx,
        )
        assert env.result == {"error": "Messaging is not available"}


class TestSendBulkMessage:
    def _seed_vips(self, db, tenant_id):
        ids = [
            seed_client(db, tenant_id, "Ana", phone="+1001"),
            seed_client(db, tenant_id, "Bea", phone="+1002"),
            seed_client(db, tenant_id, "Cy", email="cy@example.com"),
        ]
        seed_tag(db, tenant_id, "VIP", ids)
        return ids

    @pytest.mark.asyncio
    async def test_preview_counts_eligible_clients(self, registry, outreach_ctx, db, tenants, messenger):
        self._seed_vips(db, tenants["a"])
        env = await registry.execute(
            "send_bulk_message",
            {"tag_name": "vip", "channel": "sms", "body": "Hi {{client_first_name}}"},
            outreach_ctx,
        )
        assert env.result["preview"] == {
            "tag": "VIP",
            "total_clients": 3,
            "eligible_clients": 2,
            "channel": "sms",
            "body": "Hi {{client_first_name}}",
            "subject": None,
            "sample_names": ["Ana", "Bea"],
        }
        messenger.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_confirmed_send_renders_per_recipient(self, registry, outreach_ctx, db, tenants, messenger):
        self._seed_vips(db, tenants["a"])
        env = await registry.execute(
            "send_bulk_message",
            {"tag_name": "VIP", "channel": "sms", "body": "Hi {{client_first_name}}", "confirmed": True},
            outreach_ctx,
        )

        assert env.result == {"success": True, "sent": 2, "failed": 1, "tag": "VIP"}
        bodies = [call.args[2] for call in messenger.send.await_args_list]
        assert bodies == ["Hi Ana", "Hi Bea"]

        await outreach_ctx.audit.drain()
        session = db.get_session()
        try:
            assert len(db.get_message_logs(session, tenants["a"])) == 2
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_one_failed_recipient_does_not_stop_the_rest(self, registry, outreach_ctx, db, tenants, messenger):
        self._seed_vips(db, tenants["a"])
        messenger.send.side_effect = [MessagingError("bounced", channel="sms"), True]
        env = await registry.execute(
            "send_bulk_message",
            {"tag_name": "VIP", "channel": "sms", "body": "Hi", "confirmed": True},
            outreach_ctx,
        )
        assert env.result == {"success": True, "sent": 1, "failed": 2, "tag": "VIP"}

    @pytest.mark.asyncio
    async def test_unknown_tag(self, registry, outreach_ctx):
        env = await registry.execute(
            "send_bulk_message", {"tag_name": "Nope", "channel": "sms", "body": "Hi"}, outreach_ctx
        )
        assert env.result == {"error": 'Tag "Nope" not found'}

    @pytest.mark.asyncio
    async def test_tag_without_clients(self, registry, outreach_ctx, db, tenants):
        seed_tag(db, tenants["a"], "Empty", [])
        env = await registry.execute(
            "send_bulk_message", {"tag_name": "Empty", "channel": "sms", "body": "Hi"}, outreach_ctx
        )
        assert env.result == {"error": 'No clients have the "Empty" tag'}

    @pytest.mark.asyncio
    async def test_other_tenants_tag_is_invisible(self, registry, outreach_ctx, db, tenants):
        self._seed_vips(db, tenants["b"])
        env = await registry.execute(
            "send_bulk_message", {"tag_name": "VIP", "channel": "sms", "body": "Hi"}, outreach_ctx
        )
        assert env.is_error

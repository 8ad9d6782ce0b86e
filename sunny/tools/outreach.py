"""
Sunny - Outreach tools: one-to-one and tag-wide messages.

Bodies and subjects are rendered per recipient with the standard template
variables. Each delivered message is written to the message log by the
background audit writer.
"""

import logging
from typing import Any, Optional

from sqlalchemy import func

from ..database import ClientModel, ClientTagAssignmentModel, ClientTagModel
from ..exceptions import MessagingError
from ..models import ToolContext, ToolResultEnvelope
from ..templates import client_variables, render_template
from .clients import display_name
from .common import get_owned, get_tenant
from .registry import HandlerTable, Mutation

logger = logging.getLogger("sunny.tools.outreach")

handlers = HandlerTable()

SAMPLE_NAMES = 5


def contact_for(client: ClientModel, channel: str) -> Optional[str]:
    return client.phone if channel == "sms" else client.email


def default_subject(business_name: Optional[str]) -> str:
    return f"Message from {business_name or 'your artist'}"


def _messenger(ctx: ToolContext):
    if ctx.messenger is None:
        raise MessagingError("Messaging is not available")
    return ctx.messenger


def _log_sent(ctx: ToolContext, client_id: str, channel: str, contact: str, body: str, subject: Optional[str]) -> None:
    if ctx.audit is None:
        return
    ctx.audit.record_message(
        tenant_id=ctx.tenant_id,
        client_id=client_id,
        channel=channel,
        body=body,
        recipient_email=contact if channel == "email" else None,
        recipient_phone=contact if channel == "sms" else None,
        subject=subject,
    )


@handlers.register("send_message")
async def send_message(ctx: ToolContext, args: dict[str, Any]):
    channel = args["channel"]

    with ctx.db.session_scope() as session:
        client = get_owned(session, ClientModel, ctx.tenant_id, args["client_id"])
        if client is None:
            return ToolResultEnvelope.error("Client not found")
        tenant = get_tenant(session, ctx.tenant_id)
        business_name = tenant.name if tenant else None
        business_phone = tenant.phone if tenant else None

        contact = contact_for(client, channel)
        if not contact:
            return ToolResultEnvelope.error(
                "Client has no phone number" if channel == "sms" else "Client has no email address"
            )

        variables = client_variables(
            client.first_name, client.last_name, business_name, business_phone
        )
        client_id, client_name = client.id, display_name(client)

    body = render_template(args["body"], variables)
    subject = None
    if channel == "email":
        subject = (
            render_template(args["subject"], variables)
            if args.get("subject")
            else default_subject(business_name)
        )

    async def apply():
        delivered = await _messenger(ctx).send(channel, contact, body, subject)
        _log_sent(ctx, client_id, channel, contact, body, subject)
        return {"sent_to": client_name, "channel": channel, "delivered": delivered}

    preview = {
        "to": client_name,
        "to_contact": contact,
        "channel": channel,
        "body": body,
        "subject": subject,
    }
    return Mutation(preview=preview, apply=apply)


@handlers.register("send_bulk_message")
async def send_bulk_message(ctx: ToolContext, args: dict[str, Any]):
    channel = args["channel"]
    tag_name = args["tag_name"].strip()

    with ctx.db.session_scope() as session:
        tag = (
            session.query(ClientTagModel)
            .filter(
                ClientTagModel.tenant_id == ctx.tenant_id,
                func.lower(ClientTagModel.name) == tag_name.lower(),
            )
            .first()
        )
        if tag is None:
            return ToolResultEnvelope.error(f'Tag "{tag_name}" not found')

        clients = (
            session.query(ClientModel)
            .join(ClientTagAssignmentModel, ClientTagAssignmentModel.client_id == ClientModel.id)
            .filter(
                ClientTagAssignmentModel.tag_id == tag.id,
                ClientModel.tenant_id == ctx.tenant_id,
            )
            .order_by(ClientModel.first_name, ClientModel.last_name)
            .all()
        )
        if not clients:
            return ToolResultEnvelope.error(f'No clients have the "{tag.name}" tag')

        tenant = get_tenant(session, ctx.tenant_id)
        business_name = tenant.name if tenant else None
        business_phone = tenant.phone if tenant else None

        recipients = [
            {
                "client_id": c.id,
                "name": display_name(c),
                "contact": contact_for(c, channel),
                "variables": client_variables(
                    c.first_name, c.last_name, business_name, business_phone
                ),
            }
            for c in clients
        ]
        tag_label = tag.name

    eligible = [r for r in recipients if r["contact"]]
    subject_template = args.get("subject") or (
        default_subject(business_name) if channel == "email" else None
    )

    async def apply():
        messenger = _messenger(ctx)
        sent = 0
        failed = len(recipients) - len(eligible)
        for recipient in eligible:
            body = render_template(args["body"], recipient["variables"])
            subject = (
                render_template(subject_template, recipient["variables"])
                if subject_template
                else None
            )
            try:
                await messenger.send(channel, recipient["contact"], body, subject)
            except MessagingError as e:
                logger.warning("Bulk send to %s failed: %s", recipient["client_id"], e)
                failed += 1
                continue
            _log_sent(ctx, recipient["client_id"], channel, recipient["contact"], body, subject)
            sent += 1
        return {"sent": sent, "failed": failed, "tag": tag_label}

    preview = {
        "tag": tag_label,
        "total_clients": len(recipients),
        "eligible_clients": len(eligible),
        "channel": channel,
        "body": args["body"],
        "subject": subject_template,
        "sample_names": [r["name"] for r in eligible[:SAMPLE_NAMES]],
    }
    return Mutation(preview=preview, apply=apply)

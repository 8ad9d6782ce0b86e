"""
Sunny - Message template tools.
"""

from typing import Any

from sqlalchemy import func

from ..database import MessageTemplateModel
from ..models import ToolContext, ToolResultEnvelope
from ..templates import SAMPLE_VARIABLES, render_template
from .common import get_owned, resolve_by_name
from .registry import HandlerTable, Mutation

handlers = HandlerTable()

DEFAULT_CATEGORY = "general"
_TEMPLATE_FIELDS = ("name", "body", "subject", "channel", "category")


def _match(template: MessageTemplateModel) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "channel": template.channel,
        "category": template.category,
    }


def _name_taken(session, tenant_id: str, name: str, exclude_id: Any = None) -> bool:
    query = session.query(MessageTemplateModel.id).filter(
        MessageTemplateModel.tenant_id == tenant_id,
        func.lower(MessageTemplateModel.name) == name.lower(),
    )
    if exclude_id is not None:
        query = query.filter(MessageTemplateModel.id != exclude_id)
    return query.first() is not None


@handlers.register("create_template")
async def create_template(ctx: ToolContext, args: dict[str, Any]):
    fields = {
        "name": args["name"].strip(),
        "channel": args["channel"],
        "category": args.get("category") or DEFAULT_CATEGORY,
        "subject": args.get("subject") if args["channel"] == "email" else None,
        "body": args["body"],
    }

    with ctx.db.session_scope() as session:
        if _name_taken(session, ctx.tenant_id, fields["name"]):
            return ToolResultEnvelope.error("A template with that name already exists")

    async def apply():
        with ctx.db.session_scope() as session:
            if _name_taken(session, ctx.tenant_id, fields["name"]):
                raise ValueError("A template with that name already exists")
            template = MessageTemplateModel(tenant_id=ctx.tenant_id, **fields)
            session.add(template)
            session.flush()
            return {"template": _match(template)}

    preview = {
        "action": "create_template",
        **fields,
        "sample": render_template(fields["body"], SAMPLE_VARIABLES),
    }
    return Mutation(preview=preview, apply=apply)


@handlers.register("update_template")
async def update_template(ctx: ToolContext, args: dict[str, Any]):
    raw = args.get("updates") or {}
    updates = {key: raw[key] for key in _TEMPLATE_FIELDS if raw.get(key) is not None}
    if updates.get("channel") not in (None, "sms", "email"):
        return ToolResultEnvelope.error("channel must be sms or email")

    with ctx.db.session_scope() as session:
        template = resolve_by_name(
            session,
            MessageTemplateModel,
            ctx.tenant_id,
            args["template_name"],
            [MessageTemplateModel.name],
            entity="template",
            describe=_match,
        )
        if isinstance(template, ToolResultEnvelope):
            return template
        if not updates:
            return ToolResultEnvelope.error("No valid updates provided")
        if "name" in updates and _name_taken(session, ctx.tenant_id, updates["name"], template.id):
            return ToolResultEnvelope.error("A template with that name already exists")

        template_id, template_name = template.id, template.name
        preview = {
            "action": "update_template",
            "template_id": template_id,
            "template_name": template_name,
            "changes": {
                key: {"from": getattr(template, key), "to": value}
                for key, value in updates.items()
            },
        }

    async def apply():
        with ctx.db.session_scope() as session:
            row = get_owned(session, MessageTemplateModel, ctx.tenant_id, template_id)
            if row is None:
                raise LookupError("Template no longer exists")
            for key, value in updates.items():
                setattr(row, key, value)
        return {"template_name": template_name, "updates_applied": updates}

    return Mutation(preview=preview, apply=apply)

"""
Sunny - Client tools: lookup, tags, notes and profile edits.
"""

from typing import Any

from sqlalchemy import func, or_

from ..database import (
    ClientModel,
    ClientNoteModel,
    ClientTagAssignmentModel,
    ClientTagModel,
    SaleModel,
    utcnow,
)
from ..models import ToolContext, ToolResultEnvelope
from .common import (
    client_full_name,
    clamp_limit,
    get_owned,
    isoformat,
    money,
    name_matches,
    resolve_by_name,
    start_of_day,
)
from .registry import HandlerTable, Mutation

handlers = HandlerTable()

DEFAULT_TAG_COLOR = "#7A8B8C"
RECENT_NOTES = 5
RECENT_SALES = 20


def display_name(client: ClientModel) -> str:
    return client.full_name or "Unnamed"


def _match(client: ClientModel) -> dict[str, Any]:
    return {
        "id": client.id,
        "name": display_name(client),
        "email": client.email,
        "phone": client.phone,
    }


def _load_client(session, tenant_id: str, client_id: str) -> ClientModel:
    client = get_owned(session, ClientModel, tenant_id, client_id)
    if client is None:
        raise LookupError("Client no longer exists")
    return client


def split_name(full_name: str) -> tuple[str, Any]:
    parts = full_name.split()
    if not parts:
        return "", None
    return parts[0], " ".join(parts[1:]) or None


@handlers.register("search_clients")
async def search_clients(ctx: ToolContext, args: dict[str, Any]):
    term = args["query"].strip()
    limit = clamp_limit(args.get("limit"), default=10)

    with ctx.db.session_scope() as session:
        rows = (
            session.query(ClientModel)
            .filter(
                ClientModel.tenant_id == ctx.tenant_id,
                or_(
                    name_matches(ClientModel.first_name, term),
                    name_matches(ClientModel.last_name, term),
                    name_matches(ClientModel.email, term),
                    name_matches(ClientModel.phone, term),
                    name_matches(client_full_name(), term),
                ),
            )
            .order_by(ClientModel.created_at.desc())
            .limit(limit)
            .all()
        )
        clients = [
            {**_match(c), "since": isoformat(c.created_at)} for c in rows
        ]
    return {"clients": clients, "total": len(clients)}


@handlers.register("get_client_details")
async def get_client_details(ctx: ToolContext, args: dict[str, Any]):
    with ctx.db.session_scope() as session:
        client = get_owned(session, ClientModel, ctx.tenant_id, args["client_id"])
        if client is None:
            return ToolResultEnvelope.error("Client not found")

        tags = [
            name
            for (name,) in session.query(ClientTagModel.name)
            .join(ClientTagAssignmentModel, ClientTagAssignmentModel.tag_id == ClientTagModel.id)
            .filter(
                ClientTagAssignmentModel.client_id == client.id,
                ClientTagModel.tenant_id == ctx.tenant_id,
            )
            .order_by(ClientTagModel.name)
            .all()
        ]
        notes = (
            session.query(ClientNoteModel)
            .filter(
                ClientNoteModel.client_id == client.id,
                ClientNoteModel.tenant_id == ctx.tenant_id,
            )
            .order_by(ClientNoteModel.created_at.desc())
            .limit(RECENT_NOTES)
            .all()
        )
        sales = (
            session.query(SaleModel)
            .filter(
                SaleModel.client_id == client.id,
                SaleModel.tenant_id == ctx.tenant_id,
                SaleModel.status == "completed",
            )
            .order_by(SaleModel.created_at.desc())
            .limit(RECENT_SALES)
            .all()
        )

        return {
            "id": client.id,
            "name": display_name(client),
            "email": client.email,
            "phone": client.phone,
            "member_since": isoformat(client.created_at),
            "tags": tags,
            "recent_notes": [
                {"body": n.body, "date": isoformat(n.created_at)} for n in notes
            ],
            "purchase_count": len(sales),
            "total_spend": money(sum(s.total or 0 for s in sales)),
        }


@handlers.register("tag_client")
async def tag_client(ctx: ToolContext, args: dict[str, Any]):
    tag_name = args["tag_name"].strip()
    if not tag_name:
        return ToolResultEnvelope.error("Tag name is required")
    color = args.get("color") or DEFAULT_TAG_COLOR

    with ctx.db.session_scope() as session:
        client = get_owned(session, ClientModel, ctx.tenant_id, args["client_id"])
        if client is None:
            return ToolResultEnvelope.error("Client not found")
        client_id, client_name = client.id, display_name(client)
        existing_tag = _find_tag(session, ctx.tenant_id, tag_name)

    async def apply():
        with ctx.db.session_scope() as session:
            _load_client(session, ctx.tenant_id, client_id)
            tag = _find_tag(session, ctx.tenant_id, tag_name)
            if tag is None:
                tag = ClientTagModel(tenant_id=ctx.tenant_id, name=tag_name, color=color)
                session.add(tag)
                session.flush()
            assigned = (
                session.query(ClientTagAssignmentModel)
                .filter(
                    ClientTagAssignmentModel.client_id == client_id,
                    ClientTagAssignmentModel.tag_id == tag.id,
                )
                .first()
            )
            if assigned is None:
                session.add(ClientTagAssignmentModel(client_id=client_id, tag_id=tag.id))
            return {"tag_name": tag.name, "client_id": client_id}

    preview = {
        "action": "tag_client",
        "client_id": client_id,
        "client_name": client_name,
        "tag_name": existing_tag.name if existing_tag else tag_name,
        "creates_tag": existing_tag is None,
    }
    return Mutation(preview=preview, apply=apply)


def _find_tag(session, tenant_id: str, tag_name: str):
    return (
        session.query(ClientTagModel)
        .filter(
            ClientTagModel.tenant_id == tenant_id,
            func.lower(ClientTagModel.name) == tag_name.lower(),
        )
        .first()
    )


@handlers.register("add_client_note")
async def add_client_note(ctx: ToolContext, args: dict[str, Any]):
    note = args["note"].strip()
    if not note:
        return ToolResultEnvelope.error("Note text is required")

    with ctx.db.session_scope() as session:
        client = get_owned(session, ClientModel, ctx.tenant_id, args["client_id"])
        if client is None:
            return ToolResultEnvelope.error("Client not found")
        client_id, client_name = client.id, display_name(client)

    async def apply():
        with ctx.db.session_scope() as session:
            _load_client(session, ctx.tenant_id, client_id)
            row = ClientNoteModel(
                tenant_id=ctx.tenant_id,
                client_id=client_id,
                created_by=ctx.user_id,
                body=note,
            )
            session.add(row)
            session.flush()
            return {"client_id": client_id, "note_id": row.id}

    preview = {
        "action": "add_client_note",
        "client_id": client_id,
        "client_name": client_name,
        "note": note,
    }
    return Mutation(preview=preview, apply=apply)


@handlers.register("update_client")
async def update_client(ctx: ToolContext, args: dict[str, Any]):
    raw = args.get("updates") or {}
    updates: dict[str, Any] = {}
    if raw.get("name"):
        updates["first_name"], updates["last_name"] = split_name(raw["name"])
    for key in ("email", "phone"):
        if raw.get(key):
            updates[key] = raw[key]

    with ctx.db.session_scope() as session:
        if args.get("client_id"):
            client = get_owned(session, ClientModel, ctx.tenant_id, args["client_id"])
            if client is None:
                return ToolResultEnvelope.error("Client not found")
        elif args.get("client_name"):
            client = resolve_by_name(
                session,
                ClientModel,
                ctx.tenant_id,
                args["client_name"],
                [ClientModel.first_name, ClientModel.last_name, client_full_name()],
                entity="client",
                describe=_match,
            )
            if isinstance(client, ToolResultEnvelope):
                return client
        else:
            return ToolResultEnvelope.error("Provide client_id or client_name to find the client")

        if not updates:
            return ToolResultEnvelope.error("No valid updates provided")

        client_id, client_name = client.id, display_name(client)
        preview = {
            "action": "update_client",
            "client_id": client_id,
            "client_name": client_name,
            "changes": {
                key: {"from": getattr(client, key), "to": value}
                for key, value in updates.items()
            },
        }

    async def apply():
        with ctx.db.session_scope() as session:
            row = _load_client(session, ctx.tenant_id, client_id)
            for key, value in updates.items():
                setattr(row, key, value)
            return {
                "client_id": client_id,
                "client_name": display_name(row),
                "updates_applied": updates,
            }

    return Mutation(preview=preview, apply=apply)


@handlers.register("get_client_stats")
async def get_client_stats(ctx: ToolContext, args: dict[str, Any]):
    month_start = start_of_day(utcnow()).replace(day=1)
    with ctx.db.session_scope() as session:
        base = session.query(func.count(ClientModel.id)).filter(
            ClientModel.tenant_id == ctx.tenant_id
        )
        total = base.scalar() or 0
        new_this_month = base.filter(ClientModel.created_at >= month_start).scalar() or 0
    return {"total_clients": total, "new_this_month": new_this_month}

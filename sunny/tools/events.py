"""
Sunny - Event tools.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import func

from ..database import EventModel, QueueEntryModel, SaleModel, utcnow
from ..models import ToolContext, ToolResultEnvelope
from .common import (
    changes,
    clamp_limit,
    get_owned,
    isoformat,
    money,
    parse_datetime,
    resolve_target,
)
from .registry import HandlerTable, Mutation

handlers = HandlerTable()

_EVENT_TEXT_FIELDS = ("name", "location", "notes")
_EVENT_TIME_FIELDS = ("start_time", "end_time")


def _summary(event: EventModel) -> dict[str, Any]:
    return {
        "id": event.id,
        "name": event.name,
        "location": event.location,
        "start_time": isoformat(event.start_time),
        "end_time": isoformat(event.end_time),
        "booth_fee": money(event.booth_fee),
        "is_active": event.is_active,
    }


def _match(event: EventModel) -> dict[str, Any]:
    return {
        "id": event.id,
        "name": event.name,
        "date": isoformat(event.start_time),
        "location": event.location,
    }


def _resolve_event(session, tenant_id: str, args: dict[str, Any]):
    return resolve_target(
        session,
        EventModel,
        tenant_id,
        args,
        id_key="event_id",
        name_key="event_name",
        columns=[EventModel.name],
        entity="event",
        describe=_match,
    )


def _load(session, tenant_id: str, event_id: str) -> EventModel:
    event = get_owned(session, EventModel, tenant_id, event_id)
    if event is None:
        raise LookupError("Event no longer exists")
    return event


def _check_window(start: datetime, end: Any) -> None:
    if end is not None and start is not None and end < start:
        raise ValueError("end_time must be after start_time")


@handlers.register("create_event")
async def create_event(ctx: ToolContext, args: dict[str, Any]):
    try:
        start = parse_datetime(args["start_time"], "start_time")
        end = parse_datetime(args.get("end_time"), "end_time")
        _check_window(start, end)
    except ValueError as e:
        return ToolResultEnvelope.error(str(e))

    fields = {
        "name": args["name"].strip(),
        "start_time": start,
        "end_time": end,
        "location": args.get("location") or None,
        "notes": args.get("notes") or None,
    }

    async def apply():
        with ctx.db.session_scope() as session:
            event = EventModel(tenant_id=ctx.tenant_id, is_active=True, **fields)
            session.add(event)
            session.flush()
            return {
                "event": {
                    "id": event.id,
                    "name": event.name,
                    "start_time": isoformat(event.start_time),
                    "location": event.location,
                }
            }

    preview = {
        "action": "create_event",
        **fields,
        "start_time": isoformat(start),
        "end_time": isoformat(end),
    }
    return Mutation(preview=preview, apply=apply)


@handlers.register("get_event_performance")
async def get_event_performance(ctx: ToolContext, args: dict[str, Any]):
    with ctx.db.session_scope() as session:
        event = get_owned(session, EventModel, ctx.tenant_id, args["event_id"])
        if event is None:
            return ToolResultEnvelope.error("Event not found")

        sales = (
            session.query(SaleModel)
            .filter(
                SaleModel.tenant_id == ctx.tenant_id,
                SaleModel.event_id == event.id,
                SaleModel.status == "completed",
            )
            .all()
        )
        statuses = [
            status
            for (status,) in session.query(QueueEntryModel.status).filter(
                QueueEntryModel.tenant_id == ctx.tenant_id,
                QueueEntryModel.event_id == event.id,
            )
        ]

        revenue = sum(s.total or 0 for s in sales)
        booth_fee = event.booth_fee or 0
        return {
            "event": {
                "name": event.name,
                "location": event.location,
                "date": isoformat(event.start_time),
            },
            "sales_count": len(sales),
            "revenue": money(revenue),
            "tips": money(sum(s.tip_amount or 0 for s in sales)),
            "booth_fee": money(booth_fee),
            "net_profit": money(revenue - booth_fee),
            "queue_total": len(statuses),
            "queue_served": statuses.count("served"),
            "queue_no_show": statuses.count("no_show"),
        }


@handlers.register("list_events")
async def list_events(ctx: ToolContext, args: dict[str, Any]):
    limit = clamp_limit(args.get("limit"), default=10)
    with ctx.db.session_scope() as session:
        query = session.query(EventModel).filter(EventModel.tenant_id == ctx.tenant_id)
        if args.get("upcoming"):
            query = query.filter(EventModel.start_time >= utcnow()).order_by(
                EventModel.start_time.asc()
            )
        else:
            query = query.order_by(EventModel.start_time.desc())
        events = [_summary(e) for e in query.limit(limit).all()]
    return {"events": events, "total": len(events)}


@handlers.register("update_event")
async def update_event(ctx: ToolContext, args: dict[str, Any]):
    raw = args.get("updates") or {}
    updates: dict[str, Any] = {
        key: raw[key] for key in _EVENT_TEXT_FIELDS if raw.get(key) is not None
    }
    if isinstance(raw.get("booth_fee"), (int, float)) and not isinstance(raw["booth_fee"], bool):
        updates["booth_fee"] = raw["booth_fee"]
    try:
        for key in _EVENT_TIME_FIELDS:
            if raw.get(key):
                updates[key] = parse_datetime(raw[key], key)
    except ValueError as e:
        return ToolResultEnvelope.error(str(e))

    with ctx.db.session_scope() as session:
        event = _resolve_event(session, ctx.tenant_id, args)
        if isinstance(event, ToolResultEnvelope):
            return event
        if not updates:
            return ToolResultEnvelope.error("No valid updates provided")
        try:
            _check_window(
                updates.get("start_time", event.start_time),
                updates.get("end_time", event.end_time),
            )
        except ValueError as e:
            return ToolResultEnvelope.error(str(e))

        event_id, event_name = event.id, event.name
        preview = {
            "action": "update_event",
            "event_id": event_id,
            "event_name": event_name,
            "changes": changes(event, updates),
        }

    async def apply():
        with ctx.db.session_scope() as session:
            row = _load(session, ctx.tenant_id, event_id)
            for key, value in updates.items():
                setattr(row, key, value)
        return {
            "event_id": event_id,
            "event_name": updates.get("name", event_name),
            "updates_applied": {
                k: isoformat(v) if isinstance(v, datetime) else v for k, v in updates.items()
            },
        }

    return Mutation(preview=preview, apply=apply)


@handlers.register("delete_event")
async def delete_event(ctx: ToolContext, args: dict[str, Any]):
    action = args["action"]
    with ctx.db.session_scope() as session:
        event = _resolve_event(session, ctx.tenant_id, args)
        if isinstance(event, ToolResultEnvelope):
            return event
        event_id, event_name = event.id, event.name
        sales_count = (
            session.query(func.count(SaleModel.id))
            .filter(SaleModel.tenant_id == ctx.tenant_id, SaleModel.event_id == event_id)
            .scalar()
            or 0
        )

    async def apply():
        with ctx.db.session_scope() as session:
            row = _load(session, ctx.tenant_id, event_id)
            if action == "cancel":
                row.is_active = False
                return {"action": "cancelled", "event_name": event_name}

            # Sales keep their history without the event link.
            session.query(SaleModel).filter(
                SaleModel.tenant_id == ctx.tenant_id, SaleModel.event_id == event_id
            ).update({SaleModel.event_id: None}, synchronize_session=False)
            session.query(QueueEntryModel).filter(
                QueueEntryModel.tenant_id == ctx.tenant_id,
                QueueEntryModel.event_id == event_id,
            ).delete(synchronize_session=False)
            session.delete(row)
        return {"action": "deleted", "event_name": event_name}

    preview = {
        "action": action,
        "event_id": event_id,
        "event_name": event_name,
        "linked_sales": sales_count,
        "warning": (
            "This permanently removes the event."
            if action == "delete"
            else "The event will be marked as cancelled."
        ),
    }
    return Mutation(preview=preview, apply=apply)

"""
Sunny - Inventory tools.
"""

import logging
from typing import Any

from ..database import InventoryItemModel
from ..models import ToolContext, ToolResultEnvelope
from .common import get_owned, money, resolve_by_name
from .registry import HandlerTable, Mutation

logger = logging.getLogger("sunny.tools.inventory")

handlers = HandlerTable()

INVENTORY_LIMIT = 50

# update_inventory_item input field -> column
_ITEM_UPDATE_FIELDS = {
    "cost_per_inch": "cost_per_unit",
    "sell_price": "sell_price",
    "current_length_inches": "quantity_on_hand",
    "material": "material",
    "is_active": "is_active",
}


def _summary(item: InventoryItemModel) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "type": item.type,
        "material": item.material,
        "quantity": item.quantity_on_hand,
        "unit": item.unit,
        "sell_price": item.sell_price,
        "cost": item.cost_per_unit,
        "low_stock": bool(item.reorder_threshold)
        and (item.quantity_on_hand or 0) <= item.reorder_threshold,
    }


def _match(item: InventoryItemModel) -> dict[str, Any]:
    return {"id": item.id, "name": item.name, "type": item.type, "material": item.material}


def _resolve_item(session, tenant_id: str, search_name: str):
    return resolve_by_name(
        session,
        InventoryItemModel,
        tenant_id,
        search_name,
        [InventoryItemModel.name],
        entity="inventory item",
        describe=_match,
        plural="items",
        order_by=InventoryItemModel.name,
    )


def _load(session, tenant_id: str, item_id: str) -> InventoryItemModel:
    item = get_owned(session, InventoryItemModel, tenant_id, item_id)
    if item is None:
        raise LookupError("Inventory item no longer exists")
    return item


@handlers.register("check_inventory")
async def check_inventory(ctx: ToolContext, args: dict[str, Any]):
    with ctx.db.session_scope() as session:
        query = session.query(InventoryItemModel).filter(
            InventoryItemModel.tenant_id == ctx.tenant_id,
            InventoryItemModel.is_active.is_(True),
        )
        if args.get("query"):
            query = query.filter(
                InventoryItemModel.name.icontains(args["query"], autoescape=True)
            )
        if args.get("type"):
            query = query.filter(InventoryItemModel.type == args["type"])

        items = [
            _summary(item)
            for item in query.order_by(InventoryItemModel.type, InventoryItemModel.name)
            .limit(INVENTORY_LIMIT)
            .all()
        ]
    return {"items": items, "total": len(items)}


@handlers.register("add_inventory")
async def add_inventory(ctx: ToolContext, args: dict[str, Any]):
    name = args["name"].strip()
    if args["quantity_on_hand"] < 0:
        return ToolResultEnvelope.error("quantity_on_hand must not be negative")

    fields = {
        "name": name,
        "type": args["type"],
        "material": args.get("material"),
        "quantity_on_hand": args["quantity_on_hand"],
        "unit": args["unit"],
        "cost_per_unit": args.get("cost") or 0,
        "sell_price": args.get("sell_price") or 0,
    }

    async def apply():
        with ctx.db.session_scope() as session:
            item = InventoryItemModel(tenant_id=ctx.tenant_id, is_active=True, **fields)
            session.add(item)
            session.flush()
            return {"item": {"id": item.id, "name": item.name, "type": item.type}}

    preview = {"action": "add_inventory", **fields}
    return Mutation(preview=preview, apply=apply)


@handlers.register("update_price")
async def update_price(ctx: ToolContext, args: dict[str, Any]):
    new_price = args["sell_price"]
    if new_price < 0:
        return ToolResultEnvelope.error("sell_price must not be negative")

    with ctx.db.session_scope() as session:
        if args.get("item_id"):
            item = get_owned(session, InventoryItemModel, ctx.tenant_id, args["item_id"])
            if item is None:
                return ToolResultEnvelope.error("Inventory item not found")
        elif args.get("search_name"):
            item = _resolve_item(session, ctx.tenant_id, args["search_name"])
            if isinstance(item, ToolResultEnvelope):
                return item
        else:
            return ToolResultEnvelope.error("Provide item_id or search_name to find the item")
        item_id, item_name, current = item.id, item.name, item.sell_price

    async def apply():
        with ctx.db.session_scope() as session:
            _load(session, ctx.tenant_id, item_id).sell_price = new_price
        return {"item_id": item_id, "item_name": item_name, "new_price": new_price}

    preview = {
        "action": "update_price",
        "item_id": item_id,
        "item_name": item_name,
        "current_price": money(current),
        "new_price": new_price,
    }
    return Mutation(preview=preview, apply=apply)


@handlers.register("update_inventory_item")
async def update_inventory_item(ctx: ToolContext, args: dict[str, Any]):
    with ctx.db.session_scope() as session:
        item = _resolve_item(session, ctx.tenant_id, args["search_name"])
        if isinstance(item, ToolResultEnvelope):
            return item

        raw = args.get("updates") or {}
        updates = {
            column: raw[key]
            for key, column in _ITEM_UPDATE_FIELDS.items()
            if raw.get(key) is not None
        }
        if not updates:
            return ToolResultEnvelope.error("No valid updates provided")

        item_id, item_name = item.id, item.name
        preview = {
            "action": "update_inventory_item",
            "item_id": item_id,
            "item_name": item_name,
            "changes": {
                column: {"from": getattr(item, column), "to": value}
                for column, value in updates.items()
            },
        }

    async def apply():
        with ctx.db.session_scope() as session:
            row = _load(session, ctx.tenant_id, item_id)
            for column, value in updates.items():
                setattr(row, column, value)
        return {"item_name": item_name, "item_id": item_id, "updates_applied": updates}

    return Mutation(preview=preview, apply=apply)


@handlers.register("delete_inventory_item")
async def delete_inventory_item(ctx: ToolContext, args: dict[str, Any]):
    action = args["action"]
    with ctx.db.session_scope() as session:
        item = _resolve_item(session, ctx.tenant_id, args["search_name"])
        if isinstance(item, ToolResultEnvelope):
            return item
        item_id, item_name = item.id, item.name

    async def apply():
        with ctx.db.session_scope() as session:
            row = _load(session, ctx.tenant_id, item_id)
            if action == "delete":
                session.delete(row)
            else:
                row.is_active = False
        logger.info("Inventory item %s %sd for tenant %s", item_id, action, ctx.tenant_id)
        return {
            "action": "deleted" if action == "delete" else "deactivated",
            "item_name": item_name,
        }

    preview = {
        "action": action,
        "item_id": item_id,
        "item_name": item_name,
        "warning": (
            "This permanently removes the item."
            if action == "delete"
            else "The item will be hidden from inventory."
        ),
    }
    return Mutation(preview=preview, apply=apply)

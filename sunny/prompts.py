"""
Sunny - System prompt assembly.

The system prompt is rebuilt for every request from four parts: standing
rules, the knowledge fragments selected for the conversation, a snapshot of
the artist's business data, and a hint about the page they are looking at.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func

from .database import (
    ClientModel,
    EventModel,
    InventoryItemModel,
    QueueEntryModel,
    SaleModel,
    TenantModel,
    utcnow,
)

logger = logging.getLogger("sunny.prompts")

PAGE_NAMES = {
    "/dashboard": "Dashboard",
    "/dashboard/events": "Events",
    "/dashboard/events/event-mode": "Event Mode POS",
    "/dashboard/inventory": "Inventory",
    "/dashboard/pos": "Store Mode POS",
    "/dashboard/clients": "Clients",
    "/dashboard/queue": "Queue",
    "/dashboard/reports": "Reports",
    "/dashboard/settings": "Settings",
    "/dashboard/broadcasts": "Broadcasts",
    "/dashboard/templates": "Templates",
    "/onboarding": "Onboarding",
}

INVENTORY_GROUPS = (
    ("chain", "Chains"),
    ("jump_ring", "Jump Rings"),
    ("charm", "Charms"),
    ("connector", "Connectors"),
)

UPCOMING_WINDOW_DAYS = 30
UPCOMING_LIMIT = 5
QUEUE_LIMIT = 20
RECENT_CLIENTS = 10

RULES = """You are Sunny, a friendly business mentor for permanent jewelry artists.

RULES:
1. Answer what was asked. Keep answers short: one to three sentences for lookups, at most six steps for how-tos.
2. Use specific numbers from your knowledge and the artist's data. Never invent settings or prices.
3. If you need information you do not have, ask one clarifying question and wait.
4. Never recommend discounting and never say eye protection is optional.
5. Refer the artist to Sunstone support (385-999-5240) if a problem is not solved after two or three attempts."""

TOOL_RULES = """TOOL USE:
You can read and change the artist's business data with tools. Use them when the artist asks you to do something instead of describing how to do it in the app.
CONFIRMATION: Tools that change data return a preview first. Show the preview, ask the artist to confirm, and only then call the tool again with confirmed=true. For deletions ask "Are you sure?".
CLARIFICATION: If a tool returns several matches, list them and ask which one the artist means. Never pick one yourself.
INVENTORY: Chain quantities are always in inches. Call update_inventory_item once per item.
After a tool runs, summarize the result in plain words. If it fails, explain simply and suggest what the artist can do instead.

PRODUCT SEARCH:
When the artist asks about products to buy, end your reply with:
<!-- PRODUCT_SEARCH: descriptive search terms -->

KNOWLEDGE GAP:
If you cannot answer from your knowledge, end your reply with:
<!-- KNOWLEDGE_GAP: {"category": "unknown_answer", "topic": "welding", "summary": "brief"} -->
Categories: unknown_answer, correction, product_gap, technique_question, other
Topics: welding, equipment, business, products, marketing, troubleshooting, client_experience, other"""


def get_page_name(pathname: Optional[str]) -> str:
    """Friendly name for an app path, falling back to its last segment."""
    if not pathname:
        return "Dashboard"
    if pathname in PAGE_NAMES:
        return PAGE_NAMES[pathname]
    return pathname.rstrip("/").split("/")[-1] or "Dashboard"


@dataclass
class TenantSnapshot:
    """Plain-text summary of one tenant's business data."""

    business_name: str = "Your Business"
    tier: str = "free"
    since: str = "recently"
    sales: int = 0
    client_count: int = 0
    event_count: int = 0
    inventory_text: str = "Unable to load inventory"
    events_text: str = "Unable to load events"
    queue_text: str = "Unable to load queue"
    clients_text: str = "Unable to load clients"

    def render(self) -> str:
        return (
            "ARTIST'S BUSINESS DATA (from their account, you CAN see this):\n"
            f"Business: {self.business_name} | {self.tier} plan | Member since {self.since}\n"
            f"Sales: {self.sales} completed | Clients: {self.client_count} total | "
            f"Events: {self.event_count} hosted\n\n"
            f"INVENTORY:\n{self.inventory_text}\n\n"
            f"UPCOMING EVENTS:\n{self.events_text}\n\n"
            f"QUEUE:\n{self.queue_text}\n\n"
            f"RECENT CLIENTS:\n{self.clients_text}"
        )


def _unit_label(unit: Optional[str]) -> str:
    if unit == "each":
        return "ea"
    return unit or ""


def format_inventory_item(item: InventoryItemModel) -> str:
    material = f" ({item.material})" if item.material else ""
    qty = item.quantity_on_hand or 0
    qty_text = f"{qty:g}" if isinstance(qty, float) else str(qty)
    return (
        f"{item.name}{material}: {qty_text}{_unit_label(item.unit)} on hand, "
        f"${float(item.sell_price or 0):.2f} sell price"
    )


def format_inventory(items: list[InventoryItemModel]) -> str:
    sections = []
    for item_type, label in INVENTORY_GROUPS:
        group = [i for i in items if i.type == item_type]
        if group:
            lines = "\n".join(format_inventory_item(i) for i in group)
            sections.append(f"{label} ({len(group)}):\n{lines}")
        else:
            sections.append(f"{label}: None in inventory")
    return "\n".join(sections)


def format_event(event: EventModel) -> str:
    start = event.start_time
    duration = ""
    if event.end_time:
        duration = f"{round((event.end_time - start).total_seconds() / 3600)}h"
    fee = event.booth_fee or 0
    fee_text = f"{fee:g}" if isinstance(fee, float) else str(fee)
    return (
        f"{event.name} - {event.location or 'TBD'} on "
        f"{start:%a, %b} {start.day} {duration} (booth fee: ${fee_text})"
    )


def fetch_tenant_snapshot(db: Any, tenant_id: str, now: Optional[datetime] = None) -> TenantSnapshot:
    """Load the business snapshot, degrading to placeholders on failure."""
    now = now or utcnow()
    session = db.get_session()
    try:
        tenant = session.query(TenantModel).filter(TenantModel.id == tenant_id).first()

        def count(model, *criteria):
            return (
                session.query(func.count(model.id))
                .filter(model.tenant_id == tenant_id, *criteria)
                .scalar()
                or 0
            )

        inventory = (
            session.query(InventoryItemModel)
            .filter(
                InventoryItemModel.tenant_id == tenant_id,
                InventoryItemModel.is_active.is_(True),
            )
            .order_by(InventoryItemModel.type, InventoryItemModel.name)
            .all()
        )
        upcoming = (
            session.query(EventModel)
            .filter(
                EventModel.tenant_id == tenant_id,
                EventModel.is_active.is_(True),
                EventModel.start_time >= now,
                EventModel.start_time <= now + timedelta(days=UPCOMING_WINDOW_DAYS),
            )
            .order_by(EventModel.start_time)
            .limit(UPCOMING_LIMIT)
            .all()
        )
        queue = (
            session.query(QueueEntryModel)
            .filter(
                QueueEntryModel.tenant_id == tenant_id,
                QueueEntryModel.status.in_(("waiting", "notified")),
            )
            .order_by(QueueEntryModel.position)
            .limit(QUEUE_LIMIT)
            .all()
        )
        recent_clients = (
            session.query(ClientModel)
            .filter(ClientModel.tenant_id == tenant_id)
            .order_by(ClientModel.created_at.desc())
            .limit(RECENT_CLIENTS)
            .all()
        )

        return TenantSnapshot(
            business_name=(tenant.name if tenant else None) or "Your Business",
            tier=(tenant.subscription_tier if tenant else None) or "free",
            since=f"{tenant.created_at:%B %Y}" if tenant and tenant.created_at else "recently",
            sales=count(SaleModel, SaleModel.status == "completed"),
            client_count=count(ClientModel),
            event_count=count(EventModel),
            inventory_text=format_inventory(inventory),
            events_text=(
                "\n".join(format_event(e) for e in upcoming)
                if upcoming
                else "No upcoming events scheduled"
            ),
            queue_text=(
                f"{len(queue)} people in queue: "
                + ", ".join(f"{q.name} ({q.status})" for q in queue)
                if queue
                else "No active queue"
            ),
            clients_text=(
                "Recent: " + ", ".join(c.full_name or "Unnamed" for c in recent_clients)
                if recent_clients
                else "No clients yet"
            ),
        )
    except Exception:
        logger.exception("Failed to load business snapshot for tenant %s", tenant_id)
        return TenantSnapshot()
    finally:
        session.close()


def build_system_prompt(
    knowledge_text: str,
    snapshot: TenantSnapshot,
    current_page: Optional[str] = None,
) -> str:
    """Assemble the full system prompt for one request."""
    parts = [
        RULES,
        f"KNOWLEDGE (relevant to this question):\n{knowledge_text}",
        snapshot.render(),
        (
            "You DO have access to this artist's inventory, events, queue and client data. "
            "Reference their actual item names, quantities and prices. If a section says "
            "there is nothing, tell them so honestly."
        ),
    ]
    if current_page:
        parts.append(
            "CURRENT PAGE CONTEXT:\n"
            f"The artist is currently on the {get_page_name(current_page)} page. "
            "If their question relates to what they are looking at, tailor your answer to it."
        )
    parts.append(TOOL_RULES)
    return "\n\n".join(parts)

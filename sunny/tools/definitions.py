"""
Sunny - Tool catalog.

Every tool the assistant may call is declared here once: its schema, the
status label shown while it runs, and whether it changes business data.
Mutating tools get a ``confirmed`` input and a confirmation note in their
description; the registry refuses to apply them until ``confirmed`` is true.
"""

from typing import Any, Optional

from ..models import ToolDefinition

DEFAULT_STATUS_LABEL = "Working..."

PRODUCT_TYPES = ["chain", "jump_ring", "charm", "connector"]
CHANNELS = ["sms", "email"]

CONFIRMATION_NOTE = (
    " REQUIRES CONFIRMATION: first call without confirmed=true to get a preview,"
    " then call again with confirmed=true after the artist approves."
)


def _string(description: str = "", enum: Optional[list[str]] = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "string"}
    if description:
        schema["description"] = description
    if enum:
        schema["enum"] = enum
    return schema


def _number(description: str = "") -> dict[str, Any]:
    return {"type": "number", "description": description} if description else {"type": "number"}


def _boolean(description: str = "") -> dict[str, Any]:
    return {"type": "boolean", "description": description} if description else {"type": "boolean"}


def _object(properties: dict[str, Any], required: tuple[str, ...] = ()) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": list(required)}


def _steps(described: bool = True) -> dict[str, Any]:
    return {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "delay_hours": _number(
                    "Hours to wait before sending (0 = immediate)" if described else ""
                ),
                "channel": _string(enum=CHANNELS),
                "template_name": _string("Which template to send" if described else ""),
                "description": _string(),
            },
        },
    }


# name -> (description, input schema, status label, mutating)
_CATALOG: dict[str, tuple[str, dict[str, Any], str, bool]] = {
    # -- inventory --------------------------------------------------------
    "check_inventory": (
        "Check the artist's current inventory items. Can filter by search query or product type.",
        _object({
            "query": _string("Search term to filter by name (optional)"),
            "type": _string("Filter by product type (optional)", PRODUCT_TYPES),
        }),
        "Checking inventory...",
        False,
    ),
    "add_inventory": (
        "Add a new inventory item to the artist's stock.",
        _object(
            {
                "name": _string('Item name (e.g. "Chloe")'),
                "type": _string("Product type", PRODUCT_TYPES),
                "material": _string('Material (e.g. "14K Gold Fill", "Sterling Silver")'),
                "quantity_on_hand": _number("Starting quantity"),
                "unit": _string("Unit of measurement", ["ft", "each", "in"]),
                "cost": _number("Cost per unit (optional)"),
                "sell_price": _number("Sell price per piece (optional)"),
            },
            ("name", "type", "quantity_on_hand", "unit"),
        ),
        "Adding to inventory...",
        True,
    ),
    "update_price": (
        "Update the sell price of an inventory item, found by id or by name.",
        _object(
            {
                "item_id": _string("Inventory item UUID (if known)"),
                "search_name": _string("Item name to find if no ID"),
                "sell_price": _number("New sell price"),
            },
            ("sell_price",),
        ),
        "Updating price...",
        True,
    ),
    "update_inventory_item": (
        "Update any field on an existing inventory item: cost per inch, sell price, "
        "material, length, active status. Can update multiple fields at once.",
        _object(
            {
                "search_name": _string('Chain name to find (e.g. "Lincoln", "Bryce")'),
                "updates": {
                    "type": "object",
                    "properties": {
                        "cost_per_inch": _number("New cost per inch (mapped to cost_per_unit)"),
                        "sell_price": _number("New sell price"),
                        "current_length_inches": _number(
                            "Set total inches (replaces, does not add; mapped to quantity_on_hand)"
                        ),
                        "material": _string("Update material type"),
                        "is_active": _boolean("Activate or deactivate"),
                    },
                },
            },
            ("search_name", "updates"),
        ),
        "Updating inventory item...",
        True,
    ),
    "delete_inventory_item": (
        "Deactivate or permanently delete an inventory item. Ask with extra caution.",
        _object(
            {
                "search_name": _string("Item name to find"),
                "action": _string(
                    "Deactivate hides it, delete removes it permanently",
                    ["deactivate", "delete"],
                ),
            },
            ("search_name", "action"),
        ),
        "Processing inventory item...",
        True,
    ),
    # -- clients ----------------------------------------------------------
    "search_clients": (
        "Search the artist's client list by name, email, or phone.",
        _object(
            {
                "query": _string("Search term (name, email, or phone)"),
                "limit": _number("Max results to return (default 10)"),
            },
            ("query",),
        ),
        "Searching clients...",
        False,
    ),
    "get_client_details": (
        "Get full details for a specific client including purchase history, tags, and notes.",
        _object({"client_id": _string("Client UUID")}, ("client_id",)),
        "Looking up client...",
        False,
    ),
    "tag_client": (
        "Add a tag to a client. Creates the tag if it doesn't exist.",
        _object(
            {
                "client_id": _string("Client UUID"),
                "tag_name": _string('Tag name (e.g. "VIP", "Girls Night")'),
                "color": _string("Hex color for new tag (optional, default #7A8B8C)"),
            },
            ("client_id", "tag_name"),
        ),
        "Tagging client...",
        True,
    ),
    "add_client_note": (
        "Add a note to a client's profile.",
        _object(
            {"client_id": _string("Client UUID"), "note": _string("Note text")},
            ("client_id", "note"),
        ),
        "Adding note...",
        True,
    ),
    "update_client": (
        "Update client info: name, email, phone.",
        _object(
            {
                "client_id": _string("Client UUID (if known)"),
                "client_name": _string("Search by name if no ID"),
                "updates": {
                    "type": "object",
                    "properties": {
                        "name": _string("New full name (will be split into first/last)"),
                        "email": _string(),
                        "phone": _string(),
                    },
                },
            },
            ("updates",),
        ),
        "Updating client...",
        True,
    ),
    "get_client_stats": (
        "Get overall client statistics (total, new this month).",
        _object({}),
        "Gathering client stats...",
        False,
    ),
    # -- messaging --------------------------------------------------------
    "send_message": (
        "Send an SMS or email to a specific client.",
        _object(
            {
                "client_id": _string("Client UUID"),
                "channel": _string("Message channel", CHANNELS),
                "body": _string(
                    "Message body. Supports {{client_name}}, {{client_first_name}}, "
                    "{{business_name}} variables."
                ),
                "subject": _string("Email subject (required for email)"),
            },
            ("client_id", "channel", "body"),
        ),
        "Preparing message...",
        True,
    ),
    "send_bulk_message": (
        "Send a message to all clients with a specific tag.",
        _object(
            {
                "tag_name": _string('Tag name to target (e.g. "VIP")'),
                "channel": _string("Message channel", CHANNELS),
                "body": _string("Message body. Supports template variables."),
                "subject": _string("Email subject (required for email)"),
            },
            ("tag_name", "channel", "body"),
        ),
        "Preparing bulk message...",
        True,
    ),
    # -- events -----------------------------------------------------------
    "create_event": (
        "Create a new event for the artist.",
        _object(
            {
                "name": _string("Event name"),
                "start_time": _string("ISO 8601 start time"),
                "end_time": _string("ISO 8601 end time (optional)"),
                "location": _string("Event location (optional)"),
                "notes": _string("Event notes (optional)"),
            },
            ("name", "start_time"),
        ),
        "Creating event...",
        True,
    ),
    "get_event_performance": (
        "Get performance data for a specific event (sales, revenue, queue stats).",
        _object({"event_id": _string("Event UUID")}, ("event_id",)),
        "Analyzing event...",
        False,
    ),
    "list_events": (
        "List the artist's events. Can filter to upcoming only.",
        _object({
            "upcoming": _boolean("Only show future events (default false)"),
            "limit": _number("Max events to return (default 10)"),
        }),
        "Fetching events...",
        False,
    ),
    "update_event": (
        "Update an existing event: name, date, time, location, notes, booth fee.",
        _object(
            {
                "event_id": _string("Event UUID (if known)"),
                "event_name": _string("Search by name if no ID"),
                "updates": {
                    "type": "object",
                    "properties": {
                        "name": _string(),
                        "start_time": _string("ISO 8601 start time"),
                        "end_time": _string("ISO 8601 end time"),
                        "location": _string(),
                        "notes": _string(),
                        "booth_fee": _number(),
                    },
                },
            },
            ("updates",),
        ),
        "Updating event...",
        True,
    ),
    "delete_event": (
        "Delete or cancel an event. Ask \"Are you sure?\" before confirming.",
        _object(
            {
                "event_id": _string("Event UUID (if known)"),
                "event_name": _string("Search by name if no ID"),
                "action": _string(
                    "Cancel keeps the record, delete removes it", ["cancel", "delete"]
                ),
            },
            ("action",),
        ),
        "Processing event...",
        True,
    ),
    # -- reports ----------------------------------------------------------
    "get_revenue_report": (
        "Get a revenue report for a specific period.",
        _object(
            {"period": _string("Report period", ["today", "week", "month", "year"])},
            ("period",),
        ),
        "Generating report...",
        False,
    ),
    "get_top_products": (
        "Get the top selling products by quantity.",
        _object({
            "period": _string("Time period (default all)", ["week", "month", "year", "all"]),
            "limit": _number("Number of products (default 10)"),
        }),
        "Finding top products...",
        False,
    ),
    # -- settings ---------------------------------------------------------
    "update_settings": (
        "Update business settings for the artist.",
        _object({
            "business_name": _string("New business name"),
            "phone": _string("Business phone number"),
            "tax_rate": _number("Default tax rate (as percentage, e.g. 8.5)"),
            "theme_id": _string("Theme identifier"),
        }),
        "Updating settings...",
        True,
    ),
    "get_settings": (
        "Get the artist's current business settings.",
        _object({}),
        "Fetching settings...",
        False,
    ),
    "create_tax_profile": (
        "Create a new tax profile for the artist.",
        _object(
            {
                "name": _string('Tax profile name (e.g. "Utah Sales Tax")'),
                "rate": _number("Tax rate as percentage (e.g. 8.5)"),
                "is_default": _boolean("Set as default tax profile"),
            },
            ("name", "rate"),
        ),
        "Creating tax profile...",
        True,
    ),
    # -- templates --------------------------------------------------------
    "create_template": (
        "Create a new message template. Show the full template content in the preview.",
        _object(
            {
                "name": _string(),
                "channel": _string(enum=CHANNELS),
                "category": _string(
                    "e.g. welcome, aftercare, follow-up, birthday, party, event, re-engagement"
                ),
                "subject": _string("Email subject (email only)"),
                "body": _string(
                    "Template body text. Can include {{client_name}} and {{business_name}} variables."
                ),
            },
            ("name", "channel", "body"),
        ),
        "Creating template...",
        True,
    ),
    "update_template": (
        "Update an existing message template: name, body, subject, channel, category.",
        _object(
            {
                "template_name": _string("Search by template name"),
                "updates": {
                    "type": "object",
                    "properties": {
                        "name": _string(),
                        "body": _string(),
                        "subject": _string(),
                        "channel": _string(enum=CHANNELS),
                        "category": _string(),
                    },
                },
            },
            ("template_name", "updates"),
        ),
        "Updating template...",
        True,
    ),
    # -- workflows --------------------------------------------------------
    "enroll_in_workflow": (
        "Enroll a client in an automated workflow (e.g. follow-up sequence).",
        _object(
            {
                "client_id": _string("Client UUID"),
                "workflow_id": _string("Workflow template UUID"),
            },
            ("client_id", "workflow_id"),
        ),
        "Enrolling in workflow...",
        True,
    ),
    "create_workflow": (
        "Create a new automated workflow with steps. Walk the artist through the "
        "trigger and steps they want.",
        _object(
            {
                "name": _string(),
                "trigger_type": _string(
                    "What triggers this workflow",
                    ["event_purchase", "private_party_purchase", "manual"],
                ),
                "steps": _steps(),
            },
            ("name", "trigger_type", "steps"),
        ),
        "Creating workflow...",
        True,
    ),
    "update_workflow": (
        "Update an existing workflow: rename, replace steps, activate or deactivate.",
        _object(
            {
                "workflow_name": _string("Search by workflow name"),
                "updates": {
                    "type": "object",
                    "properties": {
                        "name": _string(),
                        "is_active": _boolean(),
                        "steps": _steps(described=False),
                    },
                },
            },
            ("workflow_name", "updates"),
        ),
        "Updating workflow...",
        True,
    ),
}


def _build_definition(name: str, description: str, schema: dict[str, Any], mutating: bool) -> ToolDefinition:
    if mutating:
        description += CONFIRMATION_NOTE
        schema = {
            **schema,
            "properties": {
                **schema["properties"],
                "confirmed": _boolean("Set to true after the artist confirms the preview"),
            },
        }
    return ToolDefinition(name=name, description=description, input_schema=schema)


TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = tuple(
    _build_definition(name, description, schema, mutating)
    for name, (description, schema, _label, mutating) in _CATALOG.items()
)

STATUS_LABELS: dict[str, str] = {name: entry[2] for name, entry in _CATALOG.items()}

MUTATING_TOOLS: frozenset[str] = frozenset(
    name for name, entry in _CATALOG.items() if entry[3]
)


def status_label_for(name: str) -> str:
    """Human-readable status shown while *name* runs."""
    return STATUS_LABELS.get(name, DEFAULT_STATUS_LABEL)

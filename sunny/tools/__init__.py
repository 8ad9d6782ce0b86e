"""
Sunny - Business tools the assistant can call.

Usage:
    ```python
    from sunny.models import ToolContext
    from sunny.tools import build_registry

    registry = build_registry()
    envelope = await registry.execute(
        "check_inventory", {"query": "aspen"}, ToolContext(db=db, tenant_id=tenant_id)
    )
    ```
"""

from . import clients, events, inventory, message_templates, outreach, reports, settings, workflows
from .definitions import MUTATING_TOOLS, STATUS_LABELS, TOOL_DEFINITIONS, status_label_for
from .registry import HandlerTable, Mutation, ToolRegistry, ToolSpec, merge_handlers, validate_input

HANDLER_TABLES = (
    inventory.handlers,
    clients.handlers,
    outreach.handlers,
    events.handlers,
    reports.handlers,
    settings.handlers,
    message_templates.handlers,
    workflows.handlers,
)


def build_registry() -> ToolRegistry:
    """Build the registry of every tool, validated against the catalog."""
    return ToolRegistry.from_handlers(merge_handlers(*HANDLER_TABLES))


__all__ = [
    "build_registry",
    "HandlerTable",
    "Mutation",
    "ToolRegistry",
    "ToolSpec",
    "merge_handlers",
    "validate_input",
    "TOOL_DEFINITIONS",
    "MUTATING_TOOLS",
    "STATUS_LABELS",
    "status_label_for",
]

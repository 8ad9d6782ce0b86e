"""
Sunny - Tool registry and dispatcher.

The registry maps tool names to handlers and is the single place where the
assistant's tool protocol is enforced:

1. **Totality**: ``execute`` always returns a ``ToolResultEnvelope``.
   Unknown tools, malformed input and handler exceptions become ERROR
   envelopes; nothing is raised to the caller.
2. **Confirmation before mutation**: mutating handlers return a
   ``Mutation`` describing what they would do. The registry only calls
   ``Mutation.apply`` when the input carries ``confirmed: true``;
   otherwise the preview goes back as PENDING_CONFIRMATION.
3. **Audit**: every applied mutation is handed to the background audit
   writer.

Architecture:
    HandlerTable (per module)  ──merge──▶  ToolRegistry.from_handlers()
                                              │ validated against
                                              ▼ TOOL_DEFINITIONS
                                         ToolSpec per tool
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from ..exceptions import ToolRegistryError
from ..models import ToolContext, ToolDefinition, ToolResultEnvelope
from .definitions import (
    DEFAULT_STATUS_LABEL,
    MUTATING_TOOLS,
    STATUS_LABELS,
    TOOL_DEFINITIONS,
)

logger = logging.getLogger("sunny.tools")


@dataclass
class Mutation:
    """A resolved but not yet applied change.

    ``preview`` is shown to the artist for approval. ``apply`` performs the
    change and returns the fields of the success result.
    """

    preview: dict[str, Any]
    apply: Callable[[], Awaitable[Optional[dict[str, Any]]]]


HandlerResult = Union[dict[str, Any], ToolResultEnvelope, Mutation]
Handler = Callable[[ToolContext, dict[str, Any]], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class ToolSpec:
    """A tool definition bound to its handler."""

    definition: ToolDefinition
    handler: Handler
    status_label: str = DEFAULT_STATUS_LABEL
    mutating: bool = False

    @property
    def name(self) -> str:
        return self.definition.name


class HandlerTable:
    """Collects the handlers of one tool module.

    Usage::

        handlers = HandlerTable()

        @handlers.register("check_inventory")
        async def check_inventory(ctx, args):
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, name: str) -> Callable[[Handler], Handler]:
        def decorator(func: Handler) -> Handler:
            if name in self._handlers:
                raise ToolRegistryError(f"Handler registered twice: {name}")
            self._handlers[name] = func
            return func

        return decorator

    def items(self):
        return self._handlers.items()

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def merge_handlers(*tables: HandlerTable) -> dict[str, Handler]:
    """Combine module tables, refusing duplicate tool names."""
    merged: dict[str, Handler] = {}
    duplicates = []
    for table in tables:
        for name, handler in table.items():
            if name in merged:
                duplicates.append(name)
            merged[name] = handler
    if duplicates:
        raise ToolRegistryError(
            "Duplicate tool handlers", problems=[f"duplicate handler: {n}" for n in duplicates]
        )
    return merged


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


def _type_matches(value: Any, json_type: str) -> bool:
    expected = _JSON_TYPES.get(json_type)
    if expected is None:
        return True
    if json_type in ("number", "integer") and isinstance(value, bool):
        return False
    return isinstance(value, expected)


def _property_problem(properties: Mapping[str, Any], values: Mapping[str, Any], prefix: str = "") -> Optional[str]:
    for key, value in values.items():
        spec = properties.get(key)
        if spec is None or value is None:
            continue
        path = f"{prefix}{key}"
        json_type = spec.get("type")
        if json_type and not _type_matches(value, json_type):
            return f"Invalid input '{path}': expected {json_type}"
        enum = spec.get("enum")
        if enum and value not in enum:
            return f"Invalid input '{path}': must be one of {', '.join(map(str, enum))}"
        if json_type == "object" and spec.get("properties"):
            problem = _property_problem(spec["properties"], value, f"{path}.")
            if problem:
                return problem
    return None


def validate_input(schema: Mapping[str, Any], args: Any) -> Optional[str]:
    """Return a problem description, or None when *args* fits *schema*.

    Checks required keys at the top level, and JSON types and enums of
    declared properties, including those of nested objects.
    """
    if not isinstance(args, dict):
        return "Tool input must be an object"

    missing = [
        key for key in schema.get("required", ())
        if args.get(key) is None or args.get(key) == ""
    ]
    if missing:
        return f"Missing required input: {', '.join(missing)}"

    return _property_problem(schema.get("properties", {}), args)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Validated set of tools with a total ``execute``."""

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        self._specs: dict[str, ToolSpec] = {}
        duplicates = []
        for spec in specs:
            if spec.name in self._specs:
                duplicates.append(spec.name)
            self._specs[spec.name] = spec
        if duplicates:
            raise ToolRegistryError(
                "Duplicate tool names", problems=[f"duplicate tool: {n}" for n in duplicates]
            )

    @classmethod
    def from_handlers(
        cls,
        handlers: Mapping[str, Handler],
        definitions: Iterable[ToolDefinition] = TOOL_DEFINITIONS,
        mutating: Iterable[str] = MUTATING_TOOLS,
        status_labels: Mapping[str, str] = STATUS_LABELS,
    ) -> "ToolRegistry":
        """Bind *handlers* to *definitions*, failing on any mismatch."""
        definitions = list(definitions)
        mutating = set(mutating)
        problems = []

        names = [d.name for d in definitions]
        seen = set()
        for name in names:
            if name in seen:
                problems.append(f"duplicate definition: {name}")
            seen.add(name)

        problems.extend(f"no handler for: {n}" for n in names if n not in handlers)
        problems.extend(f"no definition for: {n}" for n in handlers if n not in seen)

        if problems:
            raise ToolRegistryError("Tool registry does not match its definitions", problems=problems)

        return cls(
            ToolSpec(
                definition=d,
                handler=handlers[d.name],
                status_label=status_labels.get(d.name, DEFAULT_STATUS_LABEL),
                mutating=d.name in mutating,
            )
            for d in definitions
        )

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    @property
    def specs(self) -> list[ToolSpec]:
        return list(self._specs.values())

    @property
    def definitions(self) -> list[ToolDefinition]:
        return [spec.definition for spec in self._specs.values()]

    def tool_schemas(self) -> list[dict[str, Any]]:
        return [spec.definition.to_schema() for spec in self._specs.values()]

    def status_label(self, name: str) -> str:
        spec = self._specs.get(name)
        return spec.status_label if spec else DEFAULT_STATUS_LABEL

    async def execute(self, name: str, args: Any, ctx: ToolContext) -> ToolResultEnvelope:
        """Run one tool call. Never raises."""
        spec = self._specs.get(name)
        if spec is None:
            return ToolResultEnvelope.error(f"Unknown tool: {name}")

        problem = validate_input(spec.definition.input_schema, args)
        if problem:
            return ToolResultEnvelope.error(problem)

        t0 = time.time()
        try:
            outcome = await spec.handler(ctx, dict(args))

            if isinstance(outcome, ToolResultEnvelope):
                return outcome

            if isinstance(outcome, Mutation):
                if args.get("confirmed") is not True:
                    return ToolResultEnvelope.pending(outcome.preview)
                applied = await outcome.apply()
                result = {"success": True, **(applied or {})}
                self._record(ctx, name, args, result)
                return ToolResultEnvelope.ok(result)

            if spec.mutating:
                raise TypeError(f"Mutating tool {name} returned no mutation")
            return ToolResultEnvelope.ok(outcome)
        except Exception as e:
            logger.exception("Tool %s failed for tenant %s", name, ctx.tenant_id)
            return ToolResultEnvelope.error(str(e) or "Tool execution failed")
        finally:
            logger.debug("Tool %s took %.0fms", name, (time.time() - t0) * 1000)

    def _record(self, ctx: ToolContext, name: str, args: dict[str, Any], result: dict[str, Any]) -> None:
        if ctx.audit is None:
            return
        ctx.audit.record_tool_call(
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            tool_name=name,
            arguments=args,
            result=result,
        )

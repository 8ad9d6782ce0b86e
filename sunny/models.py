"""
Sunny - Data models shared by the assistant loop, the tool registry and the
HTTP boundary.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Role(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


class StopReason(str, Enum):
    """Why the completion service stopped producing output."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"


class EnvelopeKind(str, Enum):
    """Variants of a tool result envelope."""

    OK = "ok"
    ERROR = "error"
    PENDING_CONFIRMATION = "pending_confirmation"
    NEEDS_CLARIFICATION = "needs_clarification"


@dataclass(frozen=True)
class ConversationMessage:
    """One turn of a conversation.

    ``content`` is either plain text or a list of content blocks
    (text, tool_use, tool_result) in the completion service's wire form.
    """

    role: Role
    content: Union[str, list[dict[str, Any]]]

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationMessage":
        return cls(role=Role(data["role"]), content=data.get("content", ""))

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(
            b.get("text", "") for b in self.content if b.get("type") == "text"
        )


@dataclass(frozen=True)
class ToolDefinition:
    """Static description of a tool the model may call."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_schema(self) -> dict[str, Any]:
        """Return the definition in the completion service's tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True)
class ToolInvocation:
    """A single tool_use block requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_block(cls, block: dict[str, Any]) -> "ToolInvocation":
        raw = block.get("input")
        return cls(
            id=block.get("id", ""),
            name=block.get("name", ""),
            input=raw if isinstance(raw, dict) else {},
        )


@dataclass(frozen=True)
class ToolResultEnvelope:
    """Outcome of one tool call.

    Only the ERROR variant is flagged as an error to the model. Pending
    confirmation and clarification requests are ordinary results that the
    model is expected to relay to the user.
    """

    kind: EnvelopeKind
    result: Any = None

    @property
    def is_error(self) -> bool:
        return self.kind == EnvelopeKind.ERROR

    @classmethod
    def ok(cls, result: Any = None) -> "ToolResultEnvelope":
        return cls(EnvelopeKind.OK, result if result is not None else {"success": True})

    @classmethod
    def error(cls, message: str) -> "ToolResultEnvelope":
        return cls(EnvelopeKind.ERROR, {"error": message})

    @classmethod
    def pending(cls, preview: dict[str, Any]) -> "ToolResultEnvelope":
        return cls(
            EnvelopeKind.PENDING_CONFIRMATION,
            {"pending_confirmation": True, "preview": preview},
        )

    @classmethod
    def clarify(cls, message: str, matches: list[dict[str, Any]]) -> "ToolResultEnvelope":
        return cls(
            EnvelopeKind.NEEDS_CLARIFICATION,
            {"needs_clarification": True, "message": message, "matches": matches},
        )

    def to_wire(self) -> dict[str, Any]:
        return {"result": self.result, "isError": self.is_error}

    def to_tool_result_block(self, tool_use_id: str) -> dict[str, Any]:
        """Render as a tool_result content block keyed to ``tool_use_id``."""
        return {
            "type": "tool_result",
            "tool_use_id": tool_use_id,
            "content": json.dumps(self.result, default=str),
            "is_error": self.is_error,
        }


@dataclass(frozen=True)
class KnowledgeFragment:
    """A small, keyword-addressable slice of the knowledge base."""

    id: str
    label: str
    data: Any
    keywords: tuple[str, ...] = ()
    priority: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KnowledgeFragment":
        return cls(
            id=data["id"],
            label=data["label"],
            data=data.get("data"),
            keywords=tuple(str(k) for k in data.get("keywords", [])),
            priority=int(data.get("priority") or 0),
        )


@dataclass
class CompletionResponse:
    """Normalized response from the completion service."""

    stop_reason: Optional[str]
    content: list[dict[str, Any]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(
            b.get("text", "") for b in self.content if b.get("type") == "text"
        )

    def tool_invocations(self) -> list[ToolInvocation]:
        return [
            ToolInvocation.from_block(b)
            for b in self.content
            if b.get("type") == "tool_use"
        ]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompletionResponse":
        content = data.get("content") or []
        return cls(stop_reason=data.get("stop_reason"), content=list(content))


@dataclass
class LoopResult:
    """Final text of an agentic run plus the status labels of every tool call."""

    final_text: str
    tool_status_events: list[str] = field(default_factory=list)
    iterations: int = 0
    exhausted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_text": self.final_text,
            "tool_status_events": list(self.tool_status_events),
            "iterations": self.iterations,
            "exhausted": self.exhausted,
        }


@dataclass
class ToolContext:
    """Per-request handle passed to every tool handler.

    ``db`` is the datastore facade; handlers open their own sessions from
    it. ``messenger`` and ``audit`` are optional collaborators.
    """

    db: Any
    tenant_id: str
    user_id: Optional[str] = None
    messenger: Any = None
    audit: Any = None

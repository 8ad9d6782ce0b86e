"""
Sunny - Agentic business assistant for permanent jewelry artists.

The assistant answers questions from a curated knowledge catalog and acts on
the artist's business data through tools, asking for confirmation before
anything is changed.
"""

from .audit import AuditLog
from .exceptions import (
    CatalogError,
    CompletionServiceError,
    MessagingError,
    SunnyError,
    ToolRegistryError,
)
from .knowledge import (
    KnowledgeCatalog,
    extract_knowledge_gap,
    format_knowledge,
    load_catalog,
    select_fragments,
)
from .llm import (
    AgenticLoop,
    AnthropicCompletionClient,
    CompletionClient,
    CompletionSettings,
    HTTPCompletionClient,
    create_completion_client,
    run_agentic_loop,
)
from .messaging import MessagingConfig, Messenger
from .models import (
    CompletionResponse,
    ConversationMessage,
    EnvelopeKind,
    KnowledgeFragment,
    LoopResult,
    Role,
    StopReason,
    ToolContext,
    ToolDefinition,
    ToolInvocation,
    ToolResultEnvelope,
)
from .streaming import StreamEvent, StreamEventType, emit_events, format_sse
from .templates import render_template
from .tools import ToolRegistry, build_registry

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Loop and clients
    "AgenticLoop",
    "run_agentic_loop",
    "CompletionClient",
    "CompletionSettings",
    "HTTPCompletionClient",
    "AnthropicCompletionClient",
    "create_completion_client",
    # Tools
    "ToolRegistry",
    "build_registry",
    # Knowledge
    "KnowledgeCatalog",
    "load_catalog",
    "select_fragments",
    "format_knowledge",
    "extract_knowledge_gap",
    # Streaming
    "StreamEvent",
    "StreamEventType",
    "emit_events",
    "format_sse",
    # Side effects
    "AuditLog",
    "Messenger",
    "MessagingConfig",
    "render_template",
    # Models
    "CompletionResponse",
    "ConversationMessage",
    "EnvelopeKind",
    "KnowledgeFragment",
    "LoopResult",
    "Role",
    "StopReason",
    "ToolContext",
    "ToolDefinition",
    "ToolInvocation",
    "ToolResultEnvelope",
    # Exceptions
    "SunnyError",
    "CompletionServiceError",
    "ToolRegistryError",
    "MessagingError",
    "CatalogError",
]

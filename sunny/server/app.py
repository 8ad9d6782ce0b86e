"""
FastAPI application for the Sunny assistant.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from ..audit import AuditLog
from ..database import Database, get_database
from ..exceptions import CompletionServiceError
from ..knowledge import (
    extract_knowledge_gap,
    format_knowledge,
    load_catalog,
    select_fragments,
    strip_markers,
)
from ..llm import AgenticLoop, CompletionClient, CompletionSettings, create_completion_client
from ..messaging import Messenger
from ..models import ConversationMessage, Role, ToolContext, ToolResultEnvelope
from ..prompts import build_system_prompt, fetch_tenant_snapshot
from ..streaming import emit_events
from ..tools import build_registry
from .config import ServerConfig

logger = logging.getLogger("sunny.server")

VERSION = "0.1.0"


class MessageIn(BaseModel):
    role: Role
    content: Union[str, List[Dict[str, Any]]] = ""


class MentorRequest(BaseModel):
    messages: List[MessageIn] = Field(default_factory=list)
    current_page: Optional[str] = Field(None, alias="currentPage")

    class Config:
        populate_by_name = True


class ToolInfo(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any]
    status_label: str
    mutating: bool


def _user_texts(messages: List[ConversationMessage]) -> List[str]:
    return [m.text for m in messages if m.role == Role.USER]


def create_app(
    config: Optional[ServerConfig] = None,
    completion_client: Optional[CompletionClient] = None,
    messenger: Optional[Messenger] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``completion_client`` and ``messenger`` replace the ones built from
    config, which is how tests run the endpoint without network access.
    """
    if config is None:
        config = ServerConfig.from_env()

    # Fails fast on a definition/handler mismatch.
    registry = build_registry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = get_database(config.database_url)
        app.state.db = db
        app.state.config = config
        app.state.registry = registry
        app.state.audit = AuditLog(db)
        app.state.messenger = messenger or Messenger()
        owns_client = completion_client is None
        app.state.completion_client = completion_client or create_completion_client(
            CompletionSettings(
                api_key=config.anthropic_api_key,
                model=config.model,
                max_tokens=config.max_tokens,
            ),
            backend=config.completion_backend,
        )
        logger.info("Sunny ready with %d tools", len(registry))
        try:
            yield
        finally:
            await app.state.audit.drain()
            if owns_client:
                await app.state.completion_client.aclose()

    app = FastAPI(
        title="Sunny",
        description="Agentic business assistant for permanent jewelry artists",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_db() -> Database:
        return app.state.db

    def validate_api_key(x_api_key: str = Header(None)) -> str:
        if x_api_key is None or x_api_key not in app.state.config.api_keys:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")
        return x_api_key

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": VERSION,
            "tools": len(app.state.registry),
            "knowledge_version": load_catalog().version,
        }

    @app.get("/api/tools", response_model=List[ToolInfo])
    async def list_tools(api_key: str = Depends(validate_api_key)):
        return [
            ToolInfo(
                name=spec.name,
                description=spec.definition.description,
                input_schema=spec.definition.input_schema,
                status_label=spec.status_label,
                mutating=spec.mutating,
            )
            for spec in app.state.registry.specs
        ]

    @app.post("/api/mentor")
    async def mentor(
        request: Request,
        body: MentorRequest,
        db: Database = Depends(get_db),
        api_key: str = Depends(validate_api_key),
        x_user_id: str = Header(None),
    ):
        """Answer one assistant turn as a server-sent event stream."""
        if not x_user_id:
            raise HTTPException(status_code=401, detail="Unauthorized")

        session = db.get_session()
        try:
            tenant_id = db.get_tenant_id_for_user(session, x_user_id)
            additions = [
                (a.question, a.answer) for a in db.get_active_knowledge_additions(session)
            ]
        finally:
            session.close()

        if tenant_id is None:
            raise HTTPException(status_code=400, detail="No tenant found")
        if not body.messages:
            raise HTTPException(status_code=400, detail="Messages required")

        messages = [ConversationMessage(role=m.role, content=m.content) for m in body.messages]
        user_texts = _user_texts(messages)
        latest = user_texts[-1] if user_texts else ""

        fragments = select_fragments(latest, user_texts[:-1])
        system_prompt = build_system_prompt(
            format_knowledge(fragments, additions),
            fetch_tenant_snapshot(db, tenant_id),
            body.current_page,
        )

        registry = app.state.registry
        ctx = ToolContext(
            db=db,
            tenant_id=tenant_id,
            user_id=x_user_id,
            messenger=app.state.messenger,
            audit=app.state.audit,
        )

        async def execute_tool(name: str, args: Dict[str, Any]) -> ToolResultEnvelope:
            return await registry.execute(name, args, ctx)

        loop = AgenticLoop(
            app.state.completion_client,
            max_iterations=config.max_iterations,
            parallel_tools=config.parallel_tools,
        )
        logger.info(
            "Mentor request for tenant %s with %d messages", tenant_id, len(messages)
        )
        try:
            result = await loop.run(
                system_prompt,
                messages[-config.max_history_messages:],
                registry.tool_schemas(),
                execute_tool,
                status_label_for=registry.status_label,
            )
        except CompletionServiceError as e:
            logger.error("Completion service failed for tenant %s: %s", tenant_id, e.message)
            return JSONResponse(
                status_code=502, content={"error": f"AI service error: {e.message}"}
            )
        logger.info(
            "Mentor finished for tenant %s after %d iterations (%d tool calls)",
            tenant_id,
            result.iterations,
            len(result.tool_status_events),
        )

        gap = extract_knowledge_gap(result.final_text)
        if gap is not None:
            app.state.audit.record_knowledge_gap(
                tenant_id,
                x_user_id,
                latest,
                strip_markers(result.final_text),
                category=gap["category"],
                topic=gap["topic"],
            )

        async def event_generator():
            async for event in emit_events(result.final_text, result.tool_status_events):
                if await request.is_disconnected():
                    break
                yield {"data": event.to_payload()}

        return EventSourceResponse(event_generator())

    return app


class SunnyServer:
    """High-level server class for running Sunny."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        database_url: Optional[str] = None,
        api_keys: Optional[set] = None,
        **kwargs,
    ):
        self.config = ServerConfig(
            host=host,
            port=port,
            database_url=database_url,
            api_keys=api_keys or ServerConfig().api_keys,
            **kwargs,
        )
        self.app = create_app(self.config)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server asynchronously."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(config)
        await server.serve()

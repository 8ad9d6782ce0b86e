"""
Sunny - Completion clients and the agentic tool loop.

The loop calls the completion service in buffered mode, executes any tools
the model asks for, feeds the results back, and repeats until the model
produces a plain answer or the iteration cap is reached.

Usage:
    ```python
    from sunny.llm import AgenticLoop, CompletionSettings, HTTPCompletionClient

    client = HTTPCompletionClient(CompletionSettings(api_key="sk-ant-..."))
    loop = AgenticLoop(client, max_iterations=8)

    result = await loop.run(
        system_prompt="You are Sunny...",
        messages=[{"role": "user", "content": "How much Aspen chain do I have?"}],
        tools=registry.definitions,
        execute_tool=lambda name, args: registry.execute(name, args, ctx),
        status_label_for=registry.status_label,
    )
    print(result.final_text)
    ```
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

import anthropic
import httpx

from .exceptions import CompletionServiceError
from .models import (
    CompletionResponse,
    ConversationMessage,
    LoopResult,
    StopReason,
    ToolDefinition,
    ToolInvocation,
    ToolResultEnvelope,
)

logger = logging.getLogger("sunny.llm")

ANTHROPIC_API_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 1024
DEFAULT_MAX_ITERATIONS = 5
MAX_TOOL_CALLS_PER_TURN = 10
DEFAULT_STATUS_LABEL = "Working..."

FALLBACK_TEXT = (
    "I've been working on your request but hit my processing limit. "
    "Could you try rephrasing or breaking it into smaller steps?"
)
TOO_MANY_TOOL_CALLS = "too many tool calls in one turn"

MessageInput = Union[ConversationMessage, dict[str, Any]]
ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[ToolResultEnvelope]]


@dataclass
class CompletionSettings:
    """Connection and generation settings for the completion service."""

    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    base_url: str = ANTHROPIC_API_URL
    anthropic_version: str = ANTHROPIC_VERSION
    timeout: float = 60.0


def _tools_to_wire(tools: Sequence[Union[ToolDefinition, dict[str, Any]]]) -> list[dict[str, Any]]:
    return [t.to_schema() if isinstance(t, ToolDefinition) else dict(t) for t in tools]


def _message_to_wire(message: MessageInput) -> dict[str, Any]:
    if isinstance(message, ConversationMessage):
        return message.to_dict()
    return {"role": message["role"], "content": message["content"]}


# ---------------------------------------------------------------------------
# Completion clients
# ---------------------------------------------------------------------------


class CompletionClient:
    """One buffered call to the completion service."""

    def __init__(self, settings: CompletionSettings) -> None:
        self.settings = settings

    async def complete(
        self,
        system: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]],
    ) -> CompletionResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class HTTPCompletionClient(CompletionClient):
    """Calls ``POST /v1/messages`` directly with httpx."""

    def __init__(
        self,
        settings: CompletionSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(settings)
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.base_url, timeout=settings.timeout
        )
        self._owns_client = http_client is None

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.settings.api_key or "",
            "anthropic-version": self.settings.anthropic_version,
        }

    async def complete(
        self,
        system: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]],
    ) -> CompletionResponse:
        payload: dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "stream": False,
            "system": system,
            "messages": list(messages),
        }
        if tools:
            payload["tools"] = list(tools)

        url = f"{self.settings.base_url.rstrip('/')}/v1/messages"
        try:
            response = await self._client.post(
                url, json=payload, headers=self._headers(), timeout=self.settings.timeout
            )
        except httpx.HTTPError as e:
            raise CompletionServiceError(f"Completion request failed: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text}
            logger.error(
                "Completion service returned %s: %s", response.status_code, response.text[:500]
            )
            raise CompletionServiceError(
                "AI service error", status_code=response.status_code, response=body
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CompletionServiceError("AI service returned invalid JSON") from e
        return CompletionResponse.from_dict(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class AnthropicCompletionClient(CompletionClient):
    """Calls the completion service through the official ``anthropic`` SDK."""

    def __init__(
        self,
        settings: CompletionSettings,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        super().__init__(settings)
        self._client = client or anthropic.AsyncAnthropic(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout,
        )

    async def complete(
        self,
        system: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]],
    ) -> CompletionResponse:
        call_kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "system": system,
            "messages": list(messages),
        }
        if tools:
            call_kwargs["tools"] = list(tools)

        try:
            message = await self._client.messages.create(**call_kwargs)
        except anthropic.APIError as e:
            raise CompletionServiceError(
                f"AI service error: {e}", status_code=getattr(e, "status_code", None)
            ) from e

        return CompletionResponse(
            stop_reason=message.stop_reason,
            content=[_block_to_dict(b) for b in message.content],
        )

    async def aclose(self) -> None:
        await self._client.close()


def _block_to_dict(block: Any) -> dict[str, Any]:
    block_type = getattr(block, "type", "")
    if block_type == "text":
        return {"type": "text", "text": block.text}
    if block_type == "tool_use":
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": block.input,
        }
    # Thinking and server-tool blocks keep their full payload.
    return block.model_dump(exclude_none=True)


def create_completion_client(
    settings: CompletionSettings, backend: str = "http"
) -> CompletionClient:
    """Build the completion client named by *backend* (``http`` or ``anthropic``)."""
    if backend == "anthropic":
        return AnthropicCompletionClient(settings)
    if backend == "http":
        return HTTPCompletionClient(settings)
    raise ValueError(f"Unsupported completion backend: {backend}")


# ---------------------------------------------------------------------------
# Agentic loop
# ---------------------------------------------------------------------------


class AgenticLoop:
    """Drives completion calls and tool execution until a final answer."""

    def __init__(
        self,
        client: CompletionClient,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_tool_calls_per_turn: int = MAX_TOOL_CALLS_PER_TURN,
        parallel_tools: bool = False,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._client = client
        self.max_iterations = max_iterations
        self.max_tool_calls_per_turn = max_tool_calls_per_turn
        self.parallel_tools = parallel_tools

    async def run(
        self,
        system_prompt: str,
        messages: Sequence[MessageInput],
        tools: Sequence[Union[ToolDefinition, dict[str, Any]]],
        execute_tool: ToolExecutor,
        status_label_for: Optional[Callable[[str], str]] = None,
        max_iterations: Optional[int] = None,
    ) -> LoopResult:
        """Run the loop and return the final text plus tool status events.

        Raises:
            CompletionServiceError: The completion service could not be
                reached or rejected the request. Not retried.
        """
        limit = max_iterations or self.max_iterations
        label_for = status_label_for or (lambda _name: DEFAULT_STATUS_LABEL)
        tool_schemas = _tools_to_wire(tools)
        conversation = tuple(_message_to_wire(m) for m in messages)
        status_events: list[str] = []

        for iteration in range(1, limit + 1):
            response = await self._client.complete(system_prompt, conversation, tool_schemas)

            invocations = response.tool_invocations()
            if response.stop_reason != StopReason.TOOL_USE.value or not invocations:
                return LoopResult(
                    final_text=response.text,
                    tool_status_events=status_events,
                    iterations=iteration,
                )

            conversation = conversation + (
                {"role": "assistant", "content": list(response.content)},
            )

            allowed = invocations[: self.max_tool_calls_per_turn]
            overflow = invocations[self.max_tool_calls_per_turn:]
            if overflow:
                logger.warning(
                    "Model requested %d tool calls in one turn; refusing %d",
                    len(invocations),
                    len(overflow),
                )

            status_events.extend(label_for(inv.name) for inv in allowed)
            envelopes = await self._execute_turn(allowed, execute_tool)
            envelopes.extend(ToolResultEnvelope.error(TOO_MANY_TOOL_CALLS) for _ in overflow)

            results = [
                env.to_tool_result_block(inv.id)
                for inv, env in zip(invocations, envelopes)
            ]
            conversation = conversation + ({"role": "user", "content": results},)

        logger.warning("Agentic loop hit its limit of %d iterations", limit)
        return LoopResult(
            final_text=FALLBACK_TEXT,
            tool_status_events=status_events,
            iterations=limit,
            exhausted=True,
        )

    async def _execute_turn(
        self, invocations: Sequence[ToolInvocation], execute_tool: ToolExecutor
    ) -> list[ToolResultEnvelope]:
        if self.parallel_tools and len(invocations) > 1:
            return list(
                await asyncio.gather(
                    *(self._execute_one(inv, execute_tool) for inv in invocations)
                )
            )
        return [await self._execute_one(inv, execute_tool) for inv in invocations]

    async def _execute_one(
        self, invocation: ToolInvocation, execute_tool: ToolExecutor
    ) -> ToolResultEnvelope:
        try:
            result = await execute_tool(invocation.name, dict(invocation.input))
        except Exception as e:
            logger.exception("Tool %s raised", invocation.name)
            return ToolResultEnvelope.error(str(e) or "Tool execution failed")
        if isinstance(result, ToolResultEnvelope):
            return result
        return ToolResultEnvelope.ok(result)


async def run_agentic_loop(
    client: CompletionClient,
    system_prompt: str,
    messages: Sequence[MessageInput],
    tools: Sequence[Union[ToolDefinition, dict[str, Any]]],
    execute_tool: ToolExecutor,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    status_label_for: Optional[Callable[[str], str]] = None,
) -> LoopResult:
    """One-shot helper around :class:`AgenticLoop`."""
    loop = AgenticLoop(client, max_iterations=max_iterations)
    return await loop.run(
        system_prompt,
        messages,
        tools,
        execute_tool,
        status_label_for=status_label_for,
    )

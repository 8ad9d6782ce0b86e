"""
Sunny - Background audit writer.

Audit rows (executed tool calls, sent messages, knowledge gaps) are written
off the request path. Each write runs as its own task owned by the
``AuditLog``; a failed write is logged and never reaches the caller.

Architecture:
    AuditLog
      ├── record_tool_call()     -> tool_audit_log
      ├── record_message()       -> message_log
      └── record_knowledge_gap() -> knowledge_gaps

    drain() waits for every pending write (used on shutdown and in tests).
"""

import asyncio
import logging
import re
from typing import Any, Callable, Optional

logger = logging.getLogger("sunny.audit")

_SENSITIVE_KEY = re.compile(
    r"(secret|password|token|key|auth|credential|api.?key|bearer|access.?token)",
    re.IGNORECASE,
)


def sanitize_for_log(data: Any, depth: int = 0) -> Any:
    """Recursively redact secret-looking keys and clip oversized values."""
    if depth > 10:
        return "[TRUNCATED]"

    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if _SENSITIVE_KEY.search(str(k)) else sanitize_for_log(v, depth + 1)
            for k, v in data.items()
        }

    if isinstance(data, (list, tuple)):
        return [sanitize_for_log(item, depth + 1) for item in list(data)[:100]]

    if isinstance(data, str) and len(data) > 10_000:
        return data[:10_000] + "...[TRUNCATED]"

    return data


class AuditLog:
    """Fire-and-forget writer for audit rows."""

    def __init__(self, db: Any) -> None:
        self._db = db
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def record_tool_call(
        self,
        tenant_id: str,
        user_id: Optional[str],
        tool_name: str,
        arguments: dict[str, Any],
        result: Any,
    ) -> Optional[asyncio.Task]:
        return self._spawn(
            "tool call",
            self._db.create_tool_audit,
            tenant_id=tenant_id,
            user_id=user_id,
            tool_name=tool_name,
            arguments=sanitize_for_log(arguments),
            result=sanitize_for_log(result),
        )

    def record_message(
        self,
        tenant_id: str,
        client_id: Optional[str],
        channel: str,
        body: str,
        recipient_email: Optional[str] = None,
        recipient_phone: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        return self._spawn(
            "message",
            self._db.create_message_log,
            tenant_id=tenant_id,
            client_id=client_id,
            direction="outbound",
            channel=channel,
            recipient_email=recipient_email if channel == "email" else None,
            recipient_phone=recipient_phone if channel == "sms" else None,
            subject=subject if channel == "email" else None,
            body=body,
            source="sunny_ai",
            status="sent",
        )

    def record_knowledge_gap(
        self,
        tenant_id: str,
        user_id: Optional[str],
        user_message: str,
        response: str,
        category: str = "other",
        topic: str = "other",
    ) -> Optional[asyncio.Task]:
        return self._spawn(
            "knowledge gap",
            self._db.create_knowledge_gap,
            tenant_id=tenant_id,
            user_id=user_id,
            user_message=user_message,
            response=response,
            category=category,
            topic=topic,
            status="pending",
        )

    def _spawn(self, what: str, writer: Callable[..., Any], **fields: Any) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(what, writer, fields)
            return None

        task = loop.create_task(self._run(what, writer, fields))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, what: str, writer: Callable[..., Any], fields: dict[str, Any]) -> None:
        self._write(what, writer, fields)

    def _write(self, what: str, writer: Callable[..., Any], fields: dict[str, Any]) -> None:
        session = None
        try:
            session = self._db.get_session()
            writer(session, **fields)
        except Exception:
            if session is not None:
                session.rollback()
            logger.exception("Failed to write %s audit record", what)
        finally:
            if session is not None:
                session.close()

    async def drain(self) -> None:
        """Wait for every pending write to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            self._tasks = {t for t in self._tasks if not t.done()}

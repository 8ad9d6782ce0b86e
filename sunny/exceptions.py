"""
Sunny - Custom exceptions for error handling.
"""

from typing import Any, Optional


class SunnyError(Exception):
    """Base exception for all Sunny errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class CompletionServiceError(SunnyError):
    """Raised when the completion service cannot be reached or rejects a request.

    This is the only error class that escapes the agentic loop; the request
    handler maps it to a 502.
    """

    pass


class ToolRegistryError(SunnyError):
    """Raised at startup when tool definitions and handlers do not line up."""

    def __init__(self, message: str, problems: Optional[list[str]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.problems = problems or []


class MessagingError(SunnyError):
    """Raised when an outbound SMS or email cannot be delivered."""

    def __init__(self, message: str, channel: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.channel = channel


class CatalogError(SunnyError):
    """Raised when the knowledge catalog file is missing or malformed."""

    pass


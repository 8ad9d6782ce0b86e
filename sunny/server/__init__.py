"""
Sunny Server - HTTP boundary for the Sunny assistant.

Run with:
    sunny-server             # CLI entry point
    python -m sunny.server   # Module entry point

Or programmatically:
    from sunny.server import SunnyServer
    server = SunnyServer(port=8000)
    server.run()
"""

from .app import SunnyServer, create_app
from .config import ServerConfig

__all__ = [
    "create_app",
    "SunnyServer",
    "ServerConfig",
]

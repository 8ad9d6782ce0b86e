"""
Entry point for running the server as a module.

Usage:
    python -m sunny.server
    python -m sunny.server --port 8000 --log-level debug
"""

from .cli import main

if __name__ == "__main__":
    main()

"""
Command-line interface for the Sunny server.
"""

import argparse
import logging
import sys

from .app import VERSION


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="sunny-server",
        description="Sunny - Run the agentic assistant server for permanent jewelry artists",
    )

    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: $DATABASE_URL or sqlite:///./sunny.db)",
    )
    parser.add_argument(
        "--api-keys",
        default=None,
        help="Comma-separated list of API keys (default: $SUNNY_API_KEYS or dev-sunny-key)",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Completion model (default: $SUNNY_MODEL or the built-in default)",
    )
    parser.add_argument(
        "--backend",
        default="http",
        choices=["http", "anthropic"],
        help="Completion client backend (default: http)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Completion calls allowed per request (default: 8)",
    )
    parser.add_argument(
        "--parallel-tools",
        action="store_true",
        help="Run the tool calls of one model turn concurrently",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    api_keys = None
    if args.api_keys:
        api_keys = {k.strip() for k in args.api_keys.split(",") if k.strip()}

    options = {}
    if args.model:
        options["model"] = args.model
    if args.max_iterations:
        options["max_iterations"] = args.max_iterations

    from .app import SunnyServer

    print(f"""
Sunny v{VERSION}
  Host: {args.host}
  Port: {args.port}
  Database: {args.database_url or "from DATABASE_URL or sqlite:///./sunny.db"}
  Backend: {args.backend}

API docs: http://{args.host}:{args.port}/docs

Press Ctrl+C to stop the server.
""")

    try:
        server = SunnyServer(
            host=args.host,
            port=args.port,
            database_url=args.database_url,
            api_keys=api_keys,
            completion_backend=args.backend,
            parallel_tools=args.parallel_tools,
            debug=args.debug,
            log_level=args.log_level,
            **options,
        )
        server.run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()

"""Script to launch the chatplus server."""

from __future__ import annotations

import argparse
import os

import uvicorn

from chatplus.server import create_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the chatplus server.")
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", "127.0.0.1"),
        help="Host to bind the server to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "8000")),
        help="Port to bind the server to (default: 8000)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML config (default: $CHATPLUS_CONFIG or config/default.yaml)",
    )
    args = parser.parse_args()

    # A single process: the session and its pending reply live in memory.
    app = create_app(config_path=args.config)

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()

#!/usr/bin/env python
"""Run the Bosun analysis API under uvicorn.

Usage:
    python api_server.py [--host 127.0.0.1] [--port 8000] [--reload] [--verbose]

Host and port default to BOSUN_HOST / BOSUN_PORT when set.
"""

import argparse
import os

import uvicorn

from api.app import create_app

app = create_app()


def main() -> None:
    parser = argparse.ArgumentParser(description="Bosun analysis API server")
    parser.add_argument("--host", default=os.getenv("BOSUN_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("BOSUN_PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Restart on source changes")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging on the console")
    args = parser.parse_args()

    uvicorn.run(
        "api_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if args.verbose else "info",
    )


if __name__ == "__main__":
    main()

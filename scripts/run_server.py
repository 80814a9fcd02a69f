"""
Runs the game API (and, with DERBY_RUN_RACE_LOOP=1, the race loop).

Usage:
    python scripts/run_server.py [--host 0.0.0.0] [--port 4000]
"""

import argparse
import os
import sys

# Ensure repo root is on sys.path when script is executed from anywhere
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.append(REPO_ROOT)

import uvicorn  # noqa: E402

import settings  # noqa: E402
from ledger.database import initialize_database  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Emoji Derby API server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=settings.API_PORT)
    args = parser.parse_args()

    initialize_database()

    from api import app
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()

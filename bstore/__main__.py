"""
Run the storefront backend with uvicorn.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from bstore.config import get_settings


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="B-Store backend server")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Bind address")
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help="Port to listen on (defaults to $PORT or 5001)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    uvicorn.run("bstore.app:app", host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

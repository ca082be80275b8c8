"""
Server entry point (`activity-sync` console script or `python -m activity_sync.run`).

HOST, PORT and RELOAD control uvicorn; LOG_LEVEL is shared with the app logger.
"""
from __future__ import annotations

import os
from typing import NamedTuple

import uvicorn
from dotenv import load_dotenv

_TRUTHY = frozenset({"1", "true", "yes", "on"})


class ServerOptions(NamedTuple):
    host: str
    port: int
    reload: bool
    log_level: str


def server_options() -> ServerOptions:
    """Read uvicorn options from the environment; a malformed PORT falls back to 3001."""
    raw_port = os.getenv("PORT", "3001")
    return ServerOptions(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(raw_port) if raw_port.strip().isdigit() else 3001,
        reload=(os.getenv("RELOAD") or "").strip().lower() in _TRUTHY,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


# PUBLIC_INTERFACE
def main():
    """Load .env and serve activity_sync.api.main:app."""
    load_dotenv()
    opts = server_options()
    uvicorn.run(
        "activity_sync.api.main:app",
        host=opts.host,
        port=opts.port,
        reload=opts.reload,
        log_level=opts.log_level,
    )


if __name__ == "__main__":
    main()

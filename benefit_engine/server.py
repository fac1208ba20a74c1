#!/usr/bin/env python3
"""
Uvicorn launcher for container deployments.

PORT BINDING:
- Binds to 0.0.0.0:$PORT
- Falls back to 8080 when PORT is not set (a warning in prod)
- Exits with code 1 on a non-integer or out-of-range PORT

Run with:
    benefit-engine
    python -m benefit_engine.server

SINGLE STARTUP LOG LINE (for log aggregation):
  listening host=0.0.0.0 port=<PORT> env=<env>
"""

from __future__ import annotations

import os
import sys

import uvicorn

DEFAULT_PORT = 8080
DEFAULT_APP = "benefit_engine.main:app"


def resolve_port(raw: str | None) -> int:
    """
    Parse PORT.

    Raises:
        ValueError: if PORT is not an integer in 1-65535
    """
    raw = (raw or "").strip()
    if not raw:
        return DEFAULT_PORT

    port = int(raw)
    if port < 1 or port > 65535:
        raise ValueError(f"PORT={port} out of valid range (1-65535)")
    return port


def _workers() -> int:
    try:
        return max(1, int(os.getenv("WEB_CONCURRENCY", "1")))
    except ValueError:
        return 1


def main() -> None:
    env = os.environ.get("ENVIRONMENT", "dev")

    port_raw = os.environ.get("PORT")
    if not (port_raw or "").strip() and env == "prod":
        print(f"WARNING: PORT not set in production! Falling back to {DEFAULT_PORT}.", file=sys.stderr)

    try:
        port = resolve_port(port_raw)
    except ValueError as e:
        print(f"[FATAL] Invalid PORT={port_raw!r}: {e}", file=sys.stderr)
        sys.exit(1)

    host = "0.0.0.0"
    app = os.getenv("UVICORN_APP", DEFAULT_APP)
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    print(f"listening host={host} port={port} env={env}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=log_level,
        workers=_workers(),
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()

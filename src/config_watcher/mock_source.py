"""
Local stand-in for the remote parameter endpoint.

``GET /config`` returns the current values; ``GET /set?small_bid=0.2`` changes
them. Values that do not parse are ignored, matching a lenient dashboard.
Run it next to ``config-watcher --dry-run`` to exercise the full loop.
"""
from __future__ import annotations

import argparse
import logging
import math
import sys
import threading
from typing import Optional, Sequence

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


class MockParameters(BaseModel):
    small_bid: float = 0.1
    large_bid: float = 0.5
    max_concurrency: int = 10


class MockParameterStore:
    """Current mock values, shared by the request handler threads."""

    def __init__(self, initial: Optional[MockParameters] = None):
        self._lock = threading.Lock()
        self._values = (initial or MockParameters()).model_copy()

    def snapshot(self) -> MockParameters:
        with self._lock:
            return self._values.model_copy()

    def update(
        self,
        *,
        small_bid: Optional[str] = None,
        large_bid: Optional[str] = None,
        max_concurrency: Optional[str] = None,
    ) -> MockParameters:
        changes = {}
        for name, raw in (("small_bid", small_bid), ("large_bid", large_bid)):
            parsed = _parse_float(raw)
            if parsed is not None:
                changes[name] = parsed
        parsed_int = _parse_int(max_concurrency)
        if parsed_int is not None:
            changes["max_concurrency"] = parsed_int
        with self._lock:
            self._values = self._values.model_copy(update=changes)
            current = self._values.model_copy()
        logger.info("Updated mock config: %s", current.model_dump())
        return current


def _parse_float(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


router = APIRouter()


def _store(request: Request) -> MockParameterStore:
    return request.app.state.parameter_store


@router.get("/config", response_model=MockParameters)
def get_config(request: Request) -> MockParameters:
    return _store(request).snapshot()


@router.get("/set", response_model=MockParameters)
def set_config(
    request: Request,
    small_bid: Optional[str] = None,
    large_bid: Optional[str] = None,
    max_concurrency: Optional[str] = None,
) -> MockParameters:
    return _store(request).update(
        small_bid=small_bid,
        large_bid=large_bid,
        max_concurrency=max_concurrency,
    )


def create_app(store: Optional[MockParameterStore] = None) -> FastAPI:
    app = FastAPI(title="Mock Bidder Config Source")
    app.state.parameter_store = store or MockParameterStore()
    app.include_router(router)
    return app


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Serve mock bidder parameters over HTTP.")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Address to listen on.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logger.info("Mock server listening on %s:%d", args.host, args.port)
    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

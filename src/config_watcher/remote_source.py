"""
Client for the remote parameter endpoint.

The endpoint is an opaque ``GET`` returning a JSON object whose fields are
each optional. No retries: a failed fetch waits for the next tick.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import requests

from .errors import DecodeError, FetchError
from .parameters import DEFAULT_PARAMETERS, ParameterSnapshot, ParameterSpec, decode_snapshot

DEFAULT_ENDPOINT = "http://localhost:8080/config"
DEFAULT_TIMEOUT_S = 10.0
ERROR_BODY_LIMIT = 1024
USER_AGENT = "bidder-config-watcher/0.1"


@dataclass
class RemoteParameterClient:
    endpoint: str = DEFAULT_ENDPOINT
    timeout_s: float = DEFAULT_TIMEOUT_S
    specs: Tuple[ParameterSpec, ...] = field(default=DEFAULT_PARAMETERS)

    def fetch_snapshot(self) -> ParameterSnapshot:
        try:
            resp = requests.get(
                self.endpoint,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise FetchError(f"failed to GET {self.endpoint}: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            body = resp.text[:ERROR_BODY_LIMIT]
            raise FetchError(f"unexpected status {resp.status_code} from endpoint: {body}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise DecodeError(f"failed to decode JSON from {self.endpoint}: {exc}") from exc
        return decode_snapshot(payload, self.specs)

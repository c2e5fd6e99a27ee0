"""
Blocking JSON-RPC client for an EVM node.

Retries transport errors and HTTP 429 with exponential backoff; any failure that
survives the retries surfaces as ExternalSourceError.
"""

from __future__ import annotations

import itertools
import time
from typing import Any

import httpx

from anchor_recon.core.exceptions import ExternalSourceError
from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF_SEC = 0.5

_request_ids = itertools.count(1)


class JsonRpcClient:
    def __init__(
        self,
        url: str,
        timeout_sec: float = 10.0,
        *,
        max_retries: int = MAX_RETRIES,
        backoff_sec: float = RETRY_BACKOFF_SEC,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._max_retries = max(1, max_retries)
        self._backoff_sec = backoff_sec
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_sec))

    def __enter__(self) -> "JsonRpcClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _post(self, body: dict[str, Any]) -> httpx.Response:
        last_err: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                resp = self._client.post(self._url, json=body)
                if resp.status_code == 429:
                    last_err = ExternalSourceError(f"{body['method']}: rate limited")
                else:
                    resp.raise_for_status()
                    return resp
            except httpx.HTTPError as e:
                last_err = e
            if attempt + 1 < self._max_retries:
                time.sleep(self._backoff_sec * (2 ** attempt))
        logger.warning("rpc_request_failed", method=body["method"], error=str(last_err))
        raise ExternalSourceError(f"{body['method']} failed: {last_err}")

    def call(self, method: str, params: list[Any]) -> Any:
        """Send one request; return its result or raise ExternalSourceError."""
        body = {"jsonrpc": "2.0", "id": next(_request_ids), "method": method, "params": params}
        resp = self._post(body)
        try:
            data = resp.json()
        except ValueError as e:
            raise ExternalSourceError(f"{method}: invalid JSON response") from e
        if not isinstance(data, dict):
            raise ExternalSourceError(f"{method}: unexpected response shape")
        if data.get("error"):
            raise ExternalSourceError(f"{method}: {data['error']}")
        return data.get("result")

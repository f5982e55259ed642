from __future__ import annotations

import itertools
import logging
import re
import time
from typing import Any, List, Optional

import requests
from requests.adapters import HTTPAdapter

from .errors import OracleUnavailable, RPCError
from .models import RPCResponse

logger = logging.getLogger(__name__)

BLOCK_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_BACKOFF = 30.0


class RPCClient:
    """
    Minimal JSON-RPC client for a single endpoint.

    Transport failures, rate limiting and 5xx answers are retried with
    exponential backoff; JSON-RPC level errors are not.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        retries: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff = backoff
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=4, pool_maxsize=4)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        delay = self.backoff
        retry_after: Optional[float] = None
        last_error: Optional[str] = None
        last_exc: Optional[BaseException] = None

        for attempt in range(self.retries + 1):
            if attempt:
                # Retry-After applies to the next sleep only
                pause = retry_after if retry_after is not None else delay
                retry_after = None
                logger.warning(
                    "Retrying %s on %s in %.1fs (attempt %d/%d): %s",
                    method, self.url, pause, attempt + 1, self.retries + 1, last_error,
                )
                time.sleep(pause)
                delay = min(delay * 2, MAX_BACKOFF)

            logger.debug("RPC %s %s -> %s", method, body["params"], self.url)
            try:
                response = self.session.post(self.url, json=body, timeout=self.timeout)
            except requests.RequestException as exc:
                last_error, last_exc = f"{type(exc).__name__}: {exc}", exc
                continue

            if response.status_code in RETRYABLE_STATUS:
                last_error, last_exc = f"HTTP {response.status_code}", None
                header = response.headers.get("Retry-After")
                if response.status_code == 429 and header and header.isdigit():
                    retry_after = min(float(header), MAX_BACKOFF)
                continue

            try:
                response.raise_for_status()
            except requests.HTTPError as exc:
                raise RPCError(self.url, method, f"HTTP {response.status_code}") from exc

            try:
                data = response.json()
            except ValueError as exc:
                raise RPCError(self.url, method, "response is not valid JSON") from exc
            if not isinstance(data, dict):
                raise RPCError(self.url, method, f"unexpected payload type {type(data).__name__}")

            rpc_response = RPCResponse.from_dict(data)
            error = rpc_response.get_error_message()
            if error is not None:
                raise RPCError(self.url, method, error)
            return rpc_response.result

        raise RPCError(
            self.url, method, f"giving up after {self.retries + 1} attempts ({last_error})"
        ) from last_exc

    def block_number(self) -> int:
        result = self.call("eth_blockNumber")
        try:
            return int(result, 16)
        except (TypeError, ValueError) as exc:
            raise RPCError(self.url, "eth_blockNumber", f"malformed block number {result!r}") from exc

    def get_block_hash(self, number: int) -> Optional[str]:
        """
        Return the hash of block ``number`` or ``None`` if the node does not have it.
        """
        block = self.call("eth_getBlockByNumber", [hex(number), False])
        if block is None:
            return None
        if not isinstance(block, dict) or "hash" not in block:
            raise RPCError(self.url, "eth_getBlockByNumber", f"unexpected block payload {block!r}")
        return block["hash"]

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "RPCClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class BlockHashOracle:
    """Fingerprint oracle answering with the block hash reported by one node."""

    def __init__(self, client: RPCClient, side: str) -> None:
        self.client = client
        self.side = side

    @property
    def url(self) -> str:
        return self.client.url

    def __call__(self, index: int) -> str:
        try:
            block_hash = self.client.get_block_hash(index)
        except RPCError as exc:
            raise OracleUnavailable(index, self.side, str(exc)) from exc
        if block_hash is None:
            raise OracleUnavailable(index, self.side, f"block not found on {self.url}")
        if not isinstance(block_hash, str) or not BLOCK_HASH_RE.match(block_hash):
            raise OracleUnavailable(index, self.side, f"malformed block hash {block_hash!r}")
        return block_hash.lower()

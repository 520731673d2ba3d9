"""predict.fun REST client — async, with retry and a circuit breaker."""

import asyncio
import json
import logging
import random
import time
from urllib.parse import urlencode

import httpx

from .auth import build_auth_headers, login
from .constants import (
    ACCOUNT_PATH,
    MARKETS_PATH,
    ORDERS_PATH,
    ORDERS_REMOVE_PATH,
    POSITIONS_PATH,
)
from .errors import SubmissionRejected
from .order import SignedOrder
from .signer import Signer

logger = logging.getLogger(__name__)

_RETRYABLE_CODES = {429, 500, 502, 503, 504}

STRATEGIES = ("LIMIT", "MARKET")
DEFAULT_MARKET_SLIPPAGE_BPS = "200"

_json_compact = lambda obj: json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


class CircuitOpenError(Exception):
    """Raised when the circuit breaker is open and requests are blocked."""


class _CircuitBreaker:
    """Simple circuit breaker: CLOSED → OPEN (after failures) → HALF_OPEN → CLOSED.

    Owned by one client on one event loop; not thread-safe.

    Args:
        failure_threshold: Number of consecutive failures before opening.
        recovery_timeout: Seconds to wait before attempting a probe request.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.state = self.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0

    def allow_request(self) -> bool:
        if self.state == self.CLOSED:
            return True
        if self.state == self.OPEN:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self.state = self.HALF_OPEN
                logger.info("Circuit breaker → HALF_OPEN (probe allowed)")
                return True
            return False
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker → CLOSED (probe succeeded)")
        self._failure_count = 0
        self.state = self.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.failure_threshold:
            self.state = self.OPEN
            logger.warning(
                "Circuit breaker → OPEN after %d consecutive failures (cooldown %.0fs)",
                self._failure_count, self.recovery_timeout,
            )


def _data(resp):
    """Unwrap the ``{"success": ..., "data": ...}`` envelope."""
    if isinstance(resp, dict) and "data" in resp:
        return resp["data"]
    return resp


def build_create_order_request(
    signed: SignedOrder,
    price_per_share_wei: int | str,
    strategy: str = "LIMIT",
    slippage_bps: int | str | None = None,
) -> dict:
    """Body for ``POST /v1/orders``. MARKET orders carry slippage (default 200 bps), LIMIT orders never do."""
    strategy = strategy.upper()
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy: {strategy}")
    data = {
        "order": signed.to_api_dict(),
        "pricePerShare": str(price_per_share_wei),
        "strategy": strategy,
    }
    if strategy == "MARKET":
        data["slippageBps"] = str(slippage_bps) if slippage_bps is not None else DEFAULT_MARKET_SLIPPAGE_BPS
    return {"data": data}


class PredictClient:
    """Async client for the predict.fun REST API.

    Args:
        base_url: API base URL.
        api_key: API key (required on mainnet).
        jwt: Bearer token from a previous login.
        timeout: HTTP request timeout in seconds.
        max_retries: Number of retries on transient HTTP errors.
        base_delay: Initial backoff delay in seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        jwt: str | None = None,
        timeout: float = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ):
        self.base_url = base_url
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._api_key = api_key
        self.jwt = jwt
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._breaker = _CircuitBreaker()

    def __repr__(self) -> str:
        return f"PredictClient(base_url={self.base_url}, authenticated={self.jwt is not None})"

    # ------------------------------------------------------------------
    # Low-level request
    # ------------------------------------------------------------------

    async def _request(
        self, method: str, path: str, body: dict | list | None = None, auth: bool = True
    ) -> dict | list:
        if not self._breaker.allow_request():
            raise CircuitOpenError(
                f"Circuit breaker OPEN — blocking {method} {path}. "
                f"Will retry after {self._breaker.recovery_timeout:.0f}s cooldown."
            )

        body_str = _json_compact(body) if body is not None else ""
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(build_auth_headers(self._api_key, self.jwt if auth else None))
        resp = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = await self._http.request(
                    method,
                    path,
                    content=body_str.encode() if body_str else None,
                    headers=headers,
                )
                if resp.status_code in _RETRYABLE_CODES and attempt < self.max_retries:
                    delay = self.base_delay * (2**attempt) * (0.5 + random.random())
                    logger.warning(
                        "API %d on %s %s — retry %d/%d in %.1fs",
                        resp.status_code, method, path, attempt + 1, self.max_retries, delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                if resp.status_code >= 500:
                    logger.error("API %d %s %s: %s", resp.status_code, method, path, resp.text)
                    self._breaker.record_failure()
                elif resp.status_code >= 400:
                    logger.error("API %d %s %s: %s", resp.status_code, method, path, resp.text)
                    if resp.status_code == 401:
                        self.jwt = None
                resp.raise_for_status()
                self._breaker.record_success()
                return resp.json()
            except httpx.TimeoutException:
                if attempt < self.max_retries:
                    delay = self.base_delay * (2**attempt) * (0.5 + random.random())
                    logger.warning(
                        "API timeout on %s %s — retry %d/%d in %.1fs",
                        method, path, attempt + 1, self.max_retries, delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                self._breaker.record_failure()
                raise

        self._breaker.record_failure()
        if resp is None:
            raise httpx.ConnectError(
                f"All {self.max_retries} retries timed out for {method} {path}"
            )
        raise httpx.HTTPStatusError(
            f"Max retries exceeded for {method} {path}",
            request=httpx.Request(method, path),
            response=resp,
        )

    # ------------------------------------------------------------------
    # Auth / account
    # ------------------------------------------------------------------

    async def authenticate(self, signer: Signer) -> str:
        """Log in with a wallet signature and keep the JWT for later requests."""
        self.jwt = await login(self, signer)
        return self.jwt

    @property
    def is_authenticated(self) -> bool:
        return self.jwt is not None

    async def get_account(self) -> dict:
        return _data(await self._request("GET", ACCOUNT_PATH))

    # ------------------------------------------------------------------
    # Markets / positions
    # ------------------------------------------------------------------

    async def get_markets(self, **filters) -> list[dict]:
        path = MARKETS_PATH + (f"?{urlencode(filters)}" if filters else "")
        return _data(await self._request("GET", path, auth=False))

    async def get_market(self, market_id: int | str) -> dict:
        return _data(await self._request("GET", f"{MARKETS_PATH}/{market_id}", auth=False))

    async def get_orderbook(self, market_id: int | str) -> dict:
        """Orderbook with ``[price, size]`` levels normalised to dicts."""
        raw = _data(await self._request("GET", f"{MARKETS_PATH}/{market_id}/orderbook", auth=False))
        return {
            "marketId": raw.get("marketId"),
            "updateTimestampMs": raw.get("updateTimestampMs"),
            "asks": [{"price": str(p), "size": str(s)} for p, s in raw.get("asks", [])],
            "bids": [{"price": str(p), "size": str(s)} for p, s in raw.get("bids", [])],
        }

    async def get_positions(self, **filters) -> list[dict]:
        path = POSITIONS_PATH + (f"?{urlencode(filters)}" if filters else "")
        return _data(await self._request("GET", path))

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def get_orders(self, **filters) -> list[dict]:
        """The authenticated account's orders. Market orders are not listed here."""
        path = ORDERS_PATH + (f"?{urlencode(filters)}" if filters else "")
        return _data(await self._request("GET", path)) or []

    async def get_order_by_hash(self, order_hash: str) -> dict | None:
        """Fetch one order by hash; None if the API does not know it."""
        try:
            return _data(await self._request("GET", f"{ORDERS_PATH}/{order_hash}"))
        except httpx.HTTPStatusError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return None
            raise

    async def create_order(self, request: dict) -> dict:
        """Submit a signed order. Raises SubmissionRejected unless the API answers success/OK."""
        logger.debug("POST %s %s", ORDERS_PATH, request.get("data", {}).get("strategy"))
        try:
            resp = await self._request("POST", ORDERS_PATH, body=request)
        except httpx.HTTPStatusError as exc:
            payload = None
            status = None
            if exc.response is not None:
                status = exc.response.status_code
                try:
                    payload = exc.response.json()
                except ValueError:
                    payload = exc.response.text
            raise SubmissionRejected(f"Order rejected ({status})", payload, status) from exc

        data = resp.get("data") if isinstance(resp, dict) else None
        code = data.get("code") if isinstance(data, dict) else None
        if not (isinstance(resp, dict) and resp.get("success")) or (code is not None and code != "OK"):
            raise SubmissionRejected(f"Order not accepted: {resp}", resp)
        return resp

    async def cancel_orders(self, order_ids: list[str]) -> dict:
        """Remove orders from the book by id."""
        return await self._request("POST", ORDERS_REMOVE_PATH, body={"data": {"ids": list(order_ids)}})

    async def cancel_order(self, order_id: str) -> dict:
        return await self.cancel_orders([order_id])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

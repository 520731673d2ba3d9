"""Order reconciliation — remote order list merged with locally cached order hashes."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from .storage import OrderHashCache, StoredOrderRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10

STATUS_FILLED = "FILLED"


def _number(value) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal(0)
    except InvalidOperation:
        return Decimal(0)


def timestamp_ms(value) -> int | None:
    """Epoch milliseconds from a numeric value or an ISO-8601 string; None if unparseable."""
    if value in (None, "") or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    try:
        return int(Decimal(text))
    except (InvalidOperation, ValueError, OverflowError):
        pass
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable createdAt: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def derive_status(raw_status, amount, amount_filled) -> str:
    """Nothing remaining and something filled is FILLED, whatever the API says."""
    if _number(amount) == 0 and _number(amount_filled) > 0:
        return STATUS_FILLED
    return str(raw_status or "").upper()


def order_hash_of(payload: dict) -> str | None:
    inner = payload.get("order") if isinstance(payload.get("order"), dict) else {}
    return inner.get("hash") or payload.get("hash")


@dataclass(frozen=True)
class ReconciledOrder:
    id: str
    hash: str
    market_id: int | None
    side: int | None
    strategy: str
    amount: str
    amount_filled: str
    status: str
    expiration: int | None
    token_id: str
    maker_amount: str
    taker_amount: str
    price_per_share_wei: str | None = None
    created_at: int | None = None
    source: str = "remote"  # "remote" (list) or "lookup" (fetched by cached hash)
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_api(cls, payload: dict, source: str, cached: StoredOrderRecord | None = None) -> "ReconciledOrder":
        inner = payload.get("order") if isinstance(payload.get("order"), dict) else {}
        price = payload.get("pricePerShare") or None
        created_at = timestamp_ms(payload.get("createdAt"))
        if cached is not None:
            price = price or cached.price_per_share_wei or None
            if created_at is None:
                created_at = timestamp_ms(cached.created_at)
        market_id = payload.get("marketId", cached.market_id if cached else None)
        side = inner.get("side", payload.get("side"))
        expiration = inner.get("expiration", payload.get("expiration"))
        amount = str(payload.get("amount", "0"))
        amount_filled = str(payload.get("amountFilled", "0"))
        return cls(
            id=str(payload.get("id", "")),
            hash=order_hash_of(payload) or "",
            market_id=int(market_id) if market_id is not None else None,
            side=int(side) if side is not None else None,
            strategy=str(payload.get("strategy", "")),
            amount=amount,
            amount_filled=amount_filled,
            status=derive_status(payload.get("status"), amount, amount_filled),
            expiration=int(expiration) if expiration is not None else None,
            token_id=str(inner.get("tokenId", payload.get("tokenId", ""))),
            maker_amount=str(inner.get("makerAmount", payload.get("makerAmount", ""))),
            taker_amount=str(inner.get("takerAmount", payload.get("takerAmount", ""))),
            price_per_share_wei=str(price) if price is not None else None,
            created_at=created_at,
            source=source,
            raw=payload,
        )


def _sort_key(order: ReconciledOrder):
    # Newest first, undated last, hash breaks ties
    return (order.created_at is None, -(order.created_at or 0), order.hash)


class OrderReconciler:
    """Produce one consistent order list from the API and the local hash cache.

    Args:
        client: PredictClient (needs ``get_orders`` and ``get_order_by_hash``).
        cache: Local order-hash cache.
        batch_size: Concurrent lookup-by-hash calls per batch.
    """

    def __init__(self, client, cache: OrderHashCache, batch_size: int = DEFAULT_BATCH_SIZE):
        self._client = client
        self._cache = cache
        self.batch_size = max(1, int(batch_size))

    async def _lookup(self, order_hash: str) -> dict | None:
        try:
            return await self._client.get_order_by_hash(order_hash)
        except Exception as exc:
            logger.warning("Lookup of cached order %s failed: %s", order_hash[:18], exc)
            return None

    async def reconcile(self, remote_orders: list[dict]) -> list[ReconciledOrder]:
        cached = {rec.hash: rec for rec in self._cache.records()}
        merged: dict[str, ReconciledOrder] = {}

        for payload in remote_orders or []:
            h = order_hash_of(payload)
            if not h or h in merged:
                continue
            merged[h] = ReconciledOrder.from_api(payload, "remote", cached.get(h))

        missing = [h for h in cached if h not in merged]
        for i in range(0, len(missing), self.batch_size):
            batch = missing[i:i + self.batch_size]
            results = await asyncio.gather(*(self._lookup(h) for h in batch))
            for h, payload in zip(batch, results):
                if not payload:
                    logger.debug("Cached order %s not found remotely, dropping", h[:18])
                    continue
                merged[h] = ReconciledOrder.from_api(
                    {**payload, "order": {**(payload.get("order") or {}), "hash": h}},
                    "lookup",
                    cached[h],
                )

        orders = sorted(merged.values(), key=_sort_key)
        logger.info("Reconciled %d orders (%d remote, %d cached lookups)",
                    len(orders), len(remote_orders or []), len(missing))
        return orders

    async def fetch_and_reconcile(self, **filters) -> list[ReconciledOrder]:
        """Fetch the remote list, then reconcile it against the cache."""
        remote = await self._client.get_orders(**filters)
        return await self.reconcile(remote)

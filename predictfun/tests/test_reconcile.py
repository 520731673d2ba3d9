"""Tests for predictfun.reconcile — remote list merged with cached order hashes."""

from unittest.mock import AsyncMock

import pytest

from predictfun.reconcile import OrderReconciler, ReconciledOrder, derive_status, timestamp_ms
from predictfun.storage import MemoryStore, OrderHashCache

H1 = "0x" + "11" * 32
H2 = "0x" + "22" * 32
H3 = "0x" + "33" * 32


def _remote(order_hash, status="OPEN", amount="100", filled="0", created_at=None, price=None, **extra):
    payload = {
        "id": order_hash[-4:],
        "marketId": 42,
        "strategy": "LIMIT",
        "status": status,
        "amount": amount,
        "amountFilled": filled,
        "order": {
            "hash": order_hash,
            "side": 0,
            "tokenId": "111",
            "makerAmount": "50",
            "takerAmount": "100",
            "expiration": 1_700_003_600,
        },
        **extra,
    }
    if created_at is not None:
        payload["createdAt"] = created_at
    if price is not None:
        payload["pricePerShare"] = price
    return payload


def _make(cache_entries=(), lookups=None):
    cache = OrderHashCache(MemoryStore())
    for h, market_id, price, created_at in cache_entries:
        cache.add(h, market_id, price, created_at=created_at)
    lookups = lookups or {}

    async def lookup(order_hash):
        value = lookups.get(order_hash)
        if isinstance(value, Exception):
            raise value
        return value

    client = AsyncMock()
    client.get_order_by_hash.side_effect = lookup
    return OrderReconciler(client, cache, batch_size=2), client


class TestDeriveStatus:
    def test_filled_override(self):
        assert derive_status("OPEN", "0", "100") == "FILLED"

    def test_passthrough(self):
        assert derive_status("open", "50", "50") == "OPEN"
        assert derive_status("CANCELLED", "0", "0") == "CANCELLED"

    def test_missing(self):
        assert derive_status(None, None, None) == ""


class TestTimestampMs:
    def test_numeric(self):
        assert timestamp_ms(1_700_000_000_000) == 1_700_000_000_000
        assert timestamp_ms("1700000000000") == 1_700_000_000_000

    def test_iso(self):
        assert timestamp_ms("2025-01-15T10:00:00.000Z") == 1_736_935_200_000
        assert timestamp_ms("2025-01-15T10:00:00") == 1_736_935_200_000

    def test_unparseable(self):
        assert timestamp_ms("not a date") is None
        assert timestamp_ms(None) is None
        assert timestamp_ms("") is None


class TestReconcile:
    @pytest.mark.asyncio
    async def test_remote_only(self):
        reconciler, client = _make()
        orders = await reconciler.reconcile([_remote(H1, created_at=1), _remote(H2, created_at=2)])
        assert [o.hash for o in orders] == [H2, H1]
        assert all(o.source == "remote" for o in orders)
        client.get_order_by_hash.assert_not_called()

    @pytest.mark.asyncio
    async def test_market_order_recovered_from_cache(self):
        """Cached market order missing from the list is looked up and price back-filled."""
        lookup = _remote(H2, status="OPEN", amount="0", filled="100", strategy="MARKET")
        lookup["order"].pop("hash")
        reconciler, client = _make(
            cache_entries=[(H2, 42, "500000000000000000", 5_000)],
            lookups={H2: lookup},
        )
        orders = await reconciler.reconcile([_remote(H1, created_at=1_000)])

        assert [o.hash for o in orders] == [H2, H1]
        recovered = orders[0]
        assert recovered.source == "lookup"
        assert recovered.price_per_share_wei == "500000000000000000"
        assert recovered.created_at == 5_000
        assert recovered.status == "FILLED"
        client.get_order_by_hash.assert_awaited_once_with(H2)

    @pytest.mark.asyncio
    async def test_remote_price_not_overwritten(self):
        reconciler, _ = _make(cache_entries=[(H1, 42, "1", 9)])
        orders = await reconciler.reconcile([_remote(H1, price="700000000000000000", created_at=3)])
        assert orders[0].price_per_share_wei == "700000000000000000"
        assert orders[0].created_at == 3

    @pytest.mark.asyncio
    async def test_remote_missing_fields_back_filled(self):
        reconciler, client = _make(cache_entries=[(H1, 42, "450000000000000000", 9)])
        orders = await reconciler.reconcile([_remote(H1)])
        assert orders[0].price_per_share_wei == "450000000000000000"
        assert orders[0].created_at == 9
        client.get_order_by_hash.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicates_collapsed(self):
        reconciler, _ = _make()
        orders = await reconciler.reconcile([_remote(H1, status="OPEN"), _remote(H1, status="CANCELLED")])
        assert len(orders) == 1
        assert orders[0].status == "OPEN"

    @pytest.mark.asyncio
    async def test_lookup_failure_dropped(self):
        reconciler, _ = _make(
            cache_entries=[(H2, 42, "1", 2), (H3, 42, "1", 3)],
            lookups={H2: RuntimeError("boom"), H3: None},
        )
        orders = await reconciler.reconcile([_remote(H1)])
        assert [o.hash for o in orders] == [H1]

    @pytest.mark.asyncio
    async def test_batches(self):
        entries = [("0x" + f"{i:064x}", 42, "1", i) for i in range(1, 6)]
        lookups = {h: _remote(h, created_at=c) for h, _, _, c in entries}
        reconciler, client = _make(cache_entries=entries, lookups=lookups)

        orders = await reconciler.reconcile([])
        assert len(orders) == 5
        assert client.get_order_by_hash.await_count == 5
        assert [o.created_at for o in orders] == [5, 4, 3, 2, 1]

    @pytest.mark.asyncio
    async def test_idempotent(self):
        reconciler, _ = _make(
            cache_entries=[(H2, 42, "1", 2)],
            lookups={H2: _remote(H2)},
        )
        remote = [_remote(H1, created_at=1)]
        first = await reconciler.reconcile(remote)
        second = await reconciler.reconcile(remote)
        assert first == second

    @pytest.mark.asyncio
    async def test_undated_last(self):
        reconciler, _ = _make()
        orders = await reconciler.reconcile([_remote(H1), _remote(H2, created_at=1)])
        assert [o.hash for o in orders] == [H2, H1]

    @pytest.mark.asyncio
    async def test_iso_created_at(self):
        reconciler, _ = _make()
        orders = await reconciler.reconcile([
            _remote(H1, created_at="2025-01-15T10:00:00.000Z"),
            _remote(H2, created_at="2025-01-16T10:00:00+00:00"),
        ])
        assert [o.hash for o in orders] == [H2, H1]
        assert orders[1].created_at == 1_736_935_200_000

    @pytest.mark.asyncio
    async def test_unparseable_created_at_falls_back_to_cache(self):
        reconciler, _ = _make(cache_entries=[(H1, 42, "1", 1_736_935_200_000)])
        orders = await reconciler.reconcile([_remote(H1, created_at="yesterday")])
        assert orders[0].created_at == 1_736_935_200_000

    @pytest.mark.asyncio
    async def test_fetch_and_reconcile(self):
        reconciler, client = _make()
        client.get_orders.return_value = [_remote(H1)]
        orders = await reconciler.fetch_and_reconcile(status="OPEN")
        client.get_orders.assert_awaited_once_with(status="OPEN")
        assert orders[0].hash == H1


class TestReconciledOrder:
    def test_from_api_flattens_order(self):
        o = ReconciledOrder.from_api(_remote(H1, created_at=7), "remote")
        assert o.market_id == 42
        assert o.side == 0
        assert o.token_id == "111"
        assert o.expiration == 1_700_003_600
        assert o.price_per_share_wei is None

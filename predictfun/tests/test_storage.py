"""Tests for predictfun.storage — order-hash and redemption caches."""

import json

from predictfun.storage import (
    JsonFileStore,
    MemoryStore,
    OrderHashCache,
    RedemptionCache,
)


class TestJsonFileStore:
    def test_missing_file(self, tmp_path):
        store = JsonFileStore(tmp_path / "cache.json")
        assert store.get("k") is None

    def test_set_get_delete(self, tmp_path):
        store = JsonFileStore(tmp_path / "cache.json")
        store.set("k", "v")
        assert store.get("k") == "v"
        assert JsonFileStore(tmp_path / "cache.json").get("k") == "v"
        store.delete("k")
        assert store.get("k") is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        store = JsonFileStore(path)
        assert store.get("k") is None
        store.set("k", "v")
        assert json.loads(path.read_text()) == {"k": "v"}


class TestOrderHashCache:
    def test_add_newest_first(self):
        cache = OrderHashCache(MemoryStore())
        cache.add("0xa", 1, 5 * 10**17, created_at=1)
        cache.add("0xb", 2, "300000000000000000", created_at=2)
        records = cache.records()
        assert [r.hash for r in records] == ["0xb", "0xa"]
        assert records[1].price_per_share_wei == str(5 * 10**17)
        assert records[0].market_id == 2

    def test_duplicate_ignored(self):
        cache = OrderHashCache(MemoryStore())
        assert cache.add("0xa", 1, 1) is not None
        assert cache.add("0xa", 9, 9) is None
        assert len(cache.records()) == 1
        assert cache.get("0xa").market_id == 1

    def test_cap_evicts_oldest(self):
        cache = OrderHashCache(MemoryStore(), cap=100)
        for i in range(101):
            cache.add(f"0x{i:02x}", i, 1, created_at=i)
        records = cache.records()
        assert len(records) == 100
        assert records[0].hash == "0x64"
        assert cache.get("0x00") is None

    def test_created_at_defaults_to_now(self):
        cache = OrderHashCache(MemoryStore())
        rec = cache.add("0xa", 1, 1)
        assert rec.created_at > 1_600_000_000_000

    def test_remove_and_clear(self):
        cache = OrderHashCache(MemoryStore())
        cache.add("0xa", 1, 1)
        cache.add("0xb", 1, 1)
        cache.remove("0xa")
        assert [r.hash for r in cache.records()] == ["0xb"]
        cache.clear()
        assert cache.records() == []

    def test_corrupt_value(self):
        store = MemoryStore({"predict_order_hashes": "garbage"})
        assert OrderHashCache(store).records() == []

    def test_malformed_entries_skipped(self):
        store = MemoryStore({"predict_order_hashes": json.dumps([{"marketId": 1}, {"hash": "0xa"}])})
        assert [r.hash for r in OrderHashCache(store).records()] == ["0xa"]

    def test_persisted_shape(self):
        store = MemoryStore()
        OrderHashCache(store).add("0xa", 3, 42, created_at=1000)
        assert json.loads(store.get("predict_order_hashes")) == [
            {"hash": "0xa", "marketId": 3, "pricePerShareWei": "42", "createdAt": 1000}
        ]


class TestRedemptionCache:
    def test_add(self):
        cache = RedemptionCache(MemoryStore())
        entry = cache.add("0xTX", "0xcond", 10**18, payout_formatted="1", market_title="Rain?")
        assert entry["payout"] == str(10**18)
        assert entry["blockNumber"] is None
        assert cache.records()[0]["marketTitle"] == "Rain?"

    def test_dedupe_case_insensitive(self):
        cache = RedemptionCache(MemoryStore())
        cache.add("0xABC", "0xcond", 1)
        assert cache.add("0xabc", "0xcond", 1) is None
        assert len(cache.records()) == 1

    def test_cap(self):
        cache = RedemptionCache(MemoryStore(), cap=50)
        for i in range(55):
            cache.add(f"0x{i:04x}", "0xcond", i)
        records = cache.records()
        assert len(records) == 50
        assert records[0]["transactionHash"] == "0x0036"

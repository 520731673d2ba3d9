"""Local caches — order hashes and optimistic redemptions over a flat key-value store."""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .constants import (
    ORDER_CACHE_CAP,
    ORDER_CACHE_KEY,
    REDEMPTION_CACHE_CAP,
    REDEMPTION_CACHE_KEY,
)

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store (tests, short-lived sessions)."""

    def __init__(self, data: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


@contextlib.contextmanager
def store_lock(path: str):
    """Exclusive file lock serialising read-modify-write of the store file."""
    lock_path = path + ".lock"
    fd = open(lock_path, "w")
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
    except OSError:
        logger.error("Failed to acquire store lock %s", lock_path)
        fd.close()
        raise
    try:
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()


class JsonFileStore:
    """Key-value store persisted as one JSON object file.

    Every write rewrites the whole file atomically (temp file + ``os.replace``).
    """

    def __init__(self, path: str | Path):
        self.path = str(path)

    def _load(self) -> dict[str, str]:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            logger.warning("Corrupt store file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, str]) -> None:
        dir_path = os.path.dirname(self.path) or "."
        fd, tmp = tempfile.mkstemp(dir=dir_path, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with store_lock(self.path):
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str) -> None:
        with store_lock(self.path):
            data = self._load()
            if data.pop(key, None) is not None:
                self._save(data)


def _read_list(store: KeyValueStore, key: str) -> list[dict]:
    raw = store.get(key)
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring corrupt cache %s: %s", key, exc)
        return []
    if not isinstance(items, list):
        return []
    return [i for i in items if isinstance(i, dict)]


def _write_list(store: KeyValueStore, key: str, items: list[dict]) -> None:
    store.set(key, json.dumps(items, separators=(",", ":")))


@dataclass(frozen=True)
class StoredOrderRecord:
    hash: str
    market_id: int
    price_per_share_wei: str
    created_at: int  # ms since epoch

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "marketId": self.market_id,
            "pricePerShareWei": self.price_per_share_wei,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StoredOrderRecord":
        return cls(
            hash=d["hash"],
            market_id=int(d.get("marketId", 0)),
            price_per_share_wei=str(d.get("pricePerShareWei") or d.get("pricePerShare") or ""),
            created_at=int(d.get("createdAt", 0)),
        )


class OrderHashCache:
    """Hashes of orders this client submitted, newest first, capped at 100.

    The order list endpoint omits some order types (market orders), so these
    hashes are looked up individually during reconciliation.
    """

    def __init__(self, store: KeyValueStore, key: str = ORDER_CACHE_KEY, cap: int = ORDER_CACHE_CAP):
        self._store = store
        self.key = key
        self.cap = cap

    def records(self) -> list[StoredOrderRecord]:
        out = []
        for item in _read_list(self._store, self.key):
            try:
                out.append(StoredOrderRecord.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed order cache entry: %s", item)
        return out

    def get(self, order_hash: str) -> StoredOrderRecord | None:
        for rec in self.records():
            if rec.hash == order_hash:
                return rec
        return None

    def add(
        self,
        order_hash: str,
        market_id: int,
        price_per_share_wei: int | str,
        created_at: int | None = None,
    ) -> StoredOrderRecord | None:
        """Record a submitted order. Duplicates are ignored; the oldest entry is evicted past the cap."""
        records = self.records()
        if any(r.hash == order_hash for r in records):
            return None
        rec = StoredOrderRecord(
            hash=order_hash,
            market_id=int(market_id),
            price_per_share_wei=str(price_per_share_wei),
            created_at=created_at if created_at is not None else now_ms(),
        )
        records.insert(0, rec)
        _write_list(self._store, self.key, [r.to_dict() for r in records[: self.cap]])
        return rec

    def remove(self, order_hash: str) -> None:
        records = self.records()
        kept = [r for r in records if r.hash != order_hash]
        if len(kept) != len(records):
            _write_list(self._store, self.key, [r.to_dict() for r in kept])

    def clear(self) -> None:
        self._store.delete(self.key)


class RedemptionCache:
    """Redemptions recorded right after a successful redeem call, before the
    event is visible on-chain. Newest first, capped at 50.

    Entries: ``{transactionHash, blockNumber, conditionId, payout,
    payoutFormatted, marketTitle, outcomeName, timestamp}``.
    """

    def __init__(self, store: KeyValueStore, key: str = REDEMPTION_CACHE_KEY, cap: int = REDEMPTION_CACHE_CAP):
        self._store = store
        self.key = key
        self.cap = cap

    def records(self) -> list[dict]:
        return [r for r in _read_list(self._store, self.key) if r.get("transactionHash")]

    def add(
        self,
        transaction_hash: str,
        condition_id: str,
        payout: int | str,
        payout_formatted: str = "",
        market_title: str = "",
        outcome_name: str = "",
        block_number: int | None = None,
        timestamp: int | None = None,
    ) -> dict | None:
        records = self.records()
        key = transaction_hash.lower()
        if any(r["transactionHash"].lower() == key for r in records):
            return None
        entry = {
            "transactionHash": transaction_hash,
            "blockNumber": block_number,
            "conditionId": condition_id,
            "payout": str(payout),
            "payoutFormatted": payout_formatted,
            "marketTitle": market_title,
            "outcomeName": outcome_name,
            "timestamp": timestamp if timestamp is not None else now_ms(),
        }
        records.insert(0, entry)
        _write_list(self._store, self.key, records[: self.cap])
        return entry

    def clear(self) -> None:
        self._store.delete(self.key)

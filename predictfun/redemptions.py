"""Redemption history — chunked PayoutRedemption log scan merged with the local cache.

Two event shapes are scanned:

  ConditionalTokens:
    PayoutRedemption(address indexed redeemer, address indexed collateralToken,
                     bytes32 indexed parentCollectionId, bytes32 conditionId,
                     uint256[] indexSets, uint256 payout)

  NegRiskAdapter:
    PayoutRedemption(address indexed redeemer, bytes32 indexed conditionId,
                     uint256[] amounts, uint256 payout)

Node providers cap ``eth_getLogs`` ranges, so the lookback window is split into
consecutive chunks. A failed chunk is logged and skipped: the scan returns the
history it could read.
"""

import asyncio
import logging
from dataclasses import dataclass

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from .amounts import from_wei
from .constants import (
    CONDITIONAL_TOKENS,
    CTF_PAYOUT_REDEMPTION_TOPIC,
    NEG_RISK_ADAPTERS,
    NEG_RISK_PAYOUT_REDEMPTION_TOPIC,
)
from .errors import PartialScanFailure, UnsupportedVariant
from .rpc import RpcClient
from .storage import RedemptionCache

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30
BLOCKS_PER_DAY = 24 * 60 * 20  # ~3s blocks
MAX_BLOCK_RANGE = 9_999
DEFAULT_CONCURRENCY = 4

SOURCE_ONCHAIN = "onchain"
SOURCE_LOCAL = "local"

KIND_CTF = "ctf"
KIND_NEG_RISK = "neg_risk"


@dataclass(frozen=True)
class RedemptionEvent:
    tx_hash: str
    block_number: int | None
    condition_id: str
    payout: int
    contract_address: str
    source: str
    index_sets: tuple[int, ...] = ()
    amounts: tuple[int, ...] = ()
    log_index: int = 0
    timestamp: int | None = None  # ms, local entries only
    market_title: str = ""
    outcome_name: str = ""

    @property
    def payout_formatted(self) -> str:
        return format(from_wei(self.payout).normalize(), "f")

    @property
    def is_confirmed(self) -> bool:
        return self.source == SOURCE_ONCHAIN

    def to_dict(self) -> dict:
        return {
            "transactionHash": self.tx_hash,
            "blockNumber": self.block_number,
            "conditionId": self.condition_id,
            "payout": str(self.payout),
            "payoutFormatted": self.payout_formatted,
            "contractAddress": self.contract_address,
            "source": self.source,
            "indexSets": [str(i) for i in self.index_sets],
            "amounts": [str(a) for a in self.amounts],
            "timestamp": self.timestamp,
            "marketTitle": self.market_title,
            "outcomeName": self.outcome_name,
        }

    @classmethod
    def from_cache(cls, record: dict) -> "RedemptionEvent":
        block = record.get("blockNumber")
        return cls(
            tx_hash=record["transactionHash"],
            block_number=int(block) if block not in (None, "") else None,
            condition_id=record.get("conditionId", ""),
            payout=int(record.get("payout") or 0),
            contract_address="",
            source=SOURCE_LOCAL,
            timestamp=record.get("timestamp"),
            market_title=record.get("marketTitle", ""),
            outcome_name=record.get("outcomeName", ""),
        )


# -- Block ranges ------------------------------------------------------------

def lookback_start(current_block: int, lookback_days: int, blocks_per_day: int = BLOCKS_PER_DAY) -> int:
    return max(0, current_block - lookback_days * blocks_per_day)


def chunk_ranges(start: int, end: int, max_range: int = MAX_BLOCK_RANGE) -> list[tuple[int, int]]:
    """Split [start, end] into consecutive inclusive ranges of at most ``max_range`` blocks."""
    if max_range < 1:
        raise ValueError("max_range must be >= 1")
    ranges = []
    frm = start
    while frm <= end:
        to = min(frm + max_range - 1, end)
        ranges.append((frm, to))
        frm = to + 1
    return ranges


# -- Log decoding ------------------------------------------------------------

def _address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address.lower().removeprefix("0x")


def _hex_bytes(value: str) -> bytes:
    return bytes.fromhex(value.removeprefix("0x"))


def _int(value) -> int:
    return int(value, 16) if isinstance(value, str) else int(value)


def decode_ctf_log(log: dict) -> RedemptionEvent:
    condition_id, index_sets, payout = decode(
        ["bytes32", "uint256[]", "uint256"], _hex_bytes(log["data"])
    )
    return RedemptionEvent(
        tx_hash=log["transactionHash"],
        block_number=_int(log["blockNumber"]),
        condition_id="0x" + condition_id.hex(),
        payout=payout,
        contract_address=to_checksum_address(log["address"]),
        source=SOURCE_ONCHAIN,
        index_sets=tuple(index_sets),
        log_index=_int(log.get("logIndex", 0)),
    )


def decode_neg_risk_log(log: dict) -> RedemptionEvent:
    amounts, payout = decode(["uint256[]", "uint256"], _hex_bytes(log["data"]))
    return RedemptionEvent(
        tx_hash=log["transactionHash"],
        block_number=_int(log["blockNumber"]),
        condition_id=log["topics"][2],
        payout=payout,
        contract_address=to_checksum_address(log["address"]),
        source=SOURCE_ONCHAIN,
        amounts=tuple(amounts),
        log_index=_int(log.get("logIndex", 0)),
    )


_DECODERS = {
    KIND_CTF: (CTF_PAYOUT_REDEMPTION_TOPIC, decode_ctf_log),
    KIND_NEG_RISK: (NEG_RISK_PAYOUT_REDEMPTION_TOPIC, decode_neg_risk_log),
}


# -- Merge -------------------------------------------------------------------

def _display_key(event: RedemptionEvent):
    # Unconfirmed local entries first (newest timestamp first), then by block descending
    if event.block_number is None:
        return (0, -(event.timestamp or 0), event.tx_hash.lower())
    return (1, -event.block_number, -event.log_index, event.tx_hash.lower())


def merge_redemptions(onchain: list[RedemptionEvent], local: list[dict]) -> list[RedemptionEvent]:
    """Dedupe by transaction hash (on-chain wins) and sort most recent first."""
    merged: dict[str, RedemptionEvent] = {}
    ordered = sorted(onchain, key=lambda e: (e.block_number or 0, e.log_index, e.contract_address))
    for event in ordered:
        merged.setdefault(event.tx_hash.lower(), event)
    for record in local:
        try:
            event = RedemptionEvent.from_cache(record)
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed redemption cache entry: %s", record)
            continue
        merged.setdefault(event.tx_hash.lower(), event)
    return sorted(merged.values(), key=_display_key)


# -- Scanner -----------------------------------------------------------------

class RedemptionScanner:
    """Scan every redemption-emitting contract of a chain for one account.

    Args:
        rpc: Node client.
        chain_id: Chain to scan.
        cache: Optimistic local redemptions to merge in (read only).
        lookback_days: Days of history to scan.
        blocks_per_day: Block production rate used to size the window.
        max_block_range: Widest range the node accepts per ``eth_getLogs``.
        extra_adapters: Neg-risk adapter addresses in addition to the built-in table.
        concurrency: Concurrent log queries.
    """

    def __init__(
        self,
        rpc: RpcClient,
        chain_id: int,
        cache: RedemptionCache | None = None,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        blocks_per_day: int = BLOCKS_PER_DAY,
        max_block_range: int = MAX_BLOCK_RANGE,
        extra_adapters: tuple[str, ...] | list[str] = (),
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        if chain_id not in CONDITIONAL_TOKENS:
            raise UnsupportedVariant(chain_id)
        if lookback_days <= 0:
            raise ValueError("lookback_days must be positive")
        self._rpc = rpc
        self.chain_id = chain_id
        self._cache = cache
        self.lookback_days = lookback_days
        self.blocks_per_day = blocks_per_day
        self.max_block_range = max_block_range
        self.concurrency = max(1, concurrency)
        self.extra_adapters = tuple(to_checksum_address(a) for a in extra_adapters)

    def targets(self) -> list[tuple[str, str]]:
        """(address, kind) pairs to scan, deduplicated, in a fixed order."""
        out: list[tuple[str, str]] = []
        seen = set()
        for address in CONDITIONAL_TOKENS[self.chain_id].values():
            if address.lower() not in seen:
                seen.add(address.lower())
                out.append((address, KIND_CTF))
        for address in NEG_RISK_ADAPTERS.get(self.chain_id, ()) + self.extra_adapters:
            if address.lower() not in seen:
                seen.add(address.lower())
                out.append((address, KIND_NEG_RISK))
        return out

    async def _fetch_chunk(self, address: str, kind: str, account: str, frm: int, to: int) -> list[RedemptionEvent]:
        topic0, decoder = _DECODERS[kind]
        try:
            logs = await self._rpc.get_logs(
                address, ["0x" + topic0.hex(), _address_topic(account)], frm, to
            )
        except Exception as exc:
            raise PartialScanFailure(address, frm, to, exc) from exc
        events = []
        for log in logs or []:
            try:
                events.append(decoder(log))
            except (DecodingError, KeyError, IndexError, ValueError) as exc:
                logger.warning("Undecodable %s log in %s: %s", kind, log.get("transactionHash"), exc)
        return events

    async def scan_onchain(self, account: str, current_block: int | None = None) -> list[RedemptionEvent]:
        """Query every (contract × chunk); failed chunks are logged and skipped."""
        if current_block is None:
            current_block = await self._rpc.block_number()
        start = lookback_start(current_block, self.lookback_days, self.blocks_per_day)
        ranges = chunk_ranges(start, current_block, self.max_block_range)
        targets = self.targets()
        semaphore = asyncio.Semaphore(self.concurrency)
        failures = 0

        async def run(address: str, kind: str, frm: int, to: int) -> list[RedemptionEvent]:
            nonlocal failures
            async with semaphore:
                try:
                    return await self._fetch_chunk(address, kind, account, frm, to)
                except PartialScanFailure as exc:
                    failures += 1
                    logger.warning("Skipping chunk: %s", exc)
                    return []

        results = await asyncio.gather(*(
            run(address, kind, frm, to)
            for address, kind in targets
            for frm, to in ranges
        ))
        events = [e for chunk in results for e in chunk]
        logger.info(
            "Scanned %d contract(s) × %d chunk(s) from block %d: %d event(s), %d failed chunk(s)",
            len(targets), len(ranges), start, len(events), failures,
        )
        return events

    async def scan(self, account: str) -> list[RedemptionEvent]:
        """Merged, deduplicated, most-recent-first redemption history for ``account``."""
        onchain = await self.scan_onchain(to_checksum_address(account))
        local = self._cache.records() if self._cache is not None else []
        return merge_redemptions(onchain, local)

"""Position redemption — ``redeemPositions`` on the market variant's contract.

Standard and yield-bearing markets redeem on their ConditionalTokens contract:
    redeemPositions(address collateralToken, bytes32 parentCollectionId,
                    bytes32 conditionId, uint256[] indexSets)

Neg-risk markets redeem through the NegRiskAdapter, which needs the share
amount per outcome and operator approval over the maker's outcome tokens:
    redeemPositions(bytes32 conditionId, uint256[] amounts)

A sent redemption is recorded in the RedemptionCache right away so history
shows it before the PayoutRedemption event is indexed.
"""

import asyncio
import logging
from dataclasses import dataclass

from eth_abi import encode
from eth_utils import to_checksum_address

from .amounts import from_wei, to_wei
from .approve import read_operator_approval
from .constants import (
    COLLATERAL_TOKENS,
    CONDITIONAL_TOKENS,
    CTF_REDEEM_POSITIONS_SELECTOR,
    NEG_RISK_REDEEM_POSITIONS_SELECTOR,
    SET_APPROVAL_FOR_ALL_SELECTOR,
)
from .errors import InvalidAmount, RedemptionFailed, UnsupportedVariant
from .rpc import RpcClient, TransactionSender
from .storage import RedemptionCache
from .variants import MarketVariant

logger = logging.getLogger(__name__)

# Binary markets: YES = 1, NO = 2
VALID_INDEX_SETS = (1, 2)
PARENT_COLLECTION_ID = b"\x00" * 32

DEFAULT_SETTLE_SECONDS = 3.0


@dataclass(frozen=True)
class RedeemablePosition:
    condition_id: str
    index_set: int
    is_neg_risk: bool = False
    is_yield_bearing: bool = False
    amount: int = 0  # shares, wei
    market_title: str = ""
    outcome_name: str = ""

    @property
    def variant(self) -> MarketVariant:
        return MarketVariant.from_flags(self.is_neg_risk, self.is_yield_bearing)

    @classmethod
    def from_api(cls, payload: dict) -> "RedeemablePosition":
        """Parse a ``/v1/positions`` entry, nested (``market``/``outcome``) or flat."""
        market = payload.get("market") if isinstance(payload.get("market"), dict) else {}
        outcome = payload.get("outcome") if isinstance(payload.get("outcome"), dict) else {}
        return cls(
            condition_id=market.get("conditionId") or payload.get("conditionId", ""),
            index_set=int(outcome.get("indexSet", payload.get("outcomeIndexSet", 0))),
            is_neg_risk=bool(market.get("isNegRisk", payload.get("isNegRisk", False))),
            is_yield_bearing=bool(market.get("isYieldBearing", payload.get("isYieldBearing", False))),
            amount=int(payload.get("amount") or 0),
            market_title=market.get("question") or payload.get("marketTitle", ""),
            outcome_name=outcome.get("name") or payload.get("outcomeName", ""),
        )


def _condition_bytes(condition_id: str) -> bytes:
    raw = bytes.fromhex(condition_id[2:] if condition_id.startswith("0x") else condition_id)
    if len(raw) != 32:
        raise ValueError(f"conditionId must be 32 bytes, got {len(raw)}")
    return raw


def build_redeem_call(chain_id: int, position: RedeemablePosition, adapter: str | None = None) -> tuple[str, bytes]:
    """Return ``(contract, calldata)`` for redeeming ``position``.

    Raises:
        ValueError: index set other than 1 or 2, or a malformed condition id.
        InvalidAmount: neg-risk position without a positive amount.
        UnsupportedVariant: unknown chain, or neg-risk with no adapter address.
    """
    if position.index_set not in VALID_INDEX_SETS:
        raise ValueError(f"Invalid indexSet: {position.index_set}")
    if chain_id not in CONDITIONAL_TOKENS:
        raise UnsupportedVariant(chain_id)
    condition = _condition_bytes(position.condition_id)

    if position.is_neg_risk:
        if adapter is None:
            raise UnsupportedVariant(chain_id, "neg-risk adapter")
        if position.amount <= 0:
            raise InvalidAmount("neg-risk redemption needs a positive amount")
        amounts = [position.amount, 0] if position.index_set == 1 else [0, position.amount]
        calldata = NEG_RISK_REDEEM_POSITIONS_SELECTOR + encode(["bytes32", "uint256[]"], [condition, amounts])
        return to_checksum_address(adapter), calldata

    calldata = CTF_REDEEM_POSITIONS_SELECTOR + encode(
        ["address", "bytes32", "bytes32", "uint256[]"],
        [COLLATERAL_TOKENS[chain_id], PARENT_COLLECTION_ID, condition, [position.index_set]],
    )
    return CONDITIONAL_TOKENS[chain_id][position.variant.value], calldata


class Redeemer:
    """Redeems resolved positions for one wallet and records them locally.

    Args:
        rpc: Node client for the adapter operator-approval read.
        sender: Wallet collaborator that sends the transactions.
        chain_id: Chain the positions live on.
        cache: Receives each redemption after its transaction is sent.
        neg_risk_adapter: NegRiskAdapter address, required for neg-risk positions.
        settle_seconds: Wait after an operator approval before redeeming.
    """

    def __init__(
        self,
        rpc: RpcClient,
        sender: TransactionSender,
        chain_id: int,
        cache: RedemptionCache,
        neg_risk_adapter: str | None = None,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
    ):
        self._rpc = rpc
        self._sender = sender
        self.chain_id = chain_id
        self._cache = cache
        self.neg_risk_adapter = neg_risk_adapter
        self.settle_seconds = settle_seconds

    async def _send(self, to: str, calldata: bytes, label: str) -> str:
        try:
            return await self._sender.send_transaction(to, calldata)
        except Exception as exc:
            logger.error("%s failed: %s", label, exc)
            raise RedemptionFailed(f"{label} failed: {exc}") from exc

    async def _ensure_adapter_operator(self, position: RedeemablePosition, adapter: str) -> None:
        conditional_tokens = CONDITIONAL_TOKENS[self.chain_id][position.variant.value]
        if await read_operator_approval(self._rpc, conditional_tokens, self._sender.address, adapter):
            return
        calldata = SET_APPROVAL_FOR_ALL_SELECTOR + encode(["address", "bool"], [adapter, True])
        tx_hash = await self._send(conditional_tokens, calldata, "Adapter setApprovalForAll")
        logger.info("Adapter %s approved as operator: %s", adapter, tx_hash)
        await asyncio.sleep(self.settle_seconds)

    async def redeem(self, position: RedeemablePosition) -> str:
        """Send ``redeemPositions`` and record it in the cache. Returns the tx hash.

        Nothing is cached when building or sending fails.
        """
        to, calldata = build_redeem_call(self.chain_id, position, self.neg_risk_adapter)
        if position.is_neg_risk:
            await self._ensure_adapter_operator(position, to)

        tx_hash = await self._send(to, calldata, "redeemPositions")
        payout_formatted = format(from_wei(position.amount).normalize(), "f")
        self._cache.add(
            tx_hash,
            position.condition_id,
            position.amount,
            payout_formatted=payout_formatted,
            market_title=position.market_title,
            outcome_name=position.outcome_name,
        )
        logger.info("Redeemed %s (indexSet %d, %s): %s",
                    position.condition_id[:18], position.index_set, position.variant.value, tx_hash)
        return tx_hash


def position_from_args(condition_id: str, index_set: int, amount=None, **flags) -> RedeemablePosition:
    """Position from CLI-style inputs; ``amount`` is in shares (decimal string)."""
    return RedeemablePosition(
        condition_id=condition_id,
        index_set=int(index_set),
        amount=to_wei(amount) if amount else 0,
        **flags,
    )

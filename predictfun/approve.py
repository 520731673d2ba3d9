"""Approval gate — collateral allowance and outcome-token operator approval.

An exchange can only settle an order once the maker has:
  - approved the exchange to spend its collateral (ERC-20 ``approve``)
  - approved the exchange as operator of its outcome shares (ERC-1155
    ``setApprovalForAll``)

``ApprovalGate`` reads both from chain and sends whichever is missing.
"""

import asyncio
import logging
from enum import Enum

from eth_abi import encode

from .constants import (
    ALLOWANCE_SELECTOR,
    APPROVE_SELECTOR,
    IS_APPROVED_FOR_ALL_SELECTOR,
    MAX_UINT256,
    SET_APPROVAL_FOR_ALL_SELECTOR,
)
from .errors import ApprovalFailed
from .rpc import RpcClient, TransactionSender
from .variants import ExchangeDeployment

logger = logging.getLogger(__name__)

# Allowances below this count as missing
ALLOWANCE_THRESHOLD = MAX_UINT256 // 2

DEFAULT_SETTLE_SECONDS = 3.0


class ApprovalState(str, Enum):
    UNCHECKED = "unchecked"
    NEEDS_TOKEN = "needs_token"
    NEEDS_OPERATOR = "needs_operator"
    NEEDS_BOTH = "needs_both"
    READY = "ready"


def _state_for(token_ok: bool, operator_ok: bool) -> ApprovalState:
    if token_ok and operator_ok:
        return ApprovalState.READY
    if token_ok:
        return ApprovalState.NEEDS_OPERATOR
    if operator_ok:
        return ApprovalState.NEEDS_TOKEN
    return ApprovalState.NEEDS_BOTH


async def read_allowance(rpc: RpcClient, token: str, owner: str, spender: str) -> int:
    calldata = ALLOWANCE_SELECTOR + encode(["address", "address"], [owner, spender])
    result = await rpc.eth_call(token, calldata)
    return int.from_bytes(result, "big") if result else 0


async def read_operator_approval(rpc: RpcClient, conditional_tokens: str, owner: str, operator: str) -> bool:
    calldata = IS_APPROVED_FOR_ALL_SELECTOR + encode(["address", "address"], [owner, operator])
    result = await rpc.eth_call(conditional_tokens, calldata)
    return int.from_bytes(result, "big") != 0 if result else False


class ApprovalGate:
    """Tracks and completes the two approvals one exchange needs.

    Args:
        rpc: Node client for reads.
        sender: Wallet collaborator for the approval transactions.
        owner: Maker address.
        exchange: Deployment whose exchange is the spender/operator.
        settle_seconds: Fixed wait after sending before re-reading state.
    """

    def __init__(
        self,
        rpc: RpcClient,
        sender: TransactionSender,
        owner: str,
        exchange: ExchangeDeployment,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
    ):
        self._rpc = rpc
        self._sender = sender
        self.owner = owner
        self.exchange = exchange
        self.settle_seconds = settle_seconds
        self.state = ApprovalState.UNCHECKED
        self._token_ok: bool | None = None
        self._operator_ok: bool | None = None

    def __repr__(self) -> str:
        return f"ApprovalGate(exchange={self.exchange.address}, state={self.state.value})"

    @property
    def is_ready(self) -> bool:
        return self.state == ApprovalState.READY

    def _update(self) -> ApprovalState:
        previous = self.state
        if self._token_ok is None or self._operator_ok is None:
            self.state = ApprovalState.UNCHECKED
        else:
            self.state = _state_for(self._token_ok, self._operator_ok)
        if self.state != previous:
            logger.info("Approvals for %s: %s → %s",
                        self.exchange.address, previous.value, self.state.value)
        return self.state

    async def _read_token(self) -> None:
        allowance = await read_allowance(
            self._rpc, self.exchange.collateral, self.owner, self.exchange.address
        )
        self._token_ok = allowance >= ALLOWANCE_THRESHOLD

    async def _read_operator(self) -> None:
        self._operator_ok = await read_operator_approval(
            self._rpc, self.exchange.conditional_tokens, self.owner, self.exchange.address
        )

    async def refresh(self) -> ApprovalState:
        """Read both approvals from chain."""
        await self._read_token()
        await self._read_operator()
        return self._update()

    async def _send(self, to: str, calldata: bytes, label: str) -> str:
        try:
            tx_hash = await self._sender.send_transaction(to, calldata)
        except Exception as exc:
            logger.error("%s failed for %s: %s", label, self.exchange.address, exc)
            raise ApprovalFailed(f"{label} failed: {exc}") from exc
        logger.info("%s sent: %s", label, tx_hash)
        await asyncio.sleep(self.settle_seconds)
        return tx_hash

    async def approve_token(self) -> ApprovalState:
        """Grant the exchange an unlimited collateral allowance."""
        calldata = APPROVE_SELECTOR + encode(["address", "uint256"], [self.exchange.address, MAX_UINT256])
        await self._send(self.exchange.collateral, calldata, "Collateral approve")
        await self._read_token()
        if self._operator_ok is None:
            await self._read_operator()
        return self._update()

    async def approve_operator(self) -> ApprovalState:
        """Approve the exchange as operator of the maker's outcome tokens."""
        calldata = SET_APPROVAL_FOR_ALL_SELECTOR + encode(["address", "bool"], [self.exchange.address, True])
        await self._send(self.exchange.conditional_tokens, calldata, "setApprovalForAll")
        await self._read_operator()
        if self._token_ok is None:
            await self._read_token()
        return self._update()

    async def approve_all(self) -> ApprovalState:
        """Send whichever approvals are missing, token first."""
        if self.state == ApprovalState.UNCHECKED:
            await self.refresh()
        if self.state in (ApprovalState.NEEDS_TOKEN, ApprovalState.NEEDS_BOTH):
            await self.approve_token()
        if self.state in (ApprovalState.NEEDS_OPERATOR, ApprovalState.NEEDS_BOTH):
            await self.approve_operator()
        return self.state

    def require_ready(self) -> None:
        """Raise ApprovalFailed unless both approvals are in place."""
        if self.state != ApprovalState.READY:
            raise ApprovalFailed(
                f"Approvals for {self.exchange.address} not ready (state: {self.state.value})"
            )

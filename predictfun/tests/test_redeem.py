"""Tests for predictfun.redeem — redeemPositions calldata and optimistic cache writes."""

from unittest.mock import AsyncMock

import pytest
from eth_abi import decode

from predictfun.constants import (
    COLLATERAL_TOKENS,
    CONDITIONAL_TOKENS,
    CTF_REDEEM_POSITIONS_SELECTOR,
    IS_APPROVED_FOR_ALL_SELECTOR,
    NEG_RISK_REDEEM_POSITIONS_SELECTOR,
    SET_APPROVAL_FOR_ALL_SELECTOR,
)
from predictfun.errors import InvalidAmount, RedemptionFailed, UnsupportedVariant
from predictfun.redeem import RedeemablePosition, Redeemer, build_redeem_call, position_from_args
from predictfun.storage import MemoryStore, RedemptionCache

_ACCOUNT = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
_ADAPTER = "0x000000000000000000000000000000000000dEaD"
_CONDITION = "0x" + "ab" * 32
_TX = "0x" + "cd" * 32


def _word(value: int) -> bytes:
    return value.to_bytes(32, "big")


def _sender(tx_hash=_TX, error=None):
    sender = AsyncMock()
    sender.address = _ACCOUNT
    if error is not None:
        sender.send_transaction.side_effect = error
    else:
        sender.send_transaction.return_value = tx_hash
    return sender


def _rpc(operator_approved=True):
    rpc = AsyncMock()
    rpc.eth_call.return_value = _word(1 if operator_approved else 0)
    return rpc


def _redeemer(sender=None, rpc=None, cache=None, chain_id=56, adapter=_ADAPTER):
    return Redeemer(
        rpc or _rpc(),
        sender or _sender(),
        chain_id,
        cache or RedemptionCache(MemoryStore()),
        neg_risk_adapter=adapter,
        settle_seconds=0,
    )


class TestBuildRedeemCall:
    def test_standard(self):
        to, calldata = build_redeem_call(56, RedeemablePosition(_CONDITION, 1))
        assert to == CONDITIONAL_TOKENS[56]["standard"]
        assert calldata[:4] == CTF_REDEEM_POSITIONS_SELECTOR
        collateral, parent, condition, index_sets = decode(
            ["address", "bytes32", "bytes32", "uint256[]"], calldata[4:]
        )
        assert collateral.lower() == COLLATERAL_TOKENS[56].lower()
        assert parent == b"\x00" * 32
        assert condition == bytes.fromhex("ab" * 32)
        assert list(index_sets) == [1]

    def test_yield_bearing_uses_its_own_contract(self):
        to, _ = build_redeem_call(56, RedeemablePosition(_CONDITION, 2, is_yield_bearing=True))
        assert to == CONDITIONAL_TOKENS[56]["yield_bearing"]

    def test_neg_risk_amounts(self):
        position = RedeemablePosition(_CONDITION, 2, is_neg_risk=True, amount=7 * 10**18)
        to, calldata = build_redeem_call(56, position, _ADAPTER)
        assert to.lower() == _ADAPTER.lower()
        assert calldata[:4] == NEG_RISK_REDEEM_POSITIONS_SELECTOR
        condition, amounts = decode(["bytes32", "uint256[]"], calldata[4:])
        assert condition == bytes.fromhex("ab" * 32)
        assert list(amounts) == [0, 7 * 10**18]

    @pytest.mark.parametrize("index_set", [0, 3, -1])
    def test_invalid_index_set(self, index_set):
        with pytest.raises(ValueError):
            build_redeem_call(56, RedeemablePosition(_CONDITION, index_set))

    def test_neg_risk_needs_amount(self):
        with pytest.raises(InvalidAmount):
            build_redeem_call(56, RedeemablePosition(_CONDITION, 1, is_neg_risk=True), _ADAPTER)

    def test_neg_risk_needs_adapter(self):
        with pytest.raises(UnsupportedVariant):
            build_redeem_call(56, RedeemablePosition(_CONDITION, 1, is_neg_risk=True, amount=1))

    def test_unknown_chain(self):
        with pytest.raises(UnsupportedVariant):
            build_redeem_call(1, RedeemablePosition(_CONDITION, 1))

    def test_bad_condition_id(self):
        with pytest.raises(ValueError):
            build_redeem_call(56, RedeemablePosition("0x1234", 1))


class TestRedeemablePosition:
    def test_from_api_nested(self):
        position = RedeemablePosition.from_api({
            "market": {"conditionId": _CONDITION, "isNegRisk": True, "isYieldBearing": False,
                       "question": "Will it rain?"},
            "outcome": {"name": "Yes", "indexSet": 1},
            "amount": "5000000000000000000",
        })
        assert position.condition_id == _CONDITION
        assert position.index_set == 1
        assert position.is_neg_risk
        assert position.amount == 5 * 10**18
        assert position.market_title == "Will it rain?"
        assert position.outcome_name == "Yes"

    def test_from_api_flat(self):
        position = RedeemablePosition.from_api({
            "conditionId": _CONDITION, "outcomeIndexSet": 2, "isYieldBearing": True, "amount": "1",
        })
        assert position.index_set == 2
        assert position.is_yield_bearing
        assert not position.is_neg_risk

    def test_position_from_args(self):
        position = position_from_args(_CONDITION, "2", "1.5", is_neg_risk=True)
        assert position.amount == 15 * 10**17
        assert position.index_set == 2


class TestRedeemer:
    @pytest.mark.asyncio
    async def test_success_records_cache(self):
        cache = RedemptionCache(MemoryStore())
        sender = _sender()
        redeemer = _redeemer(sender=sender, cache=cache)
        position = RedeemablePosition(_CONDITION, 1, amount=3 * 10**18, market_title="Rain", outcome_name="Yes")

        tx_hash = await redeemer.redeem(position)

        assert tx_hash == _TX
        sender.send_transaction.assert_awaited_once()
        records = cache.records()
        assert len(records) == 1
        assert records[0]["transactionHash"] == _TX
        assert records[0]["conditionId"] == _CONDITION
        assert records[0]["payout"] == str(3 * 10**18)
        assert records[0]["payoutFormatted"] == "3"
        assert records[0]["blockNumber"] is None
        assert records[0]["marketTitle"] == "Rain"

    @pytest.mark.asyncio
    async def test_send_failure_leaves_cache_untouched(self):
        cache = RedemptionCache(MemoryStore())
        redeemer = _redeemer(sender=_sender(error=RuntimeError("User rejected")), cache=cache)

        with pytest.raises(RedemptionFailed):
            await redeemer.redeem(RedeemablePosition(_CONDITION, 1))
        assert cache.records() == []

    @pytest.mark.asyncio
    async def test_invalid_index_set_sends_nothing(self):
        cache = RedemptionCache(MemoryStore())
        sender = _sender()
        redeemer = _redeemer(sender=sender, cache=cache)

        with pytest.raises(ValueError):
            await redeemer.redeem(RedeemablePosition(_CONDITION, 3))
        sender.send_transaction.assert_not_awaited()
        assert cache.records() == []

    @pytest.mark.asyncio
    async def test_neg_risk_approves_adapter_first(self):
        rpc = _rpc(operator_approved=False)
        sender = _sender()
        redeemer = _redeemer(sender=sender, rpc=rpc)

        await redeemer.redeem(RedeemablePosition(_CONDITION, 1, is_neg_risk=True, amount=10**18))

        assert rpc.eth_call.call_args[0][1][:4] == IS_APPROVED_FOR_ALL_SELECTOR
        calls = sender.send_transaction.call_args_list
        assert len(calls) == 2
        assert calls[0][0][0] == CONDITIONAL_TOKENS[56]["neg_risk"]
        assert calls[0][0][1][:4] == SET_APPROVAL_FOR_ALL_SELECTOR
        assert calls[1][0][1][:4] == NEG_RISK_REDEEM_POSITIONS_SELECTOR

    @pytest.mark.asyncio
    async def test_neg_risk_already_approved(self):
        sender = _sender()
        redeemer = _redeemer(sender=sender, rpc=_rpc(operator_approved=True))
        await redeemer.redeem(RedeemablePosition(_CONDITION, 2, is_neg_risk=True, amount=10**18))
        assert sender.send_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_adapter_approval_failure_not_cached(self):
        cache = RedemptionCache(MemoryStore())
        redeemer = _redeemer(
            sender=_sender(error=RuntimeError("reverted")),
            rpc=_rpc(operator_approved=False),
            cache=cache,
        )
        with pytest.raises(RedemptionFailed):
            await redeemer.redeem(RedeemablePosition(_CONDITION, 1, is_neg_risk=True, amount=10**18))
        assert cache.records() == []

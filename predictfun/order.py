"""Order construction: market metadata + trade intent → canonical unsigned order."""

import secrets
import time
from dataclasses import dataclass, field

from eth_utils import to_checksum_address

from .amounts import Side, compute_amounts, price_per_share_wei
from .constants import SIGNATURE_TYPE_EOA, ZERO_ADDRESS
from .errors import MissingTokenId
from .hashing import build_typed_data, hash_order
from .variants import ExchangeDeployment, resolve_exchange

DEFAULT_ORDER_TTL = 60 * 60  # seconds

_OUTCOME_INDEX = {"YES": 0, "NO": 1}


@dataclass(frozen=True)
class Outcome:
    name: str
    index_set: int = 0
    on_chain_id: str = ""
    status: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> "Outcome":
        return cls(
            name=d.get("name", ""),
            index_set=int(d.get("indexSet") or 0),
            on_chain_id=str(d.get("onChainId") or ""),
            status=d.get("status"),
        )


@dataclass(frozen=True)
class MarketInfo:
    """The slice of an API market record the order engine needs."""

    id: int
    is_neg_risk: bool = False
    is_yield_bearing: bool = False
    fee_rate_bps: int = 0
    outcomes: tuple[Outcome, ...] = ()
    condition_id: str = ""
    title: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "MarketInfo":
        return cls(
            id=int(d["id"]),
            is_neg_risk=bool(d.get("isNegRisk", False)),
            is_yield_bearing=bool(d.get("isYieldBearing", False)),
            fee_rate_bps=int(d.get("feeRateBps") or 0),
            outcomes=tuple(Outcome.from_dict(o) for o in d.get("outcomes") or []),
            condition_id=d.get("conditionId", ""),
            title=d.get("title") or d.get("question", ""),
        )


@dataclass(frozen=True)
class UnsignedOrder:
    salt: int
    maker: str
    signer: str
    taker: str
    token_id: int
    maker_amount: int
    taker_amount: int
    expiration: int
    nonce: int
    fee_rate_bps: int
    side: Side
    signature_type: int = SIGNATURE_TYPE_EOA

    def to_message(self) -> dict:
        """Order fields keyed by their EIP-712 names, 256-bit values as ints."""
        return {
            "salt": self.salt,
            "maker": self.maker,
            "signer": self.signer,
            "taker": self.taker,
            "tokenId": self.token_id,
            "makerAmount": self.maker_amount,
            "takerAmount": self.taker_amount,
            "expiration": self.expiration,
            "nonce": self.nonce,
            "feeRateBps": self.fee_rate_bps,
            "side": int(self.side),
            "signatureType": self.signature_type,
        }

    @classmethod
    def from_message(cls, d: dict) -> "UnsignedOrder":
        return cls(
            salt=int(d["salt"]),
            maker=d["maker"],
            signer=d.get("signer") or d["maker"],
            taker=d.get("taker") or ZERO_ADDRESS,
            token_id=int(d["tokenId"]),
            maker_amount=int(d["makerAmount"]),
            taker_amount=int(d["takerAmount"]),
            expiration=int(d.get("expiration", 0)),
            nonce=int(d.get("nonce", 0)),
            fee_rate_bps=int(d.get("feeRateBps", 0)),
            side=Side.parse(d["side"]),
            signature_type=int(d.get("signatureType", SIGNATURE_TYPE_EOA)),
        )


@dataclass(frozen=True)
class SignedOrder:
    order: UnsignedOrder
    hash: str
    signature: str

    def to_api_dict(self) -> dict:
        """Submission shape: big integers as decimal strings, side/signatureType as ints."""
        o = self.order
        return {
            "hash": self.hash,
            "salt": str(o.salt),
            "maker": o.maker,
            "signer": o.signer,
            "taker": o.taker,
            "tokenId": str(o.token_id),
            "makerAmount": str(o.maker_amount),
            "takerAmount": str(o.taker_amount),
            "expiration": str(o.expiration),
            "nonce": str(o.nonce),
            "feeRateBps": str(o.fee_rate_bps),
            "side": int(o.side),
            "signatureType": o.signature_type,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class PreparedOrder:
    """An unsigned order bound to the exchange deployment that will verify it."""

    order: UnsignedOrder
    exchange: ExchangeDeployment
    price_per_share_wei: int
    market_id: int
    digest: bytes = field(repr=False)

    @property
    def hash(self) -> str:
        return "0x" + self.digest.hex()

    @property
    def typed_data(self) -> dict:
        return build_typed_data(self.exchange.domain, self.order)

    def sign_with(self, signature: str) -> SignedOrder:
        return SignedOrder(order=self.order, hash=self.hash, signature=signature)


def _generate_salt() -> int:
    """Generate a cryptographically random salt."""
    return secrets.randbits(128)


def token_id_for(market: MarketInfo, outcome) -> int:
    """Map YES/NO (or 0/1) to the market's on-chain outcome token id."""
    if isinstance(outcome, str):
        index = _OUTCOME_INDEX.get(outcome.strip().upper())
        if index is None:
            raise ValueError(f"Unknown outcome: {outcome!r}")
        label = outcome.strip().upper()
    else:
        index = int(outcome)
        label = str(index)
    if index < 0:
        raise ValueError(f"Unknown outcome: {outcome!r}")
    if index < len(market.outcomes) and market.outcomes[index].on_chain_id:
        return int(market.outcomes[index].on_chain_id)
    raise MissingTokenId(f"No onChainId found for {label} outcome of market {market.id}")


def build_order(
    market: MarketInfo,
    maker: str,
    side,
    outcome,
    price,
    size,
    nonce: int = 0,
    expiration: int | None = None,
    ttl_seconds: int = DEFAULT_ORDER_TTL,
    fee_rate_bps: int | None = None,
    signer: str | None = None,
    now: float | None = None,
) -> UnsignedOrder:
    """Construct an Order struct ready for EIP-712 hashing.

    Args:
        market: Market metadata (token ids per outcome, fee rate, variant flags).
        maker: Wallet address placing the order.
        side: "BUY" or "SELL".
        outcome: "YES"/"NO" or outcome index.
        price: Price per share as a decimal string in (0, 1).
        size: Number of shares as a decimal string.
        nonce: Exchange nonce (0 unless tracked per signer).
        expiration: Absolute Unix expiry; defaults to now + ttl_seconds.
        fee_rate_bps: Overrides the market's fee rate.
        signer: Signer address (defaults to maker).

    Raises:
        MissingTokenId, InvalidAmount
    """
    side = Side.parse(side)
    token_id = token_id_for(market, outcome)
    maker_amount, taker_amount = compute_amounts(side, price, size)

    if expiration is None:
        expiration = int(now if now is not None else time.time()) + int(ttl_seconds)

    maker = to_checksum_address(maker)
    return UnsignedOrder(
        salt=_generate_salt(),
        maker=maker,
        signer=to_checksum_address(signer) if signer else maker,
        taker=ZERO_ADDRESS,
        token_id=token_id,
        maker_amount=maker_amount,
        taker_amount=taker_amount,
        expiration=int(expiration),
        nonce=int(nonce),
        fee_rate_bps=market.fee_rate_bps if fee_rate_bps is None else int(fee_rate_bps),
        side=side,
        signature_type=SIGNATURE_TYPE_EOA,
    )


def prepare_order(chain_id: int, market: MarketInfo, maker: str, side, outcome, price, size, **kwargs) -> PreparedOrder:
    """Resolve the exchange, build the order and compute its digest.

    All construction errors (UnsupportedVariant, MissingTokenId, InvalidAmount)
    are raised here, before anything is handed to a signer.
    """
    exchange = resolve_exchange(chain_id, market.is_neg_risk, market.is_yield_bearing)
    order = build_order(market, maker, side, outcome, price, size, **kwargs)
    return PreparedOrder(
        order=order,
        exchange=exchange,
        price_per_share_wei=price_per_share_wei(price),
        market_id=market.id,
        digest=hash_order(exchange.domain, order),
    )

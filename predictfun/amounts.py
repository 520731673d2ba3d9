"""Maker/taker amount calculation in 18-decimal fixed point."""

from decimal import ROUND_FLOOR, Decimal, InvalidOperation, localcontext
from enum import IntEnum

from .constants import MAX_UINT256, SIDE_BUY, SIDE_SELL, WEI
from .errors import InvalidAmount

# Enough digits for a uint256 times 10**18 without context rounding
_PRECISION = 160


class Side(IntEnum):
    BUY = SIDE_BUY
    SELL = SIDE_SELL

    @classmethod
    def parse(cls, value) -> "Side":
        """Accept "BUY"/"SELL" (any case), 0/1 or a Side."""
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown side: {value!r}") from None
        return cls(int(value))


def _to_decimal(value, label: str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"{label} is not a decimal number: {value!r}") from None
    if not d.is_finite():
        raise InvalidAmount(f"{label} must be finite: {value!r}")
    return d


def to_wei(value) -> int:
    """Floor ``value`` × 10**18 to an integer. Floats go through ``str()`` first."""
    d = _to_decimal(value, "value")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int((d * WEI).to_integral_value(rounding=ROUND_FLOOR))


def from_wei(amount: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(amount)) / WEI


def price_per_share_wei(price) -> int:
    """Validated price as a wei integer, the ``pricePerShare`` submission field."""
    d = _to_decimal(price, "price")
    if d <= 0 or d >= 1:
        raise InvalidAmount(f"price must be in (0, 1), got {price}")
    wei = to_wei(d)
    if wei == 0:
        raise InvalidAmount(f"price {price} is below 1 wei")
    return wei


def compute_amounts(side, price, size) -> tuple[int, int]:
    """Return ``(maker_amount, taker_amount)`` for a limit order.

    BUY:  maker = floor(price_wei * size_wei / 1e18) collateral, taker = size_wei shares.
    SELL: maker = size_wei shares, taker = floor(price_wei * size_wei / 1e18) collateral.

    Flooring means the implied price never exceeds ``price``.

    Raises InvalidAmount when price is outside (0, 1), size is not positive,
    either is below 1 wei, or the collateral side floors to zero (an order
    with a zero amount could never be filled).
    """
    side = Side.parse(side)
    price_wei = price_per_share_wei(price)

    d_size = _to_decimal(size, "size")
    if d_size <= 0:
        raise InvalidAmount(f"size must be > 0, got {size}")
    size_wei = to_wei(d_size)
    if size_wei == 0:
        raise InvalidAmount(f"size {size} is below 1 wei")

    collateral = price_wei * size_wei // WEI
    if collateral == 0:
        raise InvalidAmount(f"order value rounds to zero (price={price}, size={size})")
    if size_wei > MAX_UINT256 or collateral > MAX_UINT256:
        raise InvalidAmount("amount exceeds uint256")

    if side == Side.BUY:
        return collateral, size_wei
    return size_wei, collateral

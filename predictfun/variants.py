"""Market variant resolution — (chain, isNegRisk, isYieldBearing) → exchange deployment."""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from .constants import (
    COLLATERAL_TOKENS,
    CONDITIONAL_TOKENS,
    EXCHANGES,
    ORDER_DOMAIN_NAME,
    ORDER_DOMAIN_VERSION,
)
from .errors import UnsupportedVariant


class MarketVariant(str, Enum):
    STANDARD = "standard"
    NEG_RISK = "neg_risk"
    YIELD_BEARING = "yield_bearing"
    YIELD_BEARING_NEG_RISK = "yield_bearing_neg_risk"

    @classmethod
    def from_flags(cls, is_neg_risk: bool, is_yield_bearing: bool) -> "MarketVariant":
        if is_yield_bearing:
            return cls.YIELD_BEARING_NEG_RISK if is_neg_risk else cls.YIELD_BEARING
        return cls.NEG_RISK if is_neg_risk else cls.STANDARD


@dataclass(frozen=True)
class ExchangeDeployment:
    """One exchange contract and the contracts it trades against."""

    chain_id: int
    variant: MarketVariant
    address: str
    conditional_tokens: str
    collateral: str

    @property
    def domain(self) -> dict:
        """EIP-712 domain the exchange verifies order signatures against."""
        return {
            "name": ORDER_DOMAIN_NAME,
            "version": ORDER_DOMAIN_VERSION,
            "chainId": self.chain_id,
            "verifyingContract": self.address,
        }


def _build_table() -> MappingProxyType:
    table = {}
    for chain_id, exchanges in EXCHANGES.items():
        for variant in MarketVariant:
            address = exchanges.get(variant.value)
            if address is None:
                continue
            table[(chain_id, variant)] = ExchangeDeployment(
                chain_id=chain_id,
                variant=variant,
                address=address,
                conditional_tokens=CONDITIONAL_TOKENS[chain_id][variant.value],
                collateral=COLLATERAL_TOKENS[chain_id],
            )
    return MappingProxyType(table)


DEPLOYMENTS = _build_table()


def supported_variants(chain_id: int) -> list[MarketVariant]:
    """Variants with a known exchange deployment on ``chain_id``."""
    return [v for v in MarketVariant if (chain_id, v) in DEPLOYMENTS]


def resolve_variant(chain_id: int, variant: MarketVariant) -> ExchangeDeployment:
    if chain_id not in EXCHANGES:
        raise UnsupportedVariant(chain_id)
    try:
        return DEPLOYMENTS[(chain_id, MarketVariant(variant))]
    except (KeyError, ValueError):
        raise UnsupportedVariant(chain_id, str(getattr(variant, "value", variant))) from None


def resolve_exchange(chain_id: int, is_neg_risk: bool, is_yield_bearing: bool) -> ExchangeDeployment:
    """Return the exchange deployment for a market's variant flags.

    Raises UnsupportedVariant when the chain has no such deployment. Never falls
    back to another deployment.
    """
    return resolve_variant(chain_id, MarketVariant.from_flags(is_neg_risk, is_yield_bearing))

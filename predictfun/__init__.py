"""predict.fun order engine — order construction, EIP-712 signing and reconciliation."""

from .approve import ApprovalGate, ApprovalState
from .client import PredictClient
from .order import MarketInfo, SignedOrder, UnsignedOrder, build_order, prepare_order
from .reconcile import OrderReconciler
from .redeem import RedeemablePosition, Redeemer
from .redemptions import RedemptionScanner
from .trading import OrderService
from .variants import MarketVariant, resolve_exchange

__all__ = [
    "ApprovalGate",
    "ApprovalState",
    "MarketInfo",
    "MarketVariant",
    "OrderReconciler",
    "OrderService",
    "PredictClient",
    "RedeemablePosition",
    "Redeemer",
    "RedemptionScanner",
    "SignedOrder",
    "UnsignedOrder",
    "build_order",
    "prepare_order",
    "resolve_exchange",
]

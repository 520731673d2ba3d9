"""Order submission flow: build → hash → approval check → sign → submit → cache."""

import logging
from collections.abc import Callable

from .approve import ApprovalGate, ApprovalState
from .client import PredictClient, build_create_order_request
from .errors import ApprovalFailed
from .order import DEFAULT_ORDER_TTL, MarketInfo, SignedOrder, prepare_order
from .signer import Signer, request_signature
from .storage import OrderHashCache
from .variants import ExchangeDeployment

logger = logging.getLogger(__name__)


class OrderService:
    """Places orders for one signer on one chain.

    Args:
        client: REST client for submission (logged in on first use).
        signer: Signs order typed data and the login message.
        order_cache: Receives the order hash after the API accepts the order.
        chain_id: Chain the orders are bound to.
        gate_factory: Builds the ApprovalGate for an exchange deployment.
        ttl_seconds: Default order lifetime.
        skip_approvals: Submit without reading approval state (approvals
            managed elsewhere). Without it, a missing gate_factory refuses
            every order.
    """

    def __init__(
        self,
        client: PredictClient,
        signer: Signer,
        order_cache: OrderHashCache,
        chain_id: int,
        gate_factory: Callable[[ExchangeDeployment], ApprovalGate] | None = None,
        ttl_seconds: int = DEFAULT_ORDER_TTL,
        skip_approvals: bool = False,
    ):
        self._client = client
        self._signer = signer
        self._cache = order_cache
        self.chain_id = chain_id
        self._gate_factory = gate_factory
        self.ttl_seconds = ttl_seconds
        self.skip_approvals = skip_approvals
        self._gates: dict[str, ApprovalGate] = {}

    def gate_for(self, exchange: ExchangeDeployment) -> ApprovalGate | None:
        if self._gate_factory is None:
            return None
        gate = self._gates.get(exchange.address)
        if gate is None:
            gate = self._gates[exchange.address] = self._gate_factory(exchange)
        return gate

    async def _check_approvals(self, exchange: ExchangeDeployment) -> None:
        if self.skip_approvals:
            return
        gate = self.gate_for(exchange)
        if gate is None:
            raise ApprovalFailed(f"No approval gate for {exchange.address}, approval state unknown")
        if gate.state != ApprovalState.READY:
            await gate.refresh()
        gate.require_ready()

    async def place_order(
        self,
        market: MarketInfo,
        side,
        outcome,
        price,
        size,
        strategy: str = "LIMIT",
        slippage_bps: int | None = None,
        nonce: int = 0,
        expiration: int | None = None,
    ) -> SignedOrder:
        """Build, sign and submit an order.

        Construction errors are raised before the signer is asked for anything.
        The order hash is cached only after the API accepts the order.

        Raises:
            UnsupportedVariant, MissingTokenId, InvalidAmount: bad intent or market data.
            ApprovalFailed: approvals missing for the market's exchange.
            SigningRejected: signer declined.
            SubmissionRejected: API did not accept the order.
        """
        prepared = prepare_order(
            self.chain_id, market, self._signer.address, side, outcome, price, size,
            nonce=nonce, expiration=expiration, ttl_seconds=self.ttl_seconds,
        )
        await self._check_approvals(prepared.exchange)

        signature = await request_signature(self._signer, prepared.typed_data)
        signed = prepared.sign_with(signature)

        if not self._client.is_authenticated:
            await self._client.authenticate(self._signer)

        request = build_create_order_request(signed, prepared.price_per_share_wei, strategy, slippage_bps)
        await self._client.create_order(request)
        logger.info("Order %s accepted (market %s, %s %s @ %s)",
                    signed.hash[:18], market.id, strategy.upper(), size, price)

        self._cache.add(signed.hash, market.id, prepared.price_per_share_wei)
        return signed

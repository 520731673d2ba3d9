"""predict.fun order engine CLI — run with: python3 -m predictfun <command>"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace

from .amounts import compute_amounts
from .approve import ApprovalGate
from .client import PredictClient
from .config import Config
from .order import MarketInfo, prepare_order
from .reconcile import OrderReconciler
from .redeem import Redeemer, position_from_args
from .redemptions import RedemptionScanner
from .rpc import LocalTransactionSender, RpcClient
from .signer import LocalAccountSigner
from .storage import JsonFileStore, OrderHashCache, RedemptionCache
from .trading import OrderService
from .variants import resolve_exchange

logger = logging.getLogger(__name__)


def _load_config(args) -> Config:
    cfg = Config.load(args.config_dir)
    if args.network:
        cfg = replace(cfg, network=args.network)
    if args.private_key:
        cfg.private_key = args.private_key
    return cfg


def _require_key(cfg: Config) -> str:
    if not cfg.private_key:
        print("Error: set PREDICT_PRIVATE_KEY env var or pass --private-key")
        sys.exit(1)
    return cfg.private_key


def _client(cfg: Config) -> PredictClient:
    if cfg.requires_api_key and not cfg.api_key:
        logger.warning("No API key configured for %s (set PREDICT_API_KEY)", cfg.network)
    return PredictClient(
        cfg.api_url,
        api_key=cfg.api_key or None,
        max_retries=cfg.max_retries,
        base_delay=cfg.retry_base_delay,
    )


def _rpc(cfg: Config) -> RpcClient:
    return RpcClient(cfg.node_url, max_retries=cfg.max_retries, base_delay=cfg.retry_base_delay)


def _dump(obj) -> None:
    print(json.dumps(obj, indent=2, default=str))


# -- Commands ----------------------------------------------------------------

def cmd_variant(args, cfg: Config):
    """Show the exchange deployment for a market variant."""
    exchange = resolve_exchange(cfg.chain_id, args.neg_risk, args.yield_bearing)
    _dump({
        "variant": exchange.variant.value,
        "exchange": exchange.address,
        "conditionalTokens": exchange.conditional_tokens,
        "collateral": exchange.collateral,
        "domain": exchange.domain,
    })


def cmd_amounts(args, cfg: Config):
    """Show maker/taker amounts for an intent."""
    maker, taker = compute_amounts(args.side, args.price, args.size)
    _dump({"makerAmount": str(maker), "takerAmount": str(taker)})


async def cmd_hash(args, cfg: Config):
    """Build an order for a market and print its typed data and digest (no submission)."""
    maker = args.maker or LocalAccountSigner(_require_key(cfg)).address
    async with _client(cfg) as client:
        market = MarketInfo.from_dict(await client.get_market(args.market_id))
    prepared = prepare_order(
        cfg.chain_id, market, maker, args.side, args.outcome, args.price, args.size,
        ttl_seconds=cfg.order_ttl_seconds,
    )
    _dump({"hash": prepared.hash, "typedData": prepared.typed_data})


def _gate(cfg: Config, rpc: RpcClient, key: str, exchange) -> ApprovalGate:
    sender = LocalTransactionSender(rpc, key, cfg.chain_id)
    return ApprovalGate(rpc, sender, sender.address, exchange, settle_seconds=cfg.approval_settle_seconds)


async def cmd_approvals(args, cfg: Config):
    """Show (or for `approve`, complete) approvals for a market variant's exchange."""
    key = _require_key(cfg)
    exchange = resolve_exchange(cfg.chain_id, args.neg_risk, args.yield_bearing)
    async with _rpc(cfg) as rpc:
        gate = _gate(cfg, rpc, key, exchange)
        state = await gate.refresh()
        if args.approve:
            state = await gate.approve_all()
    print(f"{exchange.variant.value} ({exchange.address}): {state.value}")


async def cmd_order(args, cfg: Config):
    """Place a limit (or --market) order."""
    key = _require_key(cfg)
    signer = LocalAccountSigner(key)
    cache = OrderHashCache(JsonFileStore(cfg.order_cache_file))
    strategy = "MARKET" if args.market else "LIMIT"
    slippage = args.slippage if args.slippage is not None else cfg.slippage_bps
    async with _client(cfg) as client, _rpc(cfg) as rpc:
        market = MarketInfo.from_dict(await client.get_market(args.market_id))
        service = OrderService(
            client, signer, cache, cfg.chain_id,
            gate_factory=lambda exchange: _gate(cfg, rpc, key, exchange),
            ttl_seconds=cfg.order_ttl_seconds,
        )
        signed = await service.place_order(
            market, args.side, args.outcome, args.price, args.size,
            strategy=strategy,
            slippage_bps=slippage if args.market else None,
        )
    _dump(signed.to_api_dict())


async def cmd_orders(args, cfg: Config):
    """List orders, including cached orders the list endpoint omits."""
    signer = LocalAccountSigner(_require_key(cfg))
    cache = OrderHashCache(JsonFileStore(cfg.order_cache_file))
    async with _client(cfg) as client:
        await client.authenticate(signer)
        reconciler = OrderReconciler(client, cache, batch_size=cfg.lookup_batch_size)
        orders = await reconciler.fetch_and_reconcile()
    if not orders:
        print("No orders.")
        return
    for o in orders:
        side = {0: "BUY", 1: "SELL"}.get(o.side, "?")
        print(f"  {o.hash[:18]}  market={o.market_id}  {side}  {o.strategy}  "
              f"{o.status}  filled={o.amount_filled}  price={o.price_per_share_wei or '?'}")
    print(f"\n{len(orders)} order(s)")


async def cmd_cancel(args, cfg: Config):
    """Remove orders by id."""
    signer = LocalAccountSigner(_require_key(cfg))
    async with _client(cfg) as client:
        await client.authenticate(signer)
        _dump(await client.cancel_orders(args.order_ids))


async def cmd_redemptions(args, cfg: Config):
    """Show redemption history for an account."""
    account = args.account or LocalAccountSigner(_require_key(cfg)).address
    cache = RedemptionCache(JsonFileStore(cfg.redemption_cache_file))
    async with _rpc(cfg) as rpc:
        scanner = RedemptionScanner(
            rpc, cfg.chain_id, cache,
            lookback_days=cfg.lookback_days,
            blocks_per_day=cfg.blocks_per_day,
            max_block_range=cfg.max_block_range,
            extra_adapters=cfg.adapter_addresses,
        )
        events = await scanner.scan(account)
    if not events:
        print("No redemptions.")
        return
    for e in events:
        block = e.block_number if e.block_number is not None else "pending"
        print(f"  {e.tx_hash}  block={block}  payout={e.payout_formatted}  [{e.source}]")
    print(f"\n{len(events)} redemption(s)")


async def cmd_redeem(args, cfg: Config):
    """Redeem a resolved position and record it in the local redemption history."""
    key = _require_key(cfg)
    position = position_from_args(
        args.condition_id, args.index_set, args.amount,
        is_neg_risk=args.neg_risk, is_yield_bearing=args.yield_bearing,
        market_title=args.title or "", outcome_name=args.outcome_name or "",
    )
    adapters = cfg.adapter_addresses
    adapter = args.adapter or (adapters[0] if adapters else None)
    cache = RedemptionCache(JsonFileStore(cfg.redemption_cache_file))
    async with _rpc(cfg) as rpc:
        sender = LocalTransactionSender(rpc, key, cfg.chain_id)
        redeemer = Redeemer(
            rpc, sender, cfg.chain_id, cache,
            neg_risk_adapter=adapter,
            settle_seconds=cfg.approval_settle_seconds,
        )
        tx_hash = await redeemer.redeem(position)
    print(f"Redeemed {position.condition_id} (indexSet {position.index_set}): {tx_hash}")


# -- CLI setup ---------------------------------------------------------------

def _add_variant_flags(p):
    p.add_argument("--neg-risk", action="store_true")
    p.add_argument("--yield-bearing", action="store_true")


def _add_intent(p):
    p.add_argument("market_id")
    p.add_argument("side", choices=["buy", "sell", "BUY", "SELL"])
    p.add_argument("outcome", choices=["yes", "no", "YES", "NO"])
    p.add_argument("price", help="Price per share, e.g. 0.45")
    p.add_argument("size", help="Shares, e.g. 100")


def main():
    parser = argparse.ArgumentParser(
        prog="python3 -m predictfun",
        description="predict.fun order engine",
    )
    parser.add_argument("--private-key", help="Private key (or set PREDICT_PRIVATE_KEY)")
    parser.add_argument("--network", choices=["mainnet", "testnet"])
    parser.add_argument("--config-dir", default=".", help="Directory holding config.json")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("variant", help="Resolve exchange deployment")
    _add_variant_flags(p)
    p.set_defaults(func=cmd_variant)

    p = sub.add_parser("amounts", help="Compute maker/taker amounts")
    p.add_argument("side", choices=["buy", "sell", "BUY", "SELL"])
    p.add_argument("price")
    p.add_argument("size")
    p.set_defaults(func=cmd_amounts)

    p = sub.add_parser("hash", help="Build an order and print its EIP-712 digest")
    _add_intent(p)
    p.add_argument("--maker", help="Maker address (defaults to the key's address)")
    p.set_defaults(func=cmd_hash)

    p = sub.add_parser("approvals", help="Show exchange approval state")
    _add_variant_flags(p)
    p.set_defaults(func=cmd_approvals, approve=False)

    p = sub.add_parser("approve", help="Send missing exchange approvals")
    _add_variant_flags(p)
    p.set_defaults(func=cmd_approvals, approve=True)

    p = sub.add_parser("order", help="Place an order")
    _add_intent(p)
    p.add_argument("--market", action="store_true", help="MARKET strategy instead of LIMIT")
    p.add_argument("--slippage", type=int, default=None, help="Slippage in bps (MARKET only)")
    p.set_defaults(func=cmd_order)

    p = sub.add_parser("orders", help="List reconciled orders")
    p.set_defaults(func=cmd_orders)

    p = sub.add_parser("cancel", help="Remove orders")
    p.add_argument("order_ids", nargs="+")
    p.set_defaults(func=cmd_cancel)

    p = sub.add_parser("redemptions", help="Show redemption history")
    p.add_argument("--account", help="Account address (defaults to the key's address)")
    p.set_defaults(func=cmd_redemptions)

    p = sub.add_parser("redeem", help="Redeem a resolved position")
    p.add_argument("condition_id")
    p.add_argument("index_set", type=int, choices=[1, 2], help="1 = YES, 2 = NO")
    p.add_argument("--amount", help="Shares to redeem (required for --neg-risk)")
    p.add_argument("--adapter", help="NegRiskAdapter address (defaults to the first configured)")
    p.add_argument("--title", help="Market title for the history entry")
    p.add_argument("--outcome-name", help="Outcome name for the history entry")
    _add_variant_flags(p)
    p.set_defaults(func=cmd_redeem)

    args = parser.parse_args()
    cfg = _load_config(args)
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(message)s",
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
    )

    result = args.func(args, cfg)
    if asyncio.iscoroutine(result):
        try:
            asyncio.run(result)
        except KeyboardInterrupt:
            logger.info("Stopped.")


if __name__ == "__main__":
    main()

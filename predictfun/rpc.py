"""Async JSON-RPC client for the BNB chain node, plus a local-key transaction sender."""

import asyncio
import itertools
import logging
import random
from typing import Protocol

import httpx
from eth_account import Account

from .errors import RpcError

logger = logging.getLogger(__name__)

_RETRYABLE_CODES = {429, 500, 502, 503, 504}


def _hex(value: int) -> str:
    return hex(int(value))


def _is_rate_limit(error) -> bool:
    message = str(error.get("message", "") if isinstance(error, dict) else error).lower()
    return "rate limit" in message or "too many requests" in message


class RpcClient:
    """Minimal async Ethereum JSON-RPC client.

    Args:
        url: Node HTTP endpoint.
        timeout: HTTP request timeout in seconds.
        max_retries: Retries on rate limits, transient HTTP errors and timeouts.
        base_delay: Initial backoff delay in seconds.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ):
        self.url = url
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._http = httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"RpcClient(url={self.url})"

    def _backoff(self, attempt: int) -> float:
        return self.base_delay * (2**attempt) * (0.5 + random.random())

    async def call(self, method: str, params: list):
        """Send one JSON-RPC request and return its ``result``."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        for attempt in range(self.max_retries + 1):
            try:
                resp = await self._http.post(self.url, json=payload)
            except httpx.TimeoutException:
                if attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    logger.warning("RPC timeout on %s — retry %d/%d in %.1fs",
                                   method, attempt + 1, self.max_retries, delay)
                    await asyncio.sleep(delay)
                    continue
                raise
            if resp.status_code in _RETRYABLE_CODES and attempt < self.max_retries:
                delay = self._backoff(attempt)
                logger.warning("RPC HTTP %d on %s — retry %d/%d in %.1fs",
                               resp.status_code, method, attempt + 1, self.max_retries, delay)
                await asyncio.sleep(delay)
                continue
            resp.raise_for_status()
            data = resp.json()
            if "error" in data:
                err = data["error"]
                if _is_rate_limit(err) and attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    logger.warning("RPC rate limited on %s — retry in %.1fs", method, delay)
                    await asyncio.sleep(delay)
                    continue
                raise RpcError(err)
            return data["result"]
        raise RpcError(f"All {self.max_retries} retries exhausted for {method}")

    # -- Reads --

    async def chain_id(self) -> int:
        return int(await self.call("eth_chainId", []), 16)

    async def block_number(self) -> int:
        return int(await self.call("eth_blockNumber", []), 16)

    async def eth_call(self, to: str, data: bytes) -> bytes:
        result = await self.call("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])
        return bytes.fromhex(result.removeprefix("0x"))

    async def get_logs(self, address: str, topics: list, from_block: int, to_block: int) -> list[dict]:
        """Logs emitted by ``address`` matching ``topics`` in [from_block, to_block]."""
        return await self.call("eth_getLogs", [{
            "address": address,
            "topics": topics,
            "fromBlock": _hex(from_block),
            "toBlock": _hex(to_block),
        }])

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.call("eth_getTransactionCount", [address, block]), 16)

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def estimate_gas(self, tx: dict) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def base_fee(self) -> int:
        latest = await self.call("eth_getBlockByNumber", ["latest", False])
        return int(latest.get("baseFeePerGas") or "0x0", 16)

    # -- Writes --

    async def send_raw_transaction(self, raw: bytes) -> str:
        return await self.call("eth_sendRawTransaction", ["0x" + raw.hex()])

    # -- Lifecycle --

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


class TransactionSender(Protocol):
    """Wallet collaborator that submits contract writes and returns the tx hash."""

    address: str

    async def send_transaction(self, to: str, data: bytes) -> str:
        ...


class LocalTransactionSender:
    """Build, sign and broadcast EIP-1559 transactions with a local private key.

    Args:
        rpc: Node client used for nonce, gas and broadcast.
        private_key: Hex private key.
        chain_id: Chain the transaction is bound to.
        priority_fee_wei: Max priority fee per gas.
    """

    def __init__(self, rpc: RpcClient, private_key: str, chain_id: int, priority_fee_wei: int = 1_000_000_000):
        self._rpc = rpc
        self._account = Account.from_key(private_key)
        self.address = self._account.address
        self.chain_id = chain_id
        self.priority_fee_wei = priority_fee_wei

    async def send_transaction(self, to: str, data: bytes) -> str:
        nonce = await self._rpc.get_transaction_count(self.address)
        base_fee = await self._rpc.base_fee()
        gas_estimate = await self._rpc.estimate_gas({
            "from": self.address,
            "to": to,
            "data": "0x" + data.hex(),
        })
        tx = {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": to,
            "data": data,
            "gas": gas_estimate + 10_000,
            "maxFeePerGas": base_fee * 2 + self.priority_fee_wei,
            "maxPriorityFeePerGas": self.priority_fee_wei,
            "value": 0,
        }
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._rpc.send_raw_transaction(signed.raw_transaction)
        logger.info("Sent tx %s to %s (nonce %d)", tx_hash, to, nonce)
        return tx_hash

"""Signer collaborator — typed-data and personal-message signatures."""

import logging
from typing import Protocol

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data

from .errors import SigningRejected

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Anything that can sign on behalf of ``address`` (wallet, HSM, local key)."""

    address: str

    async def sign_typed_data(self, request: dict) -> str:
        ...

    async def sign_message(self, message: str) -> str:
        ...


class LocalAccountSigner:
    """Signs with a raw private key held in memory.

    Args:
        private_key: Hex private key (0x-prefixed).
    """

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    def __repr__(self) -> str:
        return f"LocalAccountSigner(address={self.address})"

    async def sign_typed_data(self, request: dict) -> str:
        signable = encode_typed_data(
            domain_data=request["domain"],
            message_types=request["types"],
            message_data=request["message"],
        )
        signed = self._account.sign_message(signable)
        return "0x" + signed.signature.hex()

    async def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + signed.signature.hex()

    def sign_hash(self, digest: bytes) -> str:
        """Sign a precomputed 32-byte digest (no EIP-191 prefixing)."""
        signed = self._account.unsafe_sign_hash(digest)
        return "0x" + signed.signature.hex()


async def request_signature(signer: Signer, request: dict) -> str:
    """Ask ``signer`` for a typed-data signature; any failure becomes SigningRejected."""
    try:
        signature = await signer.sign_typed_data(request)
    except SigningRejected:
        raise
    except Exception as exc:
        logger.warning("Signer %s declined typed-data request: %s", signer.address, exc)
        raise SigningRejected(str(exc) or type(exc).__name__) from exc
    if not signature:
        raise SigningRejected("Signer returned an empty signature")
    return signature

"""Tests for predictfun.signer — local signer and signature requests."""

from unittest.mock import AsyncMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from predictfun.errors import SigningRejected
from predictfun.signer import LocalAccountSigner, request_signature

_TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


class TestLocalAccountSigner:
    def test_address(self):
        assert LocalAccountSigner(_TEST_KEY).address == Account.from_key(_TEST_KEY).address

    @pytest.mark.asyncio
    async def test_sign_message_recovers(self):
        signer = LocalAccountSigner(_TEST_KEY)
        signature = await signer.sign_message("Sign in to predict.fun")
        recovered = Account.recover_message(
            encode_defunct(text="Sign in to predict.fun"), signature=signature
        )
        assert recovered == signer.address

    def test_sign_hash_format(self):
        signature = LocalAccountSigner(_TEST_KEY).sign_hash(b"\x01" * 32)
        assert signature.startswith("0x")
        assert len(signature) == 2 + 130


class TestRequestSignature:
    @pytest.mark.asyncio
    async def test_passes_through(self):
        signer = AsyncMock()
        signer.address = "0xabc"
        signer.sign_typed_data.return_value = "0xsig"
        assert await request_signature(signer, {"message": {}}) == "0xsig"

    @pytest.mark.asyncio
    async def test_wraps_failure(self):
        signer = AsyncMock()
        signer.address = "0xabc"
        signer.sign_typed_data.side_effect = RuntimeError("User denied message signature")
        with pytest.raises(SigningRejected, match="denied"):
            await request_signature(signer, {})

    @pytest.mark.asyncio
    async def test_empty_signature(self):
        signer = AsyncMock()
        signer.address = "0xabc"
        signer.sign_typed_data.return_value = ""
        with pytest.raises(SigningRejected):
            await request_signature(signer, {})

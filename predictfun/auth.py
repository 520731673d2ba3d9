"""predict.fun API authentication — API key header + wallet-signed JWT login."""

import logging

from .constants import AUTH_MESSAGE_PATH, AUTH_PATH
from .signer import Signer

logger = logging.getLogger(__name__)


def build_auth_headers(api_key: str | None = None, jwt: str | None = None) -> dict:
    """Headers for an API request: ``x-api-key`` (mainnet) and bearer JWT when logged in."""
    headers = {}
    if api_key:
        headers["x-api-key"] = api_key
    if jwt:
        headers["Authorization"] = f"Bearer {jwt}"
    return headers


def _unwrap(resp: dict, key: str) -> str | None:
    data = resp.get("data") if isinstance(resp, dict) else None
    if isinstance(data, dict) and data.get(key):
        return data[key]
    return resp.get(key) if isinstance(resp, dict) else None


async def login(client, signer: Signer) -> str:
    """Obtain a JWT: fetch the login message, sign it, exchange the signature.

    ``client`` is a PredictClient; returns the token.
    """
    resp = await client._request("GET", f"{AUTH_MESSAGE_PATH}?address={signer.address}", auth=False)
    message = _unwrap(resp, "message")
    if not message:
        raise RuntimeError(f"Invalid auth message response: {resp}")

    signature = await signer.sign_message(message)

    resp = await client._request(
        "POST",
        AUTH_PATH,
        body={"signer": signer.address, "message": message, "signature": signature},
        auth=False,
    )
    token = _unwrap(resp, "token")
    if not token:
        raise RuntimeError(f"Invalid JWT response: {resp}")
    logger.info("Authenticated %s", signer.address)
    return token

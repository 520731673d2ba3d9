"""Exceptions raised by the order engine."""


class PredictError(Exception):
    """Base class for all predictfun errors."""


class UnsupportedVariant(PredictError):
    """No exchange deployment exists for the requested chain/variant pair."""

    def __init__(self, chain_id: int, variant: str | None = None):
        self.chain_id = chain_id
        self.variant = variant
        if variant is None:
            msg = f"Unsupported chain id {chain_id}"
        else:
            msg = f"No {variant} deployment on chain {chain_id}"
        super().__init__(msg)


class InvalidAmount(PredictError):
    """Price or size outside its valid domain."""


class MissingTokenId(PredictError):
    """Market metadata has no on-chain token id for the requested outcome."""


class ApprovalFailed(PredictError):
    """An approval transaction failed, reverted or was rejected."""


class SigningRejected(PredictError):
    """The signer declined or failed to sign."""


class SubmissionRejected(PredictError):
    """The order API did not accept a submitted order.

    ``payload`` holds the response body exactly as returned.
    """

    def __init__(self, message: str, payload=None, status_code: int | None = None):
        super().__init__(message)
        self.payload = payload
        self.status_code = status_code


class PartialScanFailure(PredictError):
    """A log query for one contract/block range failed."""

    def __init__(self, address: str, from_block: int, to_block: int, cause: Exception):
        self.address = address
        self.from_block = from_block
        self.to_block = to_block
        self.cause = cause
        super().__init__(
            f"getLogs failed for {address} blocks {from_block}-{to_block}: {cause}"
        )


class RpcError(PredictError):
    """JSON-RPC node returned an error object."""

    def __init__(self, error):
        self.error = error
        super().__init__(f"RPC error: {error}")


class RedemptionFailed(PredictError):
    """A redeemPositions transaction (or its operator approval) failed or was rejected."""

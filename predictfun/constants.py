"""predict.fun constants — networks, contract addresses, EIP-712 types, event signatures."""

from eth_utils import keccak, to_checksum_address

# Chains (BNB Smart Chain)
MAINNET_CHAIN_ID = 56
TESTNET_CHAIN_ID = 97

NETWORKS = {
    "mainnet": {
        "chain_id": MAINNET_CHAIN_ID,
        "name": "BNB Mainnet",
        "api_url": "https://api.predict.fun",
        "rpc_url": "https://bsc-dataseed.binance.org",
        "requires_api_key": True,
    },
    "testnet": {
        "chain_id": TESTNET_CHAIN_ID,
        "name": "BNB Testnet",
        "api_url": "https://api-testnet.predict.fun",
        "rpc_url": "https://data-seed-prebsc-1-s1.binance.org:8545",
        "requires_api_key": False,
    },
}

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2**256 - 1

# Collateral is 18-decimal on both chains
COLLATERAL_DECIMALS = 18
WEI = 10**COLLATERAL_DECIMALS

# Exchange deployments, one per market variant. Keys match MarketVariant values.
EXCHANGES = {
    MAINNET_CHAIN_ID: {
        "standard": to_checksum_address("0x8BC070BEdAB741406F4B1Eb65A72bee27894B689"),
        "neg_risk": to_checksum_address("0x365fb81bd4A24D6303cd2F19c349dE6894D8d58A"),
        "yield_bearing": to_checksum_address("0x6bEb5a40C032AFc305961162d8204CDA16DECFa5"),
        "yield_bearing_neg_risk": to_checksum_address("0x8A289d458f5a134bA40015085A8F50Ffb681B41d"),
    },
    TESTNET_CHAIN_ID: {
        "standard": to_checksum_address("0x2A6413639BD3d73a20ed8C95F634Ce198ABbd2d7"),
        "yield_bearing": to_checksum_address("0x8a6B4Fa700A1e310b106E7a48bAFa29111f66e89"),
    },
}

# ERC-1155 ConditionalTokens contract holding the outcome shares of each variant.
# Standard and neg-risk markets share one contract.
CONDITIONAL_TOKENS = {
    MAINNET_CHAIN_ID: {
        "standard": to_checksum_address("0x22DA1810B194ca018378464a58f6Ac2B10C9d244"),
        "neg_risk": to_checksum_address("0x22DA1810B194ca018378464a58f6Ac2B10C9d244"),
        "yield_bearing": to_checksum_address("0x9400F8Ad57e9e0F352345935d6D3175975eb1d9F"),
        "yield_bearing_neg_risk": to_checksum_address("0xF64b0b318AAf83BD9071110af24D24445719A07F"),
    },
    TESTNET_CHAIN_ID: {
        "standard": to_checksum_address("0x2827AAef52D71910E8FBad2FfeBC1B6C2DA37743"),
        "neg_risk": to_checksum_address("0x2827AAef52D71910E8FBad2FfeBC1B6C2DA37743"),
        "yield_bearing": to_checksum_address("0x38BF1cbD66d174bb5F3037d7068E708861D68D7f"),
        "yield_bearing_neg_risk": to_checksum_address("0x26e865CbaAe99b62fbF9D18B55c25B5E079A93D5"),
    },
}

# ERC-20 collateral (BSC-USD). The same address is approved on both chains.
COLLATERAL_TOKENS = {
    MAINNET_CHAIN_ID: to_checksum_address("0x55d398326f99059fF775485246999027B3197955"),
    TESTNET_CHAIN_ID: to_checksum_address("0x55d398326f99059fF775485246999027B3197955"),
}

# Neg-risk adapters emitting their own PayoutRedemption shape. None are
# published for these chains; extra addresses come from Config.neg_risk_adapters.
NEG_RISK_ADAPTERS: dict[int, tuple[str, ...]] = {
    MAINNET_CHAIN_ID: (),
    TESTNET_CHAIN_ID: (),
}

# EIP-712 domain
ORDER_DOMAIN_NAME = "predict.fun CTF Exchange"
ORDER_DOMAIN_VERSION = "1"

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# EIP-712 Order type (12 fields, salt type may be overridden per deployment)
ORDER_FIELDS = [
    ("salt", "uint256"),
    ("maker", "address"),
    ("signer", "address"),
    ("taker", "address"),
    ("tokenId", "uint256"),
    ("makerAmount", "uint256"),
    ("takerAmount", "uint256"),
    ("expiration", "uint256"),
    ("nonce", "uint256"),
    ("feeRateBps", "uint256"),
    ("side", "uint8"),
    ("signatureType", "uint8"),
]

# Side encoding for the Order struct
SIDE_BUY = 0
SIDE_SELL = 1

# Signature type: EOA = 0, the only scheme the deployed exchanges accept
SIGNATURE_TYPE_EOA = 0

# Function selectors
APPROVE_SELECTOR = keccak(b"approve(address,uint256)")[:4]
ALLOWANCE_SELECTOR = keccak(b"allowance(address,address)")[:4]
SET_APPROVAL_FOR_ALL_SELECTOR = keccak(b"setApprovalForAll(address,bool)")[:4]
IS_APPROVED_FOR_ALL_SELECTOR = keccak(b"isApprovedForAll(address,address)")[:4]
CTF_REDEEM_POSITIONS_SELECTOR = keccak(b"redeemPositions(address,bytes32,bytes32,uint256[])")[:4]
NEG_RISK_REDEEM_POSITIONS_SELECTOR = keccak(b"redeemPositions(bytes32,uint256[])")[:4]

# PayoutRedemption events (topic0)
CTF_PAYOUT_REDEMPTION_TOPIC = keccak(
    b"PayoutRedemption(address,address,bytes32,bytes32,uint256[],uint256)"
)
NEG_RISK_PAYOUT_REDEMPTION_TOPIC = keccak(
    b"PayoutRedemption(address,bytes32,uint256[],uint256)"
)

# REST endpoints
AUTH_MESSAGE_PATH = "/v1/auth/message"
AUTH_PATH = "/v1/auth"
ACCOUNT_PATH = "/v1/account"
ORDERS_PATH = "/v1/orders"
ORDERS_REMOVE_PATH = "/v1/orders/remove"
MARKETS_PATH = "/v1/markets"
POSITIONS_PATH = "/v1/positions"

# Local cache keys and capacities
ORDER_CACHE_KEY = "predict_order_hashes"
ORDER_CACHE_CAP = 100
REDEMPTION_CACHE_KEY = "predict_redemptions"
REDEMPTION_CACHE_CAP = 50

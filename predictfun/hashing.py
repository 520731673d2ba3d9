"""EIP-712 typed-data hashing for exchange orders.

The digest is what the exchange contract recomputes on-chain when it verifies
a signature, so every byte matters:

    digest = keccak256(0x19 0x01 ‖ domainSeparator ‖ structHash)

    domainSeparator = keccak256(abi.encode(
        EIP712Domain typehash, keccak(name), keccak(version), chainId, verifyingContract))

    structHash = keccak256(abi.encode(Order typehash, salt, maker, ..., signatureType))

``salt`` is ``uint256`` on the current deployments. Older exchange builds typed
it ``bytes32``; pass ``salt_type="bytes32"`` to hash for those.
"""

from collections.abc import Mapping

from eth_abi import encode
from eth_utils import keccak

from .constants import EIP712_DOMAIN_FIELDS, ORDER_FIELDS

SALT_TYPES = ("uint256", "bytes32")

_DOMAIN_TYPE_STRING = "EIP712Domain({})".format(
    ",".join(f"{f['type']} {f['name']}" for f in EIP712_DOMAIN_FIELDS)
)
_DOMAIN_TYPE_HASH = keccak(text=_DOMAIN_TYPE_STRING)


def _order_fields(salt_type: str) -> list[tuple[str, str]]:
    if salt_type not in SALT_TYPES:
        raise ValueError(f"Unsupported salt type: {salt_type}")
    return [(name, salt_type if name == "salt" else typ) for name, typ in ORDER_FIELDS]


def order_type_string(salt_type: str = "uint256") -> str:
    """``Order(uint256 salt,address maker,...,uint8 signatureType)``"""
    body = ",".join(f"{typ} {name}" for name, typ in _order_fields(salt_type))
    return f"Order({body})"


def order_type_hash(salt_type: str = "uint256") -> bytes:
    return keccak(text=order_type_string(salt_type))


def _message(order) -> dict:
    if isinstance(order, Mapping):
        return dict(order)
    return order.to_message()


def _salt_bytes32(salt) -> bytes:
    if isinstance(salt, (bytes, bytearray)):
        if len(salt) != 32:
            raise ValueError("bytes32 salt must be 32 bytes")
        return bytes(salt)
    if isinstance(salt, str) and salt.startswith("0x"):
        return bytes.fromhex(salt[2:].rjust(64, "0"))
    return int(salt).to_bytes(32, "big")


def domain_separator(domain: Mapping) -> bytes:
    """Compute the EIP-712 domain separator."""
    return keccak(
        encode(
            ["bytes32", "bytes32", "bytes32", "uint256", "address"],
            [
                _DOMAIN_TYPE_HASH,
                keccak(text=domain["name"]),
                keccak(text=domain["version"]),
                int(domain["chainId"]),
                domain["verifyingContract"],
            ],
        )
    )


def struct_hash(order, salt_type: str = "uint256") -> bytes:
    """Compute the EIP-712 struct hash for an Order."""
    msg = _message(order)
    fields = _order_fields(salt_type)
    values = []
    for name, typ in fields:
        value = msg[name]
        if typ == "bytes32":
            value = _salt_bytes32(value)
        elif typ != "address":
            value = int(value)
        values.append(value)
    return keccak(
        encode(
            ["bytes32"] + [typ for _, typ in fields],
            [order_type_hash(salt_type)] + values,
        )
    )


def hash_order(domain: Mapping, order, salt_type: str = "uint256") -> bytes:
    """Return the 32-byte digest the signer signs and the exchange verifies."""
    return keccak(b"\x19\x01" + domain_separator(domain) + struct_hash(order, salt_type))


def order_hash_hex(domain: Mapping, order, salt_type: str = "uint256") -> str:
    return "0x" + hash_order(domain, order, salt_type).hex()


def build_typed_data(domain: Mapping, order, salt_type: str = "uint256") -> dict:
    """Signing request for the wallet: domain, Order type, primaryType, message."""
    msg = _message(order)
    if salt_type == "bytes32":
        msg["salt"] = _salt_bytes32(msg["salt"])
    return {
        "domain": dict(domain),
        "types": {
            "Order": [{"name": name, "type": typ} for name, typ in _order_fields(salt_type)],
        },
        "primaryType": "Order",
        "message": msg,
    }

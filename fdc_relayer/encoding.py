"""
Hex and bytes32 helpers shared by the pipeline stages.
"""

import re

from web3 import Web3

from .errors import InvalidInput

ZERO_ADDRESS = "0x" + "00" * 20
ZERO_HASH = "0x" + "00" * 32

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEX_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")


def to_bytes32_string(text: str) -> str:
    """
    Encode a short UTF-8 tag as a right-zero-padded bytes32 hex string.

    >>> to_bytes32_string("testETH")[:16]
    '0x74657374455448'
    """
    raw = text.encode("utf-8")
    if len(raw) > 32:
        raise InvalidInput(f"String too long for bytes32: {text}")
    return "0x" + raw.hex().ljust(64, "0")


def is_tx_hash(value: str) -> bool:
    """Check for 0x followed by 64 hex characters."""
    return bool(_TX_HASH_RE.match(value or ""))


def normalize_tx_hash(value: str) -> str:
    """Validate and lowercase a 32-byte transaction hash."""
    if not isinstance(value, str) or not is_tx_hash(value):
        raise InvalidInput(
            "Invalid transaction hash: must be 0x followed by 64 hex characters",
            expected="0x + 64 hex chars",
            actual=value,
        )
    return value.lower()


def normalize_hex(value: str) -> str:
    """Lowercase an even-length 0x-prefixed hex string."""
    if not isinstance(value, str) or not _HEX_RE.match(value):
        raise ValueError(f"not a 0x-prefixed even-length hex string: {value!r}")
    return value.lower()


def hex_to_bytes(value: str) -> bytes:
    """Convert 0x-hex to bytes."""
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def bytes_to_hex(value: bytes) -> str:
    """Convert bytes to lowercase 0x-hex."""
    return "0x" + bytes(value).hex()


def to_checksum(address: str) -> str:
    """Checksum an address, raising ValueError for malformed input."""
    if not Web3.is_address(address):
        raise ValueError(f"not an address: {address!r}")
    return Web3.to_checksum_address(address)

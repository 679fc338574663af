"""
Address and transaction hash validation.

Pure helpers, no provider access. Checksum rules follow EIP-55: an all-lower or
all-upper hex address is accepted as-is, a mixed-case address must match its
checksum encoding exactly.
"""
from __future__ import annotations

import re
from typing import Any, Optional

from eth_utils import is_checksum_address, is_hex_address, to_checksum_address

from .exceptions import InvalidAddress, InvalidHash

_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class AddressCodec:
    """Validates and normalizes chain addresses."""

    @staticmethod
    def is_valid_format(address: Any) -> bool:
        """Check basic shape: 0x followed by 40 hex characters."""
        return isinstance(address, str) and bool(_HEX_ADDRESS_RE.match(address))

    @staticmethod
    def is_valid_address(address: Any) -> bool:
        """Check shape and, for mixed-case input, the EIP-55 checksum."""
        if not AddressCodec.is_valid_format(address):
            return False
        body = address[2:]
        if body == body.lower() or body == body.upper():
            return is_hex_address(address)
        return is_checksum_address(address)

    @staticmethod
    def is_checksum_valid(address: Any) -> bool:
        """Strict check: the address must be in canonical checksum form."""
        return AddressCodec.is_valid_format(address) and is_checksum_address(address)

    @staticmethod
    def to_checksum(address: Any, field: Optional[str] = None) -> str:
        """Normalize to checksum form, raising InvalidAddress when malformed."""
        if not AddressCodec.is_valid_address(address):
            raise InvalidAddress(address, field=field)
        return to_checksum_address(address)

    @staticmethod
    def get_checksum_address(address: Any) -> Optional[str]:
        """Normalize to checksum form, or None when malformed."""
        try:
            return AddressCodec.to_checksum(address)
        except InvalidAddress:
            return None

    @staticmethod
    def compare(a: Any, b: Any) -> bool:
        """Case-insensitive address equality; malformed input never matches."""
        left = AddressCodec.get_checksum_address(a)
        right = AddressCodec.get_checksum_address(b)
        return left is not None and left == right

    @staticmethod
    def format_address(address: Any, prefix_length: int = 6, suffix_length: int = 4) -> str:
        """Shorten an address for display, e.g. 0x1234...abcd."""
        if not address or not isinstance(address, str):
            return ""
        if not AddressCodec.is_valid_address(address):
            return address
        return f"{address[:prefix_length]}...{address[-suffix_length:]}"

    @staticmethod
    def is_valid_tx_hash(tx_hash: Any) -> bool:
        """Check that the value is a 32-byte 0x-prefixed hex string."""
        return isinstance(tx_hash, str) and bool(_TX_HASH_RE.match(tx_hash))

    @staticmethod
    def require_tx_hash(tx_hash: Any) -> str:
        """Return the hash lower-cased, raising InvalidHash when malformed."""
        if not AddressCodec.is_valid_tx_hash(tx_hash):
            raise InvalidHash(tx_hash)
        return tx_hash.lower()

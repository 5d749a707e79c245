"""Address and handle helpers.

Addresses are EIP-55 checksummed hex strings. The native coin is modelled
as the reserved zero-address asset id. Handles are keyed in the escrow
ledger by their keccak-256 digest so the primary index never stores
variable-length strings.
"""

from __future__ import annotations

from typing import Optional

from eth_account import Account
from web3 import Web3

from handlepay.errors import InvalidAddress, InvalidHandle

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_ASSET = ZERO_ADDRESS


def normalize_address(value: str, allow_zero: bool = False) -> str:
    """Return the checksummed form of ``value``.

    Raises InvalidAddress for malformed input, and for the zero address
    unless ``allow_zero`` is set.
    """
    if not isinstance(value, str) or not Web3.is_address(value):
        raise InvalidAddress(f"Malformed address: {value!r}")
    checksummed = Web3.to_checksum_address(value)
    if checksummed == ZERO_ADDRESS and not allow_zero:
        raise InvalidAddress("Zero address is not a valid recipient")
    return checksummed


def normalize_asset(asset: Optional[str]) -> str:
    """Asset ids are addresses; ``None`` means the native coin."""
    if asset is None:
        return NATIVE_ASSET
    return normalize_address(asset, allow_zero=True)


def is_native(asset: str) -> bool:
    return asset == NATIVE_ASSET


def require_handle(handle: str) -> str:
    if not isinstance(handle, str) or not handle:
        raise InvalidHandle(f"Handle must be a non-empty string, got {handle!r}")
    return handle


def handle_hash(handle: str) -> str:
    """0x-prefixed keccak-256 of the UTF-8 encoded handle."""
    require_handle(handle)
    return Web3.to_hex(Web3.keccak(text=handle))


def new_address() -> str:
    """Fresh random externally-owned account address."""
    return Account.create().address

"""Fee arithmetic — integer-only, basis points, floor rounding.

All amounts are non-negative Python ints bounded by uint256. No floats
and no Decimal: every value is an indivisible base unit of its asset.

Rounding rule: fees and shares always round DOWN. For a batch of direct
payouts the per-recipient nets are floored independently, so their sum
may fall short of (total - fee) by at most one unit per recipient.
"""

from __future__ import annotations

from typing import Iterable

from handlepay.errors import InvalidAmount, InvalidFeeRate

BPS_DENOMINATOR = 10_000
UINT256_MAX = 2**256 - 1


def _require_int(value: int, label: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount(f"{label} must be an int, got {type(value).__name__}")
    return value


def require_positive(amount: int) -> int:
    """Return ``amount`` if it is a positive uint256, else raise InvalidAmount."""
    _require_int(amount, "Amount")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    if amount > UINT256_MAX:
        raise InvalidAmount(f"Amount exceeds uint256: {amount}")
    return amount


def checked_sum(amounts: Iterable[int]) -> int:
    """Sum amounts, rejecting negatives and uint256 overflow."""
    total = 0
    for amount in amounts:
        _require_int(amount, "Amount")
        if amount < 0:
            raise InvalidAmount(f"Amount must be non-negative, got {amount}")
        total += amount
        if total > UINT256_MAX:
            raise InvalidAmount("Amount total overflows uint256")
    return total


def validate_rate(rate_bps: int, ceiling_bps: int = BPS_DENOMINATOR) -> int:
    """Return ``rate_bps`` if it lies in [0, ceiling_bps]."""
    if not isinstance(rate_bps, int) or isinstance(rate_bps, bool):
        raise InvalidFeeRate(f"Fee rate must be an int, got {type(rate_bps).__name__}")
    if not 0 <= rate_bps <= ceiling_bps:
        raise InvalidFeeRate(
            f"Fee rate {rate_bps} bps outside allowed range [0, {ceiling_bps}]"
        )
    return rate_bps


def compute_fee(amount: int, rate_bps: int) -> int:
    """floor(amount * rate / 10000)."""
    return amount * rate_bps // BPS_DENOMINATOR


def net_of_fee(amount: int, rate_bps: int) -> int:
    """amount minus its floored fee. Never loses a unit to rounding."""
    return amount - compute_fee(amount, rate_bps)


def net_by_rate(amount: int, rate_bps: int) -> int:
    """floor(amount * (10000 - rate) / 10000), the per-recipient batch net."""
    return amount * (BPS_DENOMINATOR - rate_bps) // BPS_DENOMINATOR


def split_shares(balance: int, share_bps: int) -> int:
    """floor(balance * share / 10000)."""
    return balance * share_bps // BPS_DENOMINATOR

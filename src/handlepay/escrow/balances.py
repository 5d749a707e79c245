"""Balance table keyed by (handle hash, asset id).

Entries are created implicitly by the first credit and zeroed, never
deleted, by a drain. Absence and zero both mean "nothing held".
"""

from __future__ import annotations

from typing import Any, Dict

from handlepay.errors import InvalidAmount
from handlepay.fees import UINT256_MAX


class BalanceTable:
    """Mapping handle_hash -> {asset -> amount}."""

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, int]] = {}

    def get(self, key: str, asset: str) -> int:
        return self._entries.get(key, {}).get(asset, 0)

    def credit(self, key: str, asset: str, amount: int) -> int:
        """Add ``amount`` to the entry and return the new balance."""
        if amount <= 0:
            raise InvalidAmount(f"Credit must be positive, got {amount}")
        balances = self._entries.setdefault(key, {})
        new_balance = balances.get(asset, 0) + amount
        if new_balance > UINT256_MAX:
            raise InvalidAmount("Balance overflows uint256")
        balances[asset] = new_balance
        return new_balance

    def drain(self, key: str, asset: str) -> int:
        """Zero the entry and return what it held."""
        balances = self._entries.get(key)
        if not balances:
            return 0
        amount = balances.get(asset, 0)
        if amount:
            balances[asset] = 0
        return amount

    def total(self, asset: str) -> int:
        return sum(b.get(asset, 0) for b in self._entries.values())

    def funded_assets(self, key: str) -> list[str]:
        return sorted(a for a, v in self._entries.get(key, {}).items() if v > 0)

    def snapshot(self) -> Any:
        return {k: dict(v) for k, v in self._entries.items()}

    def restore(self, state: Any) -> None:
        self._entries = {k: dict(v) for k, v in state.items()}

    def to_dict(self) -> dict:
        return {
            key: {asset: str(amount) for asset, amount in sorted(assets.items())}
            for key, assets in sorted(self._entries.items())
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BalanceTable":
        table = cls()
        table._entries = {
            key: {asset: int(amount) for asset, amount in assets.items()}
            for key, assets in data.items()
        }
        return table

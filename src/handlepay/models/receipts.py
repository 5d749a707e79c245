"""Receipts — immutable summaries of completed value movements.

All amounts are integer base units of ``asset``.

Invariants:
- TransferReceipt: net + fee == amount
- WithdrawalReceipt: net + fee == gross
- BatchReceipt: vault_total + sum(payout.net) + fee + dust == total
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional, Tuple


@dataclass(frozen=True)
class TransferReceipt:
    """Outcome of a single handle-addressed transfer.

    ``recipient`` is None when the handle was unregistered and the full
    amount went to escrow.
    """
    sender: str
    handle: str
    asset: str
    amount: int
    net: int
    fee: int
    recipient: Optional[str] = None

    @property
    def escrowed(self) -> bool:
        return self.recipient is None

    def to_dict(self) -> dict[str, Any]:
        data = {k: str(v) if isinstance(v, int) else v for k, v in asdict(self).items()}
        data["escrowed"] = self.escrowed
        return data


@dataclass(frozen=True)
class DirectPayout:
    recipient: str
    amount: int
    net: int


@dataclass(frozen=True)
class BatchReceipt:
    """Outcome of a batch transfer.

    ``fee`` is floor(direct_total * rate / 10000). ``dust`` is what the
    independently floored per-recipient nets leave over on top of the fee;
    both are retained in the dispatcher's fee pool.
    """
    sender: str
    asset: str
    total: int
    vault_total: int
    direct_total: int
    fee: int
    dust: int
    escrowed_handles: Tuple[str, ...]
    payouts: Tuple[DirectPayout, ...]

    @property
    def paid_out(self) -> int:
        return sum(p.net for p in self.payouts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sender": self.sender,
            "asset": self.asset,
            "total": str(self.total),
            "vault_total": str(self.vault_total),
            "direct_total": str(self.direct_total),
            "fee": str(self.fee),
            "dust": str(self.dust),
            "escrowed_handles": list(self.escrowed_handles),
            "payouts": [
                {"recipient": p.recipient, "amount": str(p.amount), "net": str(p.net)}
                for p in self.payouts
            ],
        }


@dataclass(frozen=True)
class WithdrawalReceipt:
    handle: str
    handle_hash: str
    recipient: str
    asset: str
    gross: int
    net: int
    fee: int

    def to_dict(self) -> dict[str, Any]:
        return {k: str(v) if isinstance(v, int) else v for k, v in asdict(self).items()}

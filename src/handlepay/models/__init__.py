"""Result models returned by protocol operations."""

from handlepay.models.receipts import (
    BatchReceipt,
    DirectPayout,
    TransferReceipt,
    WithdrawalReceipt,
)

__all__ = [
    "BatchReceipt",
    "DirectPayout",
    "TransferReceipt",
    "WithdrawalReceipt",
]

"""Escrow ledger — balances held for handles not yet bound to an address."""

from handlepay.escrow.balances import BalanceTable
from handlepay.escrow.ledger import MAX_LEDGER_FEE_BPS, EscrowLedger

__all__ = ["BalanceTable", "EscrowLedger", "MAX_LEDGER_FEE_BPS"]

"""Escrow ledger — per-handle, per-asset balances awaiting a claim.

Funds sent to a handle that is not yet bound to an address are parked
here, fee-free, keyed by the keccak-256 hash of the handle. Once the
handle is registered, its owner withdraws the whole entry at once and the
ledger keeps its own withdrawal fee in a per-asset pool.

Invariants:
- deposit credits exactly ``amount`` to exactly one entry
- withdraw zeroes the entry BEFORE the payout leaves custody, so a
  reentrant withdrawal finds nothing (and is also blocked by the guard)
- payout == floor(balance * (10000 - rate) / 10000), fee == balance - payout
- total_escrowed(asset) + accumulated_fee(asset) <= held(asset)

Deposits are public: anyone may push funds to any handle. Withdrawal is
gated on the identity lookup's answer at the moment of the call.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Sequence

from handlepay.addresses import (
    NATIVE_ASSET,
    handle_hash,
    normalize_address,
    normalize_asset,
    require_handle,
)
from handlepay.assets.rail import AssetRail, check_attached_value, collect, deliver
from handlepay.collector import FeeCollector
from handlepay.errors import (
    EmptyBatch,
    LengthMismatch,
    NothingToWithdraw,
    Unauthorized,
)
from handlepay.escrow.balances import BalanceTable
from handlepay.fees import checked_sum, compute_fee, require_positive
from handlepay.identity.registry import IdentityLookup
from handlepay.models.receipts import WithdrawalReceipt
from handlepay.persistence.event_log import EventKind
from handlepay.runtime.atomic import Runtime

logger = logging.getLogger(__name__)

MAX_LEDGER_FEE_BPS = 1_000  # 10%


class EscrowLedger(FeeCollector):
    """Holds escrowed funds for unregistered handles.

    Usage:
        ledger = EscrowLedger(runtime, assets, registry, address=vault,
                              owner=admin, fee_rate_bps=100,
                              fee_receiver=distributor_address)
        ledger.deposit(sender, "alice", 10**18)
        registry.register("alice", alice)
        receipt = ledger.withdraw(alice, "alice")
    """

    component_name = "escrow_ledger"
    fee_ceiling_bps = MAX_LEDGER_FEE_BPS

    def __init__(
        self,
        runtime: Runtime,
        assets: AssetRail,
        identity: IdentityLookup,
        address: str,
        owner: str,
        fee_rate_bps: int,
        fee_receiver: str,
    ) -> None:
        super().__init__(
            runtime, assets, identity, address, owner, fee_rate_bps, fee_receiver,
        )
        self._balances = BalanceTable()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def balance_of(self, handle: str, asset: Optional[str] = None) -> int:
        return self._balances.get(handle_hash(handle), normalize_asset(asset))

    def balance_of_hash(self, key: str, asset: Optional[str] = None) -> int:
        return self._balances.get(key, normalize_asset(asset))

    def total_escrowed(self, asset: Optional[str] = None) -> int:
        return self._balances.total(normalize_asset(asset))

    def funded_assets(self, handle: str) -> list[str]:
        return self._balances.funded_assets(handle_hash(handle))

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def deposit(
        self,
        sender: str,
        handle: str,
        amount: int,
        asset: Optional[str] = None,
    ) -> int:
        """Credit ``amount`` to ``handle``. Returns the new balance.

        For the native coin ``amount`` is the value attached by
        ``sender``; for a token it is pulled from ``sender``'s allowance.
        """
        asset = normalize_asset(asset)
        key = handle_hash(handle)
        require_positive(amount)
        with self._call():
            sender = normalize_address(sender)
            collect(self._assets, asset, sender, self._address, amount)
            balance = self._balances.credit(key, asset, amount)
            self._emit(
                EventKind.DEPOSIT, sender,
                {
                    "handle": handle,
                    "handle_hash": key,
                    "asset": asset,
                    "amount": str(amount),
                    "balance": str(balance),
                },
            )
        logger.debug("Escrowed %d of %s for %r", amount, asset, handle)
        return balance

    def batch_deposit(
        self,
        sender: str,
        handles: Sequence[str],
        amounts: Sequence[int],
        asset: Optional[str] = None,
        value: Optional[int] = None,
    ) -> int:
        """Credit N entries atomically. Returns the batch total.

        Native coin: ``value`` is the attached value and must equal
        sum(amounts) exactly. Token: the total is pulled once and
        ``value`` must be absent or zero.
        """
        asset = normalize_asset(asset)
        handles = list(handles)
        amounts = list(amounts)
        if len(handles) != len(amounts):
            raise LengthMismatch(
                f"{len(handles)} handles but {len(amounts)} amounts"
            )
        if not handles:
            raise EmptyBatch("Batch deposit carries no entries")
        keys = [handle_hash(h) for h in handles]
        for amount in amounts:
            require_positive(amount)
        total = checked_sum(amounts)
        check_attached_value(asset, total, value)

        with self._call():
            sender = normalize_address(sender)
            collect(self._assets, asset, sender, self._address, total)
            for key, amount in zip(keys, amounts):
                self._balances.credit(key, asset, amount)
            self._emit(
                EventKind.BATCH_DEPOSIT, sender,
                {
                    "asset": asset,
                    "handles": handles,
                    "handle_hashes": keys,
                    "amounts": [str(a) for a in amounts],
                    "total": str(total),
                },
            )
        logger.debug("Batch escrowed %d of %s across %d handles", total, asset, len(handles))
        return total

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw(
        self,
        caller: str,
        handle: str,
        asset: Optional[str] = None,
    ) -> WithdrawalReceipt:
        """Drain ``handle``'s entry for ``asset`` to its registered owner.

        Raises Unauthorized unless ``caller`` is the address the identity
        lookup returns for ``handle`` right now, and NothingToWithdraw if
        the entry is empty.
        """
        asset = normalize_asset(asset)
        with self._call():
            caller = self._only_handle_owner(caller, handle)
            return self._withdraw(caller, handle, asset)

    def withdraw_all(
        self,
        caller: str,
        handle: str,
        assets: Iterable[Optional[str]] = (),
    ) -> list[WithdrawalReceipt]:
        """Withdraw the native entry, then each listed asset.

        One authorization check covers the whole call. Empty entries are
        skipped; NothingToWithdraw is raised only when every entry is empty.
        """
        order = [NATIVE_ASSET]
        for asset in assets:
            asset = normalize_asset(asset)
            if asset not in order:
                order.append(asset)
        with self._call():
            caller = self._only_handle_owner(caller, handle)
            key = handle_hash(handle)
            receipts = [
                self._withdraw(caller, handle, asset)
                for asset in order
                if self._balances.get(key, asset) > 0
            ]
            if not receipts:
                raise NothingToWithdraw(f"Nothing escrowed for {handle!r}")
            return receipts

    # ------------------------------------------------------------------
    # Fee claims
    # ------------------------------------------------------------------

    def claim_fees_multiple(
        self,
        caller: str,
        assets: Iterable[Optional[str]],
    ) -> dict[str, int]:
        """Claim every listed pool; empty pools are skipped, not errors."""
        claimed: dict[str, int] = {}
        with self._call():
            self._only_fee_receiver(caller)
            for asset in assets:
                asset = normalize_asset(asset)
                if asset in claimed or self.accumulated_fee(asset) == 0:
                    continue
                claimed[asset] = self._claim(asset)
        return claimed

    def claim_native_fees(self, caller: str) -> int:
        return self.claim_fees(caller, NATIVE_ASSET)

    # ------------------------------------------------------------------
    # Rollback participant
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        state = super().snapshot()
        state["balances"] = self._balances.snapshot()
        return state

    def restore(self, state: Any) -> None:
        super().restore(state)
        self._balances.restore(state["balances"])

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        data = self._config_dict()
        data["balances"] = self._balances.to_dict()
        return data

    @classmethod
    def from_dict(
        cls,
        data: dict,
        runtime: Runtime,
        assets: AssetRail,
        identity: IdentityLookup,
    ) -> "EscrowLedger":
        ledger = cls(
            runtime,
            assets,
            identity,
            address=data["address"],
            owner=data["owner"],
            fee_rate_bps=data["fee_rate_bps"],
            fee_receiver=data["fee_receiver"],
        )
        ledger._load_fees(data)
        ledger._balances = BalanceTable.from_dict(data.get("balances", {}))
        return ledger

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _only_handle_owner(self, caller: str, handle: str) -> str:
        require_handle(handle)
        caller = normalize_address(caller)
        owner = self._identity.resolve(handle)
        if owner is None or normalize_address(owner, allow_zero=True) != caller:
            raise Unauthorized(f"{caller} does not own handle {handle!r}")
        return caller

    def _withdraw(self, caller: str, handle: str, asset: str) -> WithdrawalReceipt:
        key = handle_hash(handle)
        balance = self._balances.get(key, asset)
        if balance == 0:
            raise NothingToWithdraw(f"Nothing escrowed for {handle!r} in {asset}")
        fee = compute_fee(balance, self._fee_rate_bps)
        net = balance - fee

        # Effects before the interaction
        self._balances.drain(key, asset)
        self._accrue(asset, fee)
        deliver(self._assets, asset, self._address, caller, net)

        self._emit(
            EventKind.WITHDRAWAL, caller,
            {
                "handle": handle,
                "handle_hash": key,
                "asset": asset,
                "gross": str(balance),
                "net": str(net),
                "fee": str(fee),
            },
        )
        logger.info("Withdrawal for %r: %d of %s (fee %d)", handle, net, asset, fee)
        return WithdrawalReceipt(
            handle=handle,
            handle_hash=key,
            recipient=caller,
            asset=asset,
            gross=balance,
            net=net,
            fee=fee,
        )


"""Dispatcher — decides per recipient whether to pay directly or escrow.

Single transfer:
    owner = identity.resolve(handle)
    owner known   → fee = floor(amount * rate / 10000), owner gets amount - fee,
                    fee accrues in the dispatcher's pool for the asset
    owner unknown → the full amount goes to the escrow ledger, fee-free;
                    the ledger charges its own fee at withdrawal time

Batch transfer:
    The caller pre-splits recipients into unregistered handles (escrow)
    and registered addresses (direct). The split is trusted, not
    re-resolved. Fee is computed once on the direct total; each direct
    recipient is paid floor(amount * (10000 - rate) / 10000). The
    rounding dust between (direct_total - fee) and the sum of those nets
    is kept in the fee pool, so that for every batch:

        escrowed + paid out + fee + dust == attached value (or pulled total)

Every entry point is all-or-nothing. A single failed payout aborts the
whole batch and restores every balance touched by the call.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from handlepay.addresses import (
    ZERO_ADDRESS,
    is_native,
    normalize_address,
    normalize_asset,
    require_handle,
)
from handlepay.assets.rail import AssetRail, check_attached_value, collect, deliver
from handlepay.collector import FeeCollector
from handlepay.errors import EmptyBatch, LengthMismatch
from handlepay.escrow.ledger import EscrowLedger
from handlepay.fees import checked_sum, compute_fee, net_by_rate, require_positive
from handlepay.identity.registry import IdentityLookup
from handlepay.models.receipts import BatchReceipt, DirectPayout, TransferReceipt
from handlepay.persistence.event_log import EventKind
from handlepay.runtime.atomic import Runtime

logger = logging.getLogger(__name__)

MAX_DISPATCHER_FEE_BPS = 300  # 3%


class Dispatcher(FeeCollector):
    """Entry point for handle-addressed transfers.

    Usage:
        dispatcher = Dispatcher(runtime, assets, registry, ledger,
                                address=router, owner=admin,
                                fee_rate_bps=100,
                                fee_receiver=distributor_address)
        receipt = dispatcher.transfer(sender, "alice", 10**18)
        if receipt.escrowed:
            ...  # alice withdraws from the ledger once registered
    """

    component_name = "dispatcher"
    fee_ceiling_bps = MAX_DISPATCHER_FEE_BPS

    def __init__(
        self,
        runtime: Runtime,
        assets: AssetRail,
        identity: IdentityLookup,
        ledger: EscrowLedger,
        address: str,
        owner: str,
        fee_rate_bps: int,
        fee_receiver: str,
    ) -> None:
        super().__init__(
            runtime, assets, identity, address, owner, fee_rate_bps, fee_receiver,
        )
        self._ledger = ledger

    @property
    def ledger(self) -> EscrowLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def resolve(self, handle: str) -> Optional[str]:
        """Current owner of ``handle``, or None. The zero address counts as None."""
        owner = self._identity.resolve(require_handle(handle))
        if owner is None:
            return None
        owner = normalize_address(owner, allow_zero=True)
        return None if owner == ZERO_ADDRESS else owner

    def split_recipients(
        self,
        handles: Sequence[str],
    ) -> tuple[list[str], list[str]]:
        """Split handles into (unregistered handles, registered addresses).

        Order within each group follows the input. The result is a
        point-in-time answer intended for building a batch_transfer call.
        """
        unregistered: list[str] = []
        registered: list[str] = []
        for handle in handles:
            owner = self.resolve(handle)
            if owner is None:
                unregistered.append(handle)
            else:
                registered.append(owner)
        return unregistered, registered

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(
        self,
        sender: str,
        handle: str,
        amount: int,
        asset: Optional[str] = None,
    ) -> TransferReceipt:
        """Send ``amount`` of ``asset`` to whoever owns ``handle``.

        Native coin: ``amount`` is the value attached by ``sender``.
        Token: ``amount`` is pulled from ``sender``'s allowance first.
        """
        asset = normalize_asset(asset)
        require_handle(handle)
        require_positive(amount)
        with self._call():
            sender = normalize_address(sender)
            collect(self._assets, asset, sender, self._address, amount)
            owner = self.resolve(handle)
            if owner is None:
                self._forward_to_escrow(handle, amount, asset)
                receipt = TransferReceipt(
                    sender=sender, handle=handle, asset=asset,
                    amount=amount, net=amount, fee=0,
                )
                logger.debug("Handle %r unregistered; escrowed %d", handle, amount)
            else:
                fee = compute_fee(amount, self._fee_rate_bps)
                payout = amount - fee
                self._accrue(asset, fee)
                deliver(self._assets, asset, self._address, owner, payout)
                receipt = TransferReceipt(
                    sender=sender, handle=handle, asset=asset,
                    amount=amount, net=payout, fee=fee, recipient=owner,
                )
                logger.debug("Paid %d to %s for %r (fee %d)", payout, owner, handle, fee)
            self._emit(EventKind.TRANSFER_COMPLETED, sender, receipt.to_dict())
        return receipt

    def batch_transfer(
        self,
        sender: str,
        unregistered_handles: Sequence[str],
        vault_amounts: Sequence[int],
        registered_addresses: Sequence[str],
        direct_amounts: Sequence[int],
        asset: Optional[str] = None,
        value: Optional[int] = None,
    ) -> BatchReceipt:
        """Escrow the vault half and pay the direct half, all or nothing.

        Native coin: ``value`` is the attached value and must equal the
        sum of every vault and direct amount exactly. Token: that sum is
        pulled from ``sender`` once and ``value`` must be absent or zero.
        """
        asset = normalize_asset(asset)
        handles = list(unregistered_handles)
        vault_amounts = list(vault_amounts)
        direct_amounts = list(direct_amounts)
        if len(handles) != len(vault_amounts):
            raise LengthMismatch(
                f"{len(handles)} unregistered handles but {len(vault_amounts)} vault amounts"
            )
        if len(registered_addresses) != len(direct_amounts):
            raise LengthMismatch(
                f"{len(registered_addresses)} registered addresses but "
                f"{len(direct_amounts)} direct amounts"
            )
        if not handles and not registered_addresses:
            raise EmptyBatch("Batch transfer carries no recipients")
        for handle in handles:
            require_handle(handle)
        recipients = [normalize_address(a) for a in registered_addresses]
        for amount in vault_amounts + direct_amounts:
            require_positive(amount)
        vault_total = checked_sum(vault_amounts)
        direct_total = checked_sum(direct_amounts)
        total = checked_sum([vault_total, direct_total])
        check_attached_value(asset, total, value)

        with self._call():
            sender = normalize_address(sender)
            collect(self._assets, asset, sender, self._address, total)

            rate = self._fee_rate_bps
            fee = compute_fee(direct_total, rate)
            nets = [net_by_rate(amount, rate) for amount in direct_amounts]
            dust = direct_total - fee - sum(nets)
            self._accrue(asset, fee + dust)

            if handles:
                self._forward_batch_to_escrow(handles, vault_amounts, vault_total, asset)
            payouts = []
            for recipient, amount, net in zip(recipients, direct_amounts, nets):
                deliver(self._assets, asset, self._address, recipient, net)
                payouts.append(DirectPayout(recipient=recipient, amount=amount, net=net))

            receipt = BatchReceipt(
                sender=sender,
                asset=asset,
                total=total,
                vault_total=vault_total,
                direct_total=direct_total,
                fee=fee,
                dust=dust,
                escrowed_handles=tuple(handles),
                payouts=tuple(payouts),
            )
            self._emit(EventKind.BATCH_TRANSFER_COMPLETED, sender, receipt.to_dict())
        logger.debug(
            "Batch of %d escrowed + %d direct settled (fee %d, dust %d)",
            len(handles), len(payouts), fee, dust,
        )
        return receipt

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_ledger(self, caller: str, ledger: EscrowLedger) -> None:
        with self._call():
            self._only_owner(caller)
            previous, self._ledger = self._ledger, ledger
            self._emit(
                EventKind.LEDGER_UPDATED, caller,
                {"previous": previous.address, "new": ledger.address},
            )

    # ------------------------------------------------------------------
    # Rollback participant
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        state = super().snapshot()
        state["ledger"] = self._ledger
        return state

    def restore(self, state: Any) -> None:
        super().restore(state)
        self._ledger = state["ledger"]

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        data = self._config_dict()
        data["ledger"] = self._ledger.address
        return data

    @classmethod
    def from_dict(
        cls,
        data: dict,
        runtime: Runtime,
        assets: AssetRail,
        identity: IdentityLookup,
        ledger: EscrowLedger,
    ) -> "Dispatcher":
        if normalize_address(data["ledger"]) != ledger.address:
            raise ValueError(
                f"Dispatcher state references ledger {data['ledger']}, "
                f"got {ledger.address}"
            )
        dispatcher = cls(
            runtime,
            assets,
            identity,
            ledger,
            address=data["address"],
            owner=data["owner"],
            fee_rate_bps=data["fee_rate_bps"],
            fee_receiver=data["fee_receiver"],
        )
        dispatcher._load_fees(data)
        return dispatcher

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _forward_to_escrow(self, handle: str, amount: int, asset: str) -> None:
        if not is_native(asset):
            self._assets.approve(asset, self._address, self._ledger.address, amount)
        self._ledger.deposit(self._address, handle, amount, asset)

    def _forward_batch_to_escrow(
        self,
        handles: list[str],
        amounts: list[int],
        total: int,
        asset: str,
    ) -> None:
        if is_native(asset):
            self._ledger.batch_deposit(self._address, handles, amounts, asset, value=total)
        else:
            self._assets.approve(asset, self._address, self._ledger.address, total)
            self._ledger.batch_deposit(self._address, handles, amounts, asset)

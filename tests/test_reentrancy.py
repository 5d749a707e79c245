"""Tests for reentrancy — proves a recipient calling back in cannot drain twice."""

from typing import Any

import pytest

from handlepay.addresses import NATIVE_ASSET, new_address
from handlepay.config import ProtocolParams
from handlepay.distribution import StakeShare
from handlepay.errors import ReentrantCall, TransferFailed
from handlepay.service import HandlePayService

E = 10**18
OWNER = new_address()
TEAM = new_address()
TREASURY = new_address()


def _deploy() -> HandlePayService:
    params = ProtocolParams(
        owner=OWNER,
        dispatcher_fee_bps=100,
        ledger_fee_bps=1000,
        stakeholders=(StakeShare(TEAM, 1000), StakeShare(TREASURY, 9000)),
    )
    return HandlePayService(params)


def _escrow_for(service: HandlePayService, handle: str, amount: int) -> str:
    """Escrow ``amount`` for ``handle`` and register it to a fresh attacker."""
    sender = new_address()
    service.assets.mint(NATIVE_ASSET, sender, amount)
    service.ledger.deposit(sender, handle, amount)
    attacker = new_address()
    service.registry.register(handle, attacker)
    return attacker


class TestLedgerReentrancy:
    def test_reentrant_withdraw_is_blocked(self) -> None:
        service = _deploy()
        attacker = _escrow_for(service, "mallory", E)
        seen: list[Any] = []

        def hook(asset: str, sender: str, amount: int) -> bool:
            try:
                service.ledger.withdraw(attacker, "mallory")
            except ReentrantCall as exc:
                seen.append(exc)
            return True

        service.assets.set_receive_hook(attacker, hook)
        receipt = service.ledger.withdraw(attacker, "mallory")

        assert len(seen) == 1
        assert receipt.net == 9 * 10**17
        assert service.assets.balance_of(NATIVE_ASSET, attacker) == 9 * 10**17
        assert service.ledger.balance_of("mallory") == 0
        assert service.ledger.held() == 10**17

    def test_uncaught_reentry_aborts_withdrawal(self) -> None:
        service = _deploy()
        attacker = _escrow_for(service, "mallory", E)

        def hook(asset: str, sender: str, amount: int) -> bool:
            service.ledger.withdraw(attacker, "mallory")
            return True

        service.assets.set_receive_hook(attacker, hook)
        with pytest.raises(TransferFailed):
            service.ledger.withdraw(attacker, "mallory")
        assert service.ledger.balance_of("mallory") == E
        assert service.ledger.accumulated_fee() == 0
        assert service.assets.balance_of(NATIVE_ASSET, attacker) == 0

    def test_entry_is_drained_before_payout(self) -> None:
        service = _deploy()
        attacker = _escrow_for(service, "mallory", E)
        observed: dict[str, int] = {}

        def hook(asset: str, sender: str, amount: int) -> bool:
            observed["balance"] = service.ledger.balance_of("mallory")
            observed["fee"] = service.ledger.accumulated_fee()
            return True

        service.assets.set_receive_hook(attacker, hook)
        service.ledger.withdraw(attacker, "mallory")
        assert observed == {"balance": 0, "fee": 10**17}

    def test_deposit_during_withdrawal_is_blocked(self) -> None:
        """The ledger stays locked while its own payout is in flight."""
        service = _deploy()
        attacker = _escrow_for(service, "mallory", E)
        seen: list[Any] = []

        def hook(asset: str, sender: str, amount: int) -> bool:
            try:
                service.dispatcher.transfer(attacker, "nobody", amount)
            except ReentrantCall as exc:
                seen.append(exc)
            return True

        service.assets.set_receive_hook(attacker, hook)
        service.ledger.withdraw(attacker, "mallory")
        assert len(seen) == 1
        assert service.ledger.balance_of("nobody") == 0


class TestDispatcherReentrancy:
    def test_recipient_cannot_reenter_transfer(self) -> None:
        service = _deploy()
        recipient = new_address()
        service.registry.register("alice", recipient)
        sender = new_address()
        service.assets.mint(NATIVE_ASSET, sender, 200)
        seen: list[Any] = []

        def hook(asset: str, origin: str, amount: int) -> bool:
            try:
                service.dispatcher.transfer(sender, "alice", 100)
            except ReentrantCall as exc:
                seen.append(exc)
            return True

        service.assets.set_receive_hook(recipient, hook)
        service.dispatcher.transfer(sender, "alice", 100)
        assert len(seen) == 1
        assert service.assets.balance_of(NATIVE_ASSET, recipient) == 99
        assert service.assets.balance_of(NATIVE_ASSET, sender) == 100

    def test_other_component_callable_from_hook(self) -> None:
        """Withdrawal payout may forward funds through the dispatcher to a registered handle."""
        service = _deploy()
        attacker = _escrow_for(service, "mallory", E)
        friend = new_address()
        service.registry.register("friend", friend)

        def hook(asset: str, sender: str, amount: int) -> bool:
            if sender == service.ledger.address:
                service.dispatcher.transfer(attacker, "friend", 100)
            return True

        service.assets.set_receive_hook(attacker, hook)
        service.ledger.withdraw(attacker, "mallory")
        assert service.assets.balance_of(NATIVE_ASSET, friend) == 99
        assert service.assets.balance_of(NATIVE_ASSET, attacker) == 9 * 10**17 - 100


class TestAdministrativeReentrancy:
    def test_ledger_setters_blocked_during_payout(self) -> None:
        service = _deploy()
        attacker = _escrow_for(service, "mallory", E)
        receiver = service.ledger.fee_receiver
        seen: list[Any] = []

        def hook(asset: str, sender: str, amount: int) -> bool:
            for attempt in (
                lambda: service.ledger.set_fee_rate(OWNER, 0),
                lambda: service.ledger.set_fee_receiver(OWNER, attacker),
            ):
                try:
                    attempt()
                except ReentrantCall as exc:
                    seen.append(exc)
            return True

        service.assets.set_receive_hook(attacker, hook)
        service.ledger.withdraw(attacker, "mallory")
        assert len(seen) == 2
        assert service.ledger.fee_rate_bps == 1000
        assert service.ledger.fee_receiver == receiver
        assert service.ledger.accumulated_fee() == 10**17

    def test_dispatcher_setters_blocked_during_payout(self) -> None:
        service = _deploy()
        recipient = new_address()
        service.registry.register("alice", recipient)
        sender = new_address()
        service.assets.mint(NATIVE_ASSET, sender, 100)
        seen: list[Any] = []

        def hook(asset: str, origin: str, amount: int) -> bool:
            try:
                service.dispatcher.set_fee_rate(OWNER, 0)
            except ReentrantCall as exc:
                seen.append(exc)
            try:
                service.dispatcher.set_ledger(OWNER, service.ledger)
            except ReentrantCall as exc:
                seen.append(exc)
            return True

        service.assets.set_receive_hook(recipient, hook)
        service.dispatcher.transfer(sender, "alice", 100)
        assert len(seen) == 2
        assert service.dispatcher.fee_rate_bps == 100


class TestDistributorReentrancy:
    def test_stakeholder_cannot_claim_twice(self) -> None:
        service = _deploy()
        attacker = _escrow_for(service, "mallory", E)
        service.ledger.withdraw(attacker, "mallory")
        service.distributor.pull_from_ledger(TEAM)
        seen: list[Any] = []

        def hook(asset: str, sender: str, amount: int) -> bool:
            try:
                service.distributor.claim_share(TEAM)
            except ReentrantCall as exc:
                seen.append(exc)
            return True

        service.assets.set_receive_hook(TEAM, hook)
        assert service.distributor.claim_share(TEAM) == 10**16
        assert len(seen) == 1
        assert service.assets.balance_of(NATIVE_ASSET, TEAM) == 10**16

"""Tests for the fee distributor — proves pulls are authorized and shares follow the live balance."""

import pytest

from handlepay.addresses import NATIVE_ASSET, new_address
from handlepay.assets import AssetBook
from handlepay.config import ProtocolParams
from handlepay.distribution import FeeDistributor, StakeShare
from handlepay.errors import InvalidShares, NothingToClaim, TransferFailed, Unauthorized
from handlepay.persistence.event_log import EventKind
from handlepay.runtime import Runtime
from handlepay.service import HandlePayService

E = 10**18
OWNER = new_address()
TEAM = new_address()
TREASURY = new_address()
TOKEN = new_address()


def _deploy() -> HandlePayService:
    params = ProtocolParams(
        owner=OWNER,
        dispatcher_fee_bps=100,
        ledger_fee_bps=1000,
        stakeholders=(StakeShare(TEAM, 1000), StakeShare(TREASURY, 9000)),
    )
    return HandlePayService(params)


def _with_ledger_fee(service: HandlePayService, amount: int = E) -> None:
    """Escrow ``amount`` and withdraw it so the ledger pool holds 10%."""
    sender = new_address()
    service.assets.mint(NATIVE_ASSET, sender, amount)
    service.dispatcher.transfer(sender, "alice", amount)
    alice = new_address()
    service.registry.register("alice", alice)
    service.ledger.withdraw(alice, "alice")


def _with_dispatcher_fee(service: HandlePayService, amount: int = 100) -> None:
    sender = new_address()
    service.assets.mint(NATIVE_ASSET, sender, amount)
    if service.registry.resolve("bob") is None:
        service.registry.register("bob", new_address())
    service.dispatcher.transfer(sender, "bob", amount)


def _standalone(*shares: StakeShare) -> FeeDistributor:
    runtime = Runtime()
    return FeeDistributor(runtime, AssetBook(runtime), new_address(), OWNER, shares)  # type: ignore[arg-type]


class TestConstruction:
    def test_shares_must_sum_to_denominator(self) -> None:
        with pytest.raises(InvalidShares, match="sum"):
            _standalone(StakeShare(TEAM, 1000), StakeShare(TREASURY, 8000))

    def test_exactly_two_stakeholders(self) -> None:
        with pytest.raises(InvalidShares, match="two"):
            _standalone(StakeShare(TEAM, 10000))

    def test_distinct_stakeholders(self) -> None:
        with pytest.raises(InvalidShares, match="distinct"):
            _standalone(StakeShare(TEAM, 5000), StakeShare(TEAM, 5000))

    def test_negative_share(self) -> None:
        with pytest.raises(InvalidShares):
            _standalone(StakeShare(TEAM, -1), StakeShare(TREASURY, 10001))

    def test_params_reject_bad_shares(self) -> None:
        with pytest.raises(InvalidShares):
            ProtocolParams(
                owner=OWNER,
                dispatcher_fee_bps=0,
                ledger_fee_bps=0,
                stakeholders=(StakeShare(TEAM, 1), StakeShare(TREASURY, 1)),
            )

    def test_unattached_pull_fails(self) -> None:
        distributor = _standalone(StakeShare(TEAM, 1000), StakeShare(TREASURY, 9000))
        with pytest.raises(RuntimeError, match="not attached"):
            distributor.pull_from_dispatcher(TEAM)


class TestPull:
    def test_pull_from_ledger(self) -> None:
        service = _deploy()
        _with_ledger_fee(service)
        pulled = service.distributor.pull_from_ledger(TEAM)
        assert pulled == 10**17
        assert service.distributor.held() == 10**17
        assert service.ledger.accumulated_fee() == 0

    def test_pull_from_dispatcher(self) -> None:
        service = _deploy()
        _with_dispatcher_fee(service, 100)
        assert service.distributor.pull_from_dispatcher(TREASURY, NATIVE_ASSET) == 1
        assert service.dispatcher.held() == 0

    def test_admin_may_pull(self) -> None:
        service = _deploy()
        _with_dispatcher_fee(service, 100)
        assert service.distributor.pull_from_dispatcher(OWNER) == 1

    def test_outsider_cannot_pull(self) -> None:
        service = _deploy()
        _with_dispatcher_fee(service, 100)
        with pytest.raises(Unauthorized):
            service.distributor.pull_from_dispatcher(new_address())
        assert service.dispatcher.accumulated_fee() == 1

    def test_empty_pool_is_an_error(self) -> None:
        service = _deploy()
        with pytest.raises(NothingToClaim):
            service.distributor.pull_from_ledger(TEAM)

    def test_multiple_skips_empty(self) -> None:
        service = _deploy()
        _with_dispatcher_fee(service, 100)
        pulled = service.distributor.pull_from_dispatcher_multiple(TEAM, [NATIVE_ASSET, TOKEN])
        assert pulled == {NATIVE_ASSET: 1}

    def test_multiple_all_empty_returns_nothing(self) -> None:
        service = _deploy()
        assert service.distributor.pull_from_ledger_multiple(TEAM, [NATIVE_ASSET, TOKEN]) == {}

    def test_pull_is_logged(self) -> None:
        service = _deploy()
        _with_ledger_fee(service)
        service.distributor.pull_from_ledger(TEAM)
        log = service.runtime.event_log
        pulled = log.events(EventKind.FEES_PULLED)[-1]
        assert pulled.payload["source"] == "escrow_ledger"
        assert pulled.payload["amount"] == str(10**17)
        assert len(log.events(EventKind.FEES_CLAIMED)) == 1


class TestClaimShare:
    def test_shares_follow_live_balance(self) -> None:
        """10% of 0.1e18, then 90% of what remains."""
        service = _deploy()
        _with_ledger_fee(service)
        service.distributor.pull_from_ledger(TEAM)

        assert service.distributor.claim_share(TEAM) == 10**16
        assert service.distributor.claim_share(TREASURY) == 81 * 10**15
        assert service.distributor.held() == 9 * 10**15
        assert service.assets.balance_of(NATIVE_ASSET, TEAM) == 10**16

    def test_claimable_view(self) -> None:
        service = _deploy()
        _with_ledger_fee(service)
        service.distributor.pull_from_ledger(TEAM)
        assert service.distributor.claimable(TREASURY) == 9 * 10**16

    def test_non_stakeholder_cannot_claim(self) -> None:
        service = _deploy()
        with pytest.raises(Unauthorized, match="stakeholder"):
            service.distributor.claim_share(OWNER)

    def test_nothing_held(self) -> None:
        service = _deploy()
        with pytest.raises(NothingToClaim):
            service.distributor.claim_share(TEAM)

    def test_share_rounding_to_zero(self) -> None:
        service = _deploy()
        _with_dispatcher_fee(service, 900)
        service.distributor.pull_from_dispatcher(TEAM)
        # 9 held; 10% of 9 rounds down to 0
        with pytest.raises(NothingToClaim):
            service.distributor.claim_share(TEAM)
        assert service.distributor.claim_share(TREASURY) == 8

    def test_refused_claim_keeps_funds(self) -> None:
        service = _deploy()
        _with_ledger_fee(service)
        service.distributor.pull_from_ledger(TEAM)
        service.assets.set_receive_hook(TEAM, lambda asset, sender, amount: False)
        with pytest.raises(TransferFailed):
            service.distributor.claim_share(TEAM)
        assert service.distributor.held() == 10**17

    def test_claim_is_logged(self) -> None:
        service = _deploy()
        _with_ledger_fee(service)
        service.distributor.pull_from_ledger(TEAM)
        service.distributor.claim_share(TEAM)
        event = service.runtime.event_log.events(EventKind.SHARE_CLAIMED)[-1]
        assert event.actor_id == TEAM
        assert event.payload["remaining"] == str(9 * 10**16)


class TestPersistence:
    def test_round_trip(self) -> None:
        distributor = _standalone(StakeShare(TEAM, 1000), StakeShare(TREASURY, 9000))
        runtime = Runtime()
        restored = FeeDistributor.from_dict(distributor.to_dict(), runtime, AssetBook(runtime))
        assert restored.address == distributor.address
        assert restored.stakeholders == distributor.stakeholders
        assert restored.admin == OWNER

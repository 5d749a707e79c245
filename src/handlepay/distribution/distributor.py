"""Fee distributor — pulls pooled fees and splits them between two stakeholders.

The distributor is configured as the fee receiver of the dispatcher and
of the escrow ledger. Any stakeholder (or the admin) can pull a pool into
the distributor's custody; each stakeholder then claims its fixed
basis-point share of whatever the distributor holds at that moment.

Shares are computed against the live balance, not a per-stakeholder
running ledger. If stakeholder A claims 10% of 100 (10), stakeholder B
then claims 90% of the remaining 90 (81), and 9 stays behind for the next
round. Claim order and interleaving with new pulls change the exact
amounts each stakeholder receives.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from handlepay.addresses import normalize_address, normalize_asset
from handlepay.assets.rail import AssetRail, deliver
from handlepay.collector import FeeCollector
from handlepay.errors import InvalidShares, NothingToClaim, Unauthorized
from handlepay.fees import BPS_DENOMINATOR, split_shares
from handlepay.persistence.event_log import EventKind
from handlepay.runtime.atomic import Runtime
from handlepay.runtime.guard import ReentrancyGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StakeShare:
    """A stakeholder address and its fixed share in basis points."""
    address: str
    share_bps: int


class FeeDistributor:
    """Collects fees from fee pools and pays stakeholder shares.

    Usage:
        distributor = FeeDistributor(
            runtime, assets, address=splitter, admin=admin,
            stakeholders=(StakeShare(team, 1000), StakeShare(treasury, 9000)),
        )
        distributor.attach(dispatcher, ledger)
        distributor.pull_from_dispatcher(team, NATIVE_ASSET)
        distributor.claim_share(treasury, NATIVE_ASSET)
    """

    def __init__(
        self,
        runtime: Runtime,
        assets: AssetRail,
        address: str,
        admin: str,
        stakeholders: tuple[StakeShare, StakeShare],
        dispatcher: Optional[FeeCollector] = None,
        ledger: Optional[FeeCollector] = None,
    ) -> None:
        if len(stakeholders) != 2:
            raise InvalidShares(f"Exactly two stakeholders required, got {len(stakeholders)}")
        normalized = tuple(
            StakeShare(normalize_address(s.address), s.share_bps) for s in stakeholders
        )
        for share in normalized:
            if not isinstance(share.share_bps, int) or share.share_bps < 0:
                raise InvalidShares(f"Share must be a non-negative int, got {share.share_bps!r}")
        if sum(s.share_bps for s in normalized) != BPS_DENOMINATOR:
            raise InvalidShares(
                f"Stakeholder shares must sum to {BPS_DENOMINATOR} bps, got "
                f"{' + '.join(str(s.share_bps) for s in normalized)}"
            )
        if normalized[0].address == normalized[1].address:
            raise InvalidShares("Stakeholders must be distinct addresses")

        self._runtime = runtime
        self._assets = assets
        self._address = normalize_address(address)
        self._admin = normalize_address(admin)
        self._stakeholders = normalized
        self._dispatcher = dispatcher
        self._ledger = ledger
        self._guard = ReentrancyGuard(f"fee_distributor@{self._address}")
        runtime.register(self)

    def attach(self, dispatcher: FeeCollector, ledger: FeeCollector) -> None:
        """Point the distributor at the fee pools it pulls from."""
        self._dispatcher = dispatcher
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def stakeholders(self) -> tuple[StakeShare, ...]:
        return self._stakeholders

    def held(self, asset: Optional[str] = None) -> int:
        return self._assets.balance_of(normalize_asset(asset), self._address)

    def claimable(self, stakeholder: str, asset: Optional[str] = None) -> int:
        """What ``stakeholder`` would receive if it claimed right now."""
        share = self._share_of(stakeholder)
        return split_shares(self.held(asset), share.share_bps)

    # ------------------------------------------------------------------
    # Pulling fee pools
    # ------------------------------------------------------------------

    def pull_from_dispatcher(self, caller: str, asset: Optional[str] = None) -> int:
        """Claim the dispatcher's pool for ``asset`` into custody.

        Raises NothingToClaim when the pool is empty.
        """
        return self._pull(caller, self._require_source(self._dispatcher), asset)

    def pull_from_dispatcher_multiple(
        self,
        caller: str,
        assets: Iterable[Optional[str]],
    ) -> dict[str, int]:
        """Best effort: empty pools are skipped."""
        return self._pull_multiple(caller, self._require_source(self._dispatcher), assets)

    def pull_from_ledger(self, caller: str, asset: Optional[str] = None) -> int:
        return self._pull(caller, self._require_source(self._ledger), asset)

    def pull_from_ledger_multiple(
        self,
        caller: str,
        assets: Iterable[Optional[str]],
    ) -> dict[str, int]:
        return self._pull_multiple(caller, self._require_source(self._ledger), assets)

    # ------------------------------------------------------------------
    # Stakeholder claims
    # ------------------------------------------------------------------

    def claim_share(self, caller: str, asset: Optional[str] = None) -> int:
        """Pay ``caller`` its share of the distributor's current holding."""
        asset = normalize_asset(asset)
        with self._call():
            share = self._share_of(caller)
            amount = split_shares(self.held(asset), share.share_bps)
            if amount == 0:
                raise NothingToClaim(f"No {asset} share claimable by {share.address}")
            deliver(self._assets, asset, self._address, share.address, amount)
            self._runtime.emit(
                EventKind.SHARE_CLAIMED, share.address,
                {
                    "asset": asset,
                    "amount": str(amount),
                    "share_bps": share.share_bps,
                    "remaining": str(self.held(asset)),
                },
            )
        logger.info("Stakeholder %s claimed %d of %s", share.address, amount, asset)
        return amount

    # ------------------------------------------------------------------
    # Rollback participant
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        return {"admin": self._admin}

    def restore(self, state: Any) -> None:
        self._admin = state["admin"]

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "address": self._address,
            "admin": self._admin,
            "stakeholders": [
                {"address": s.address, "share_bps": s.share_bps}
                for s in self._stakeholders
            ],
        }

    @classmethod
    def from_dict(cls, data: dict, runtime: Runtime, assets: AssetRail) -> "FeeDistributor":
        first, second = (
            StakeShare(s["address"], s["share_bps"]) for s in data["stakeholders"]
        )
        return cls(
            runtime,
            assets,
            address=data["address"],
            admin=data["admin"],
            stakeholders=(first, second),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _call(self) -> Iterator[None]:
        with self._guard.enter(), self._runtime.atomic():
            yield

    def _share_of(self, caller: str) -> StakeShare:
        caller = normalize_address(caller)
        for share in self._stakeholders:
            if share.address == caller:
                return share
        raise Unauthorized(f"{caller} is not a stakeholder")

    def _only_authorized(self, caller: str) -> str:
        caller = normalize_address(caller)
        allowed = {self._admin} | {s.address for s in self._stakeholders}
        if caller not in allowed:
            raise Unauthorized(f"{caller} may not pull fees into the distributor")
        return caller

    @staticmethod
    def _require_source(source: Optional[FeeCollector]) -> FeeCollector:
        if source is None:
            raise RuntimeError("Fee distributor is not attached to a fee source")
        return source

    def _pull(self, caller: str, source: FeeCollector, asset: Optional[str]) -> int:
        asset = normalize_asset(asset)
        with self._call():
            caller = self._only_authorized(caller)
            if source.accumulated_fee(asset) == 0:
                raise NothingToClaim(
                    f"No {source.component_name} fees accumulated for {asset}"
                )
            amount = source.claim_fees(self._address, asset)
            self._record_pull(caller, source, asset, amount)
        return amount

    def _pull_multiple(
        self,
        caller: str,
        source: FeeCollector,
        assets: Iterable[Optional[str]],
    ) -> dict[str, int]:
        pulled: dict[str, int] = {}
        with self._call():
            caller = self._only_authorized(caller)
            for asset in assets:
                asset = normalize_asset(asset)
                if asset in pulled or source.accumulated_fee(asset) == 0:
                    continue
                pulled[asset] = source.claim_fees(self._address, asset)
                self._record_pull(caller, source, asset, pulled[asset])
        return pulled

    def _record_pull(
        self,
        caller: str,
        source: FeeCollector,
        asset: str,
        amount: int,
    ) -> None:
        self._runtime.emit(
            EventKind.FEES_PULLED, caller,
            {
                "source": source.component_name,
                "source_address": source.address,
                "asset": asset,
                "amount": str(amount),
            },
        )
        logger.info("Pulled %d of %s from %s", amount, asset, source.component_name)

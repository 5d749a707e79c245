"""Fee collector — shared configuration and fee-pool plumbing.

The dispatcher and the escrow ledger are both owner-administered
components with their own fee rate, fee receiver, identity lookup and a
per-asset accumulated fee pool. Each instance carries its own
configuration; there is no shared global state between instances.

Fee pool invariant: an accumulator never decreases except through a
claim, which zeroes it BEFORE the claimed amount leaves custody.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from handlepay.addresses import normalize_address, normalize_asset
from handlepay.assets.rail import AssetRail, deliver
from handlepay.errors import NothingToClaim, Unauthorized
from handlepay.fees import BPS_DENOMINATOR, validate_rate
from handlepay.identity.registry import IdentityLookup
from handlepay.persistence.event_log import EventKind
from handlepay.runtime.atomic import Runtime
from handlepay.runtime.guard import ReentrancyGuard

logger = logging.getLogger(__name__)


class FeeCollector:
    """Base for components that charge a basis-point fee and pool it."""

    component_name = "component"
    fee_ceiling_bps = BPS_DENOMINATOR

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
        self._runtime = runtime
        self._assets = assets
        self._identity = identity
        self._address = normalize_address(address)
        self._owner = normalize_address(owner)
        self._fee_rate_bps = validate_rate(fee_rate_bps, self.fee_ceiling_bps)
        self._fee_receiver = normalize_address(fee_receiver)
        self._accumulated_fees: Dict[str, int] = {}
        self._guard = ReentrancyGuard(f"{self.component_name}@{self._address}")
        runtime.register(self)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def fee_rate_bps(self) -> int:
        return self._fee_rate_bps

    @property
    def fee_receiver(self) -> str:
        return self._fee_receiver

    @property
    def identity(self) -> IdentityLookup:
        return self._identity

    def accumulated_fee(self, asset: Optional[str] = None) -> int:
        return self._accumulated_fees.get(normalize_asset(asset), 0)

    def held(self, asset: Optional[str] = None) -> int:
        """Units of ``asset`` currently in this component's custody."""
        return self._assets.balance_of(normalize_asset(asset), self._address)

    # ------------------------------------------------------------------
    # Fee claims
    # ------------------------------------------------------------------

    def claim_fees(self, caller: str, asset: Optional[str] = None) -> int:
        """Pay the whole pool for ``asset`` to the fee receiver.

        Raises Unauthorized unless ``caller`` is the fee receiver, and
        NothingToClaim if the pool is empty.
        """
        asset = normalize_asset(asset)
        with self._call():
            self._only_fee_receiver(caller)
            return self._claim(asset)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_fee_rate(self, caller: str, rate_bps: int) -> None:
        """Owner-only. Raises InvalidFeeRate above ``fee_ceiling_bps``."""
        with self._call():
            self._only_owner(caller)
            validate_rate(rate_bps, self.fee_ceiling_bps)
            previous, self._fee_rate_bps = self._fee_rate_bps, rate_bps
            self._emit(
                EventKind.FEE_RATE_UPDATED, caller,
                {"previous_bps": previous, "new_bps": rate_bps},
            )

    def set_fee_receiver(self, caller: str, receiver: str) -> None:
        with self._call():
            self._only_owner(caller)
            receiver = normalize_address(receiver)
            previous, self._fee_receiver = self._fee_receiver, receiver
            self._emit(
                EventKind.FEE_RECEIVER_UPDATED, caller,
                {"previous": previous, "new": receiver},
            )

    def set_identity_registry(self, caller: str, identity: IdentityLookup) -> None:
        if not isinstance(identity, IdentityLookup):
            raise TypeError(
                f"Identity registry must implement IdentityLookup, got {type(identity)}"
            )
        with self._call():
            self._only_owner(caller)
            previous, self._identity = self._identity, identity
            self._emit(
                EventKind.IDENTITY_REGISTRY_UPDATED, caller,
                {"previous": type(previous).__name__, "new": type(identity).__name__},
            )

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._call():
            self._only_owner(caller)
            new_owner = normalize_address(new_owner)
            previous, self._owner = self._owner, new_owner
            self._emit(
                EventKind.OWNERSHIP_TRANSFERRED, caller,
                {"previous": previous, "new": new_owner},
            )

    # ------------------------------------------------------------------
    # Rollback participant
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        return {
            "owner": self._owner,
            "fee_rate_bps": self._fee_rate_bps,
            "fee_receiver": self._fee_receiver,
            "identity": self._identity,
            "accumulated_fees": dict(self._accumulated_fees),
        }

    def restore(self, state: Any) -> None:
        self._owner = state["owner"]
        self._fee_rate_bps = state["fee_rate_bps"]
        self._fee_receiver = state["fee_receiver"]
        self._identity = state["identity"]
        self._accumulated_fees = dict(state["accumulated_fees"])

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _config_dict(self) -> dict:
        return {
            "address": self._address,
            "owner": self._owner,
            "fee_rate_bps": self._fee_rate_bps,
            "fee_receiver": self._fee_receiver,
            "accumulated_fees": {
                asset: str(amount)
                for asset, amount in sorted(self._accumulated_fees.items())
            },
        }

    def _load_fees(self, data: dict) -> None:
        self._accumulated_fees = {
            normalize_asset(asset): int(amount)
            for asset, amount in data.get("accumulated_fees", {}).items()
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _call(self) -> Iterator[None]:
        """Guarded, atomic scope for every state-mutating entry point."""
        with self._guard.enter(), self._runtime.atomic():
            yield

    def _only_owner(self, caller: str) -> str:
        caller = normalize_address(caller)
        if caller != self._owner:
            raise Unauthorized(f"{caller} is not the {self.component_name} owner")
        return caller

    def _only_fee_receiver(self, caller: str) -> str:
        caller = normalize_address(caller)
        if caller != self._fee_receiver:
            raise Unauthorized(
                f"{caller} is not the {self.component_name} fee receiver"
            )
        return caller

    def _accrue(self, asset: str, amount: int) -> None:
        if amount:
            self._accumulated_fees[asset] = self._accumulated_fees.get(asset, 0) + amount

    def _claim(self, asset: str) -> int:
        amount = self._accumulated_fees.get(asset, 0)
        if amount == 0:
            raise NothingToClaim(f"No {self.component_name} fees accumulated for {asset}")
        self._accumulated_fees[asset] = 0
        deliver(self._assets, asset, self._address, self._fee_receiver, amount)
        self._emit(
            EventKind.FEES_CLAIMED, self._fee_receiver,
            {"asset": asset, "amount": str(amount), "receiver": self._fee_receiver},
        )
        logger.info(
            "%s fees claimed: %d of %s to %s",
            self.component_name, amount, asset, self._fee_receiver,
        )
        return amount

    def _emit(self, kind: EventKind, actor: str, payload: dict[str, Any]) -> None:
        payload = {"component": self.component_name, "address": self._address, **payload}
        self._runtime.emit(kind, normalize_address(actor), payload)

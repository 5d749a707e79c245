"""HandlePay service — unified facade over one protocol deployment.

This is the primary interface for programmatic access. It wires together:
- the execution runtime and its audit event log
- the asset book (native coin and token balances)
- the identity registry used to resolve handles
- the escrow ledger, dispatcher and fee distributor

All operations return a ServiceResult. Protocol errors never escape the
facade: they come back as ``success=False`` with the error class and
reason, and the runtime has already rolled back every state change the
failed call made.

Persistence (optional): with a StateStore the whole deployment is saved
after each successful mutation and reloaded on construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence

from handlepay.addresses import NATIVE_ASSET, is_native, new_address, normalize_asset
from handlepay.assets.rail import AssetBook
from handlepay.config import ProtocolParams
from handlepay.dispatch.dispatcher import Dispatcher
from handlepay.distribution.distributor import FeeDistributor
from handlepay.errors import HandlePayError, LengthMismatch
from handlepay.escrow.ledger import EscrowLedger
from handlepay.fees import checked_sum
from handlepay.identity.registry import InMemoryIdentityRegistry
from handlepay.persistence.event_log import EventLog
from handlepay.persistence.state_store import StateStore
from handlepay.runtime.atomic import Runtime

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class HandlePayService:
    """Facade over a single deployment.

    Usage:
        params = ProtocolParams.from_config_file()
        service = HandlePayService(params)

        service.mint(NATIVE_ASSET, sender, 10**18)
        result = service.transfer(sender, "alice", 10**18)
        service.register_handle("alice", alice)
        result = service.withdraw(alice, "alice")

    Persistence (optional):
        service = HandlePayService(params, event_log=log, state_store=store)
    """

    def __init__(
        self,
        params: ProtocolParams,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._params = params
        self._runtime = Runtime(event_log=event_log, clock=clock)
        self._state_store = state_store
        self._persistence_degraded = False

        state = state_store.load() if state_store is not None else None
        if state is None:
            self._deploy()
            self._safe_persist()
        else:
            self._load(state)

    # ------------------------------------------------------------------
    # Component access
    # ------------------------------------------------------------------

    @property
    def runtime(self) -> Runtime:
        return self._runtime

    @property
    def assets(self) -> AssetBook:
        return self._assets

    @property
    def registry(self) -> InMemoryIdentityRegistry:
        return self._registry

    @property
    def ledger(self) -> EscrowLedger:
        return self._ledger

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def distributor(self) -> FeeDistributor:
        return self._distributor

    @property
    def owner(self) -> str:
        return self._dispatcher.owner

    def component_address(self, name: str) -> str:
        """Address of ``dispatcher``, ``ledger`` or ``distributor``."""
        components = {
            "dispatcher": self._dispatcher,
            "ledger": self._ledger,
            "distributor": self._distributor,
        }
        if name not in components:
            raise ValueError(f"Unknown component: {name}")
        return components[name].address

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def register_handle(self, handle: str, owner: str) -> ServiceResult:
        def op() -> dict[str, Any]:
            self._registry.register(handle, owner)
            return {"handle": handle, "owner": self._registry.resolve(handle)}
        return self._execute(op)

    def release_handle(self, handle: str) -> ServiceResult:
        def op() -> dict[str, Any]:
            self._registry.release(handle)
            return {"handle": handle}
        return self._execute(op)

    # ------------------------------------------------------------------
    # Asset book
    # ------------------------------------------------------------------

    def mint(self, asset: Optional[str], to: str, amount: int) -> ServiceResult:
        def op() -> dict[str, Any]:
            self._assets.mint(normalize_asset(asset), to, amount)
            return {
                "asset": normalize_asset(asset),
                "to": to,
                "balance": str(self._assets.balance_of(normalize_asset(asset), to)),
            }
        return self._execute(op)

    def approve(self, token: str, owner: str, spender: str, amount: int) -> ServiceResult:
        def op() -> dict[str, Any]:
            self._assets.approve(token, owner, spender, amount)
            return {"token": token, "owner": owner, "spender": spender, "amount": str(amount)}
        return self._execute(op)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(
        self,
        sender: str,
        handle: str,
        amount: int,
        asset: Optional[str] = None,
    ) -> ServiceResult:
        return self._execute(
            lambda: self._dispatcher.transfer(sender, handle, amount, asset).to_dict()
        )

    def batch_transfer(
        self,
        sender: str,
        handles: Sequence[str],
        amounts: Sequence[int],
        asset: Optional[str] = None,
    ) -> ServiceResult:
        """Resolve each handle now, split the batch, and dispatch it.

        For the native coin the attached value is the batch total.
        """
        def op() -> dict[str, Any]:
            if len(handles) != len(amounts):
                raise LengthMismatch(f"{len(handles)} handles but {len(amounts)} amounts")
            vault_handles: list[str] = []
            vault_amounts: list[int] = []
            direct_addresses: list[str] = []
            direct_amounts: list[int] = []
            for handle, amount in zip(handles, amounts):
                owner = self._dispatcher.resolve(handle)
                if owner is None:
                    vault_handles.append(handle)
                    vault_amounts.append(amount)
                else:
                    direct_addresses.append(owner)
                    direct_amounts.append(amount)
            asset_id = normalize_asset(asset)
            value = checked_sum(amounts) if is_native(asset_id) else None
            receipt = self._dispatcher.batch_transfer(
                sender,
                vault_handles,
                vault_amounts,
                direct_addresses,
                direct_amounts,
                asset_id,
                value=value,
            )
            return receipt.to_dict()
        return self._execute(op)

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    def deposit(
        self,
        sender: str,
        handle: str,
        amount: int,
        asset: Optional[str] = None,
    ) -> ServiceResult:
        def op() -> dict[str, Any]:
            balance = self._ledger.deposit(sender, handle, amount, asset)
            return {"handle": handle, "asset": normalize_asset(asset), "balance": str(balance)}
        return self._execute(op)

    def withdraw(
        self,
        caller: str,
        handle: str,
        asset: Optional[str] = None,
    ) -> ServiceResult:
        return self._execute(
            lambda: self._ledger.withdraw(caller, handle, asset).to_dict()
        )

    def withdraw_all(
        self,
        caller: str,
        handle: str,
        assets: Iterable[Optional[str]] = (),
    ) -> ServiceResult:
        def op() -> dict[str, Any]:
            receipts = self._ledger.withdraw_all(caller, handle, assets)
            return {"withdrawals": [r.to_dict() for r in receipts]}
        return self._execute(op)

    def balance(self, handle: str, asset: Optional[str] = None) -> ServiceResult:
        def op() -> dict[str, Any]:
            asset_id = normalize_asset(asset)
            return {
                "handle": handle,
                "asset": asset_id,
                "escrowed": str(self._ledger.balance_of(handle, asset_id)),
                "owner": self._dispatcher.resolve(handle),
            }
        return self._execute(op, persist=False)

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    def pull_fees(
        self,
        caller: str,
        source: str,
        assets: Sequence[Optional[str]] = (NATIVE_ASSET,),
    ) -> ServiceResult:
        """Pull ``source`` (``dispatcher`` or ``ledger``) pools into the distributor.

        A single asset is strict (empty pool fails); several are best effort.
        """
        def op() -> dict[str, Any]:
            if source == "dispatcher":
                single = self._distributor.pull_from_dispatcher
                multiple = self._distributor.pull_from_dispatcher_multiple
            elif source == "ledger":
                single = self._distributor.pull_from_ledger
                multiple = self._distributor.pull_from_ledger_multiple
            else:
                raise ValueError(f"Unknown fee source: {source}")
            if len(assets) == 1:
                asset_id = normalize_asset(assets[0])
                pulled = {asset_id: single(caller, asset_id)}
            else:
                pulled = multiple(caller, assets)
            return {"source": source, "pulled": {a: str(v) for a, v in pulled.items()}}
        return self._execute(op)

    def claim_share(self, caller: str, asset: Optional[str] = None) -> ServiceResult:
        def op() -> dict[str, Any]:
            amount = self._distributor.claim_share(caller, asset)
            return {"asset": normalize_asset(asset), "amount": str(amount)}
        return self._execute(op)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return deployment-wide status summary."""
        assets = set(self._assets.assets()) | {NATIVE_ASSET}
        return {
            "version": STATE_VERSION,
            "components": {
                "dispatcher": self._dispatcher.address,
                "escrow_ledger": self._ledger.address,
                "fee_distributor": self._distributor.address,
            },
            "fee_rates_bps": {
                "dispatcher": self._dispatcher.fee_rate_bps,
                "escrow_ledger": self._ledger.fee_rate_bps,
            },
            "handles_registered": len(self._registry.handles()),
            "assets": {
                asset: {
                    "escrowed": str(self._ledger.total_escrowed(asset)),
                    "ledger_fees": str(self._ledger.accumulated_fee(asset)),
                    "dispatcher_fees": str(self._dispatcher.accumulated_fee(asset)),
                    "distributor_held": str(self._distributor.held(asset)),
                }
                for asset in sorted(assets)
            },
            "events": self._runtime.event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "assets": self._assets.to_dict(),
            "identity": self._registry.to_dict(),
            "escrow_ledger": self._ledger.to_dict(),
            "dispatcher": self._dispatcher.to_dict(),
            "fee_distributor": self._distributor.to_dict(),
        }

    def _deploy(self) -> None:
        params = self._params
        self._assets = AssetBook(self._runtime)
        self._registry = InMemoryIdentityRegistry(self._runtime)
        self._distributor = FeeDistributor(
            self._runtime,
            self._assets,
            address=new_address(),
            admin=params.owner,
            stakeholders=params.stakeholders,
        )
        self._ledger = EscrowLedger(
            self._runtime,
            self._assets,
            self._registry,
            address=new_address(),
            owner=params.owner,
            fee_rate_bps=params.ledger_fee_bps,
            fee_receiver=self._distributor.address,
        )
        self._dispatcher = Dispatcher(
            self._runtime,
            self._assets,
            self._registry,
            self._ledger,
            address=new_address(),
            owner=params.owner,
            fee_rate_bps=params.dispatcher_fee_bps,
            fee_receiver=self._distributor.address,
        )
        self._distributor.attach(self._dispatcher, self._ledger)
        logger.info(
            "Deployed dispatcher %s, ledger %s, distributor %s",
            self._dispatcher.address, self._ledger.address, self._distributor.address,
        )

    def _load(self, state: dict[str, Any]) -> None:
        if state.get("version") != STATE_VERSION:
            raise ValueError(f"Unsupported state version: {state.get('version')}")
        self._assets = AssetBook.from_dict(state["assets"], self._runtime)
        self._registry = InMemoryIdentityRegistry.from_dict(state["identity"], self._runtime)
        self._ledger = EscrowLedger.from_dict(
            state["escrow_ledger"], self._runtime, self._assets, self._registry,
        )
        self._dispatcher = Dispatcher.from_dict(
            state["dispatcher"], self._runtime, self._assets, self._registry, self._ledger,
        )
        self._distributor = FeeDistributor.from_dict(
            state["fee_distributor"], self._runtime, self._assets,
        )
        self._distributor.attach(self._dispatcher, self._ledger)

    def _execute(
        self,
        operation: Callable[[], dict[str, Any]],
        persist: bool = True,
    ) -> ServiceResult:
        try:
            data = operation()
        except (HandlePayError, ValueError) as e:
            return ServiceResult(success=False, errors=[f"{type(e).__name__}: {e}"])
        if persist:
            warning = self._safe_persist()
            if warning:
                data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _safe_persist(self) -> Optional[str]:
        """Persist state after the call has committed to the audit trail.

        Never rolls back in-memory state: the events are already durable.
        On failure the degraded flag is set and a warning is returned.
        """
        if self._state_store is None:
            return None
        try:
            self._state_store.save(self.to_dict())
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("State persistence failed: %s", e)
            return f"Persistence degraded: {e} — state committed in audit trail but StateStore is stale"

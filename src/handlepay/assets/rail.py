"""Asset rail — the capability every protocol component moves value through.

Components never touch balances directly. They call an AssetRail:

    send_value(sender, to, amount) -> bool     native coin, reports failure
    pull_from(token, owner, spender, amount)   safe transferFrom, raises
    push_to(token, sender, to, amount)         safe transfer, raises

The native primitive reports failure by returning False, like a low-level
value call. The token primitives follow the "safe" variant and raise
TransferFailed instead.

AssetBook is the in-memory rail used for simulation and tests. It keeps
integer balances per (asset, address) and token allowances, and lets an
address install a receive hook that runs after value lands. A hook can
refuse the payment (return False or raise a protocol error), and it can
call back into the protocol, which is how reentrancy is exercised.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

from handlepay.addresses import NATIVE_ASSET, is_native, normalize_address, normalize_asset
from handlepay.errors import AmountMismatch, HandlePayError, InvalidAmount, TransferFailed
from handlepay.fees import UINT256_MAX
from handlepay.runtime.atomic import Runtime

logger = logging.getLogger(__name__)

ReceiveHook = Callable[[str, str, int], Optional[bool]]
"""on_receive(asset, sender, amount) -> False to refuse."""


@runtime_checkable
class AssetRail(Protocol):
    """Contract for asset movement backends."""

    def balance_of(self, asset: str, address: str) -> int:
        ...

    def send_value(self, sender: str, to: str, amount: int) -> bool:
        """Move native coin. Returns False on failure instead of raising."""
        ...

    def pull_from(self, token: str, owner: str, spender: str, amount: int) -> None:
        """Move ``amount`` of ``token`` from ``owner`` to ``spender`` using
        the allowance ``owner`` granted ``spender``."""
        ...

    def push_to(self, token: str, sender: str, to: str, amount: int) -> None:
        """Move ``amount`` of ``token`` held by ``sender`` to ``to``."""
        ...

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        ...

    def allowance(self, token: str, owner: str, spender: str) -> int:
        ...


class AssetBook:
    """In-memory asset rail with rollback support.

    Usage:
        book = AssetBook(runtime)
        book.mint(NATIVE_ASSET, alice, 10**18)
        ok = book.send_value(alice, bob, 10**17)
    """

    def __init__(self, runtime: Runtime) -> None:
        self._runtime = runtime
        self._balances: Dict[Tuple[str, str], int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._hooks: Dict[str, ReceiveHook] = {}
        runtime.register(self)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def balance_of(self, asset: str, address: str) -> int:
        return self._balances.get((normalize_asset(asset), normalize_address(address)), 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        key = (normalize_asset(token), normalize_address(owner), normalize_address(spender))
        return self._allowances.get(key, 0)

    def total_supply(self, asset: str) -> int:
        asset = normalize_asset(asset)
        return sum(v for (a, _), v in self._balances.items() if a == asset)

    def assets(self) -> list[str]:
        """Every asset id that currently has a non-zero balance somewhere."""
        return sorted({a for (a, _), v in self._balances.items() if v})

    # ------------------------------------------------------------------
    # Simulation controls
    # ------------------------------------------------------------------

    def mint(self, asset: str, to: str, amount: int) -> None:
        """Create ``amount`` units of ``asset`` in ``to``'s account."""
        self._require_amount(amount)
        key = (normalize_asset(asset), normalize_address(to))
        self._balances[key] = self._balances.get(key, 0) + amount

    def set_receive_hook(self, address: str, hook: Optional[ReceiveHook]) -> None:
        """Install (or clear, with None) the hook run when ``address`` receives value."""
        address = normalize_address(address)
        if hook is None:
            self._hooks.pop(address, None)
        else:
            self._hooks[address] = hook

    # ------------------------------------------------------------------
    # Rail operations
    # ------------------------------------------------------------------

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        token = normalize_asset(token)
        if is_native(token):
            raise TransferFailed("Native coin has no allowances")
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise InvalidAmount(f"Allowance must be a non-negative int, got {amount!r}")
        key = (token, normalize_address(owner), normalize_address(spender))
        self._allowances[key] = amount

    def send_value(self, sender: str, to: str, amount: int) -> bool:
        try:
            with self._runtime.atomic():
                self._move(NATIVE_ASSET, sender, to, amount)
                self._notify(NATIVE_ASSET, sender, to, amount)
        except TransferFailed as exc:
            logger.debug("Native transfer %s -> %s failed: %s", sender, to, exc)
            return False
        return True

    def pull_from(self, token: str, owner: str, spender: str, amount: int) -> None:
        token = self._require_token(token)
        owner = normalize_address(owner)
        spender = normalize_address(spender)
        with self._runtime.atomic():
            key = (token, owner, spender)
            allowed = self._allowances.get(key, 0)
            if allowed < amount:
                raise TransferFailed(
                    f"Insufficient allowance: {owner} approved {allowed} "
                    f"to {spender}, needs {amount}"
                )
            self._allowances[key] = allowed - amount
            self._move(token, owner, spender, amount)
            self._notify(token, owner, spender, amount)

    def push_to(self, token: str, sender: str, to: str, amount: int) -> None:
        token = self._require_token(token)
        with self._runtime.atomic():
            self._move(token, sender, to, amount)
            self._notify(token, sender, to, amount)

    # ------------------------------------------------------------------
    # Rollback participant
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        return (dict(self._balances), dict(self._allowances))

    def restore(self, state: Any) -> None:
        balances, allowances = state
        self._balances = dict(balances)
        self._allowances = dict(allowances)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        """Serialize balances and allowances (hooks are not persisted)."""
        return {
            "balances": [
                {"asset": asset, "address": address, "amount": str(amount)}
                for (asset, address), amount in sorted(self._balances.items())
                if amount
            ],
            "allowances": [
                {
                    "token": token,
                    "owner": owner,
                    "spender": spender,
                    "amount": str(amount),
                }
                for (token, owner, spender), amount in sorted(self._allowances.items())
                if amount
            ],
        }

    @classmethod
    def from_dict(cls, data: dict, runtime: Runtime) -> "AssetBook":
        book = cls(runtime)
        for entry in data.get("balances", []):
            book._balances[(entry["asset"], entry["address"])] = int(entry["amount"])
        for entry in data.get("allowances", []):
            key = (entry["token"], entry["owner"], entry["spender"])
            book._allowances[key] = int(entry["amount"])
        return book

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise InvalidAmount(f"Amount must be an int, got {type(amount).__name__}")
        if amount < 0 or amount > UINT256_MAX:
            raise InvalidAmount(f"Amount out of range: {amount}")

    @staticmethod
    def _require_token(token: str) -> str:
        token = normalize_asset(token)
        if is_native(token):
            raise TransferFailed("Token operation requested for the native coin")
        return token

    def _move(self, asset: str, sender: str, to: str, amount: int) -> None:
        self._require_amount(amount)
        sender = normalize_address(sender)
        to = normalize_address(to)
        held = self._balances.get((asset, sender), 0)
        if held < amount:
            raise TransferFailed(
                f"Insufficient balance: {sender} holds {held} of {asset}, needs {amount}"
            )
        self._balances[(asset, sender)] = held - amount
        self._balances[(asset, to)] = self._balances.get((asset, to), 0) + amount

    def _notify(self, asset: str, sender: str, to: str, amount: int) -> None:
        hook = self._hooks.get(normalize_address(to))
        if hook is None:
            return
        try:
            accepted = hook(asset, normalize_address(sender), amount)
        except HandlePayError as exc:
            raise TransferFailed(f"Recipient {to} reverted: {exc}") from exc
        if accepted is False:
            raise TransferFailed(f"Recipient {to} refused {amount} of {asset}")


def collect(rail: AssetRail, asset: str, payer: str, collector: str, amount: int) -> None:
    """Bring ``amount`` of ``asset`` from ``payer`` into ``collector``'s custody.

    For the native coin this is the value attached to the call; for a
    token it is a pull against the allowance ``payer`` granted.
    """
    if is_native(asset):
        if not rail.send_value(payer, collector, amount):
            raise TransferFailed(
                f"Could not collect {amount} native units from {payer}"
            )
    else:
        rail.pull_from(asset, payer, collector, amount)


def deliver(rail: AssetRail, asset: str, sender: str, to: str, amount: int) -> None:
    """Move ``amount`` of ``asset`` out of ``sender``'s custody to ``to``.

    Raises TransferFailed whatever the asset kind.
    """
    if is_native(asset):
        if not rail.send_value(sender, to, amount):
            raise TransferFailed(f"Native transfer of {amount} to {to} failed")
    else:
        rail.push_to(asset, sender, to, amount)


def check_attached_value(asset: str, total: int, value: Optional[int]) -> None:
    """Attached native value must equal the declared total exactly.

    Token batches pull their total instead and must not attach value.
    """
    if is_native(asset):
        if value != total:
            raise AmountMismatch(
                f"Attached value {value} does not equal batch total {total}"
            )
    elif value:
        raise AmountMismatch(f"Token batch must not attach native value, got {value}")

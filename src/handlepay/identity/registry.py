"""Identity lookup capability and an in-memory registry for simulation.

The protocol consumes identity resolution read-only through the
IdentityLookup Protocol and never caches a result across calls: the
owner of a handle is whatever ``resolve`` returns at the moment of the
call. Registration rules (pricing, expiry, disputes) belong to the
external registry and are not modelled here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from handlepay.addresses import normalize_address, require_handle
from handlepay.errors import InvalidHandle
from handlepay.persistence.event_log import EventKind
from handlepay.runtime.atomic import Runtime

logger = logging.getLogger(__name__)


@runtime_checkable
class IdentityLookup(Protocol):
    """Single-method resolver. ``None`` means the handle is unregistered."""

    def resolve(self, handle: str) -> Optional[str]:
        ...


class InMemoryIdentityRegistry:
    """Handle → owner map used by the simulation and tests.

    Usage:
        registry = InMemoryIdentityRegistry(runtime)
        registry.register("alice", alice_address)
        registry.resolve("alice")   # -> alice_address
        registry.resolve("bob")     # -> None
    """

    def __init__(self, runtime: Runtime) -> None:
        self._runtime = runtime
        self._owners: Dict[str, str] = {}
        runtime.register(self)

    def resolve(self, handle: str) -> Optional[str]:
        return self._owners.get(handle)

    def register(self, handle: str, owner: str) -> None:
        """Bind ``handle`` to ``owner``.

        Raises InvalidHandle if the handle is already bound to a
        different owner.
        """
        require_handle(handle)
        owner = normalize_address(owner)
        current = self._owners.get(handle)
        if current is not None and current != owner:
            raise InvalidHandle(f"Handle already registered: {handle}")
        with self._runtime.atomic():
            self._owners[handle] = owner
            self._runtime.emit(
                EventKind.HANDLE_REGISTERED, owner, {"handle": handle, "owner": owner},
            )
        logger.info("Registered handle %r to %s", handle, owner)

    def release(self, handle: str) -> None:
        """Unbind ``handle``. Raises InvalidHandle if it is not registered."""
        if handle not in self._owners:
            raise InvalidHandle(f"Handle not registered: {handle}")
        with self._runtime.atomic():
            owner = self._owners.pop(handle)
            self._runtime.emit(
                EventKind.HANDLE_RELEASED, owner, {"handle": handle, "owner": owner},
            )

    def handles(self) -> list[str]:
        return sorted(self._owners)

    def snapshot(self) -> Any:
        return dict(self._owners)

    def restore(self, state: Any) -> None:
        self._owners = dict(state)

    def to_dict(self) -> dict:
        return {"owners": dict(sorted(self._owners.items()))}

    @classmethod
    def from_dict(cls, data: dict, runtime: Runtime) -> "InMemoryIdentityRegistry":
        registry = cls(runtime)
        registry._owners = {h: normalize_address(o) for h, o in data.get("owners", {}).items()}
        return registry

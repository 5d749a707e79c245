"""Runtime — all-or-nothing execution of protocol calls.

Every protocol entry point runs inside ``runtime.atomic()``. Each atomic
block is a savepoint: on entry it snapshots every registered participant,
and if the block raises, every participant is restored to that snapshot
and the events emitted inside the block are discarded before the
exception propagates. Nested blocks (a dispatcher calling into the escrow
ledger, an asset transfer invoking a recipient hook) are savepoints of
their own, so a nested failure that the caller handles never leaks a
partial change either.

Events are buffered while any block is open and committed to the
EventLog as the outermost block completes, still inside its savepoint: a
failed log write rolls the call back like any other error. Records the
log accepted before the failing one stay, since the log is append-only.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional, Protocol, runtime_checkable

from handlepay.persistence.event_log import EventKind, EventLog, EventRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class Participant(Protocol):
    """Anything whose state must roll back with a failed call."""

    def snapshot(self) -> Any:
        """Return an independent copy of all mutable state."""
        ...

    def restore(self, state: Any) -> None:
        """Replace all mutable state with a previous snapshot."""
        ...


class Runtime:
    """Hosts protocol components and gives each call atomic semantics.

    Usage:
        runtime = Runtime(event_log=EventLog())
        assets = AssetBook(runtime)           # registers itself
        with runtime.atomic():
            ...                               # all or nothing
    """

    def __init__(
        self,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._event_log = event_log if event_log is not None else EventLog()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._participants: list[Participant] = []
        self._pending: list[tuple[EventKind, str, dict[str, Any]]] = []
        self._depth = 0
        # Continue numbering from a persisted log to avoid ID collisions
        self._event_counter = self._event_log.count

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def in_call(self) -> bool:
        return self._depth > 0

    def register(self, participant: Participant) -> None:
        if not isinstance(participant, Participant):
            raise TypeError(
                f"Participant must implement snapshot/restore, got {type(participant)}"
            )
        if any(p is participant for p in self._participants):
            return
        self._participants.append(participant)

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Savepoint: restore every participant if the block raises."""
        snapshots = [(p, p.snapshot()) for p in self._participants]
        pending_mark = len(self._pending)
        self._depth += 1
        try:
            yield
            # A failed log write rolls the whole call back
            if self._depth == 1:
                self._commit()
        except BaseException as exc:
            for participant, state in snapshots:
                participant.restore(state)
            discarded = len(self._pending) - pending_mark
            del self._pending[pending_mark:]
            logger.warning(
                "Rolled back call at depth %d (%s: %s); discarded %d event(s)",
                self._depth, type(exc).__name__, exc, discarded,
            )
            raise
        finally:
            self._depth -= 1

    def emit(self, kind: EventKind, actor_id: str, payload: dict[str, Any]) -> None:
        """Buffer an event for the current call.

        Outside any call the event is committed immediately.
        """
        self._pending.append((kind, actor_id, payload))
        if self._depth == 0:
            self._commit()

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _commit(self) -> None:
        pending, self._pending = self._pending, []
        now = self.now()
        for kind, actor_id, payload in pending:
            self._event_log.append(
                EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    actor_id=actor_id,
                    payload=payload,
                    timestamp_utc=now,
                )
            )

"""Persistence — append-only audit log and deployment state snapshots."""

from handlepay.persistence.event_log import EventKind, EventLog, EventRecord
from handlepay.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]

"""Execution runtime — all-or-nothing calls and per-component call guards."""

from handlepay.runtime.atomic import Participant, Runtime
from handlepay.runtime.guard import ReentrancyGuard

__all__ = ["Participant", "ReentrancyGuard", "Runtime"]

"""Reentrancy guard — one call-in-progress flag per component instance."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from handlepay.errors import ReentrantCall


class ReentrancyGuard:
    """Scoped mutual exclusion for a component's state-mutating entry points.

    The flag is released on every exit path, including errors. It is not
    part of any rollback snapshot: it only ever reflects the call stack.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._entered = False

    @property
    def entered(self) -> bool:
        return self._entered

    @contextmanager
    def enter(self) -> Iterator[None]:
        if self._entered:
            raise ReentrantCall(f"Reentrant call into {self._name}")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

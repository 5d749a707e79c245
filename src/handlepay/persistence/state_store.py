"""State store — JSON snapshot of a whole deployment.

The snapshot holds every component's to_dict() output under one key per
component. Writes go to a temporary sibling file first and are then
renamed over the target, so a crash mid-write never leaves a truncated
state file behind.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


class StateStore:
    """Durable JSON state for a deployment.

    Usage:
        store = StateStore(Path("data/state.json"))
        store.save(service.to_dict())
        data = store.load()  # None if nothing saved yet
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def load(self) -> Optional[dict[str, Any]]:
        if not self._storage_path.exists():
            return None
        return json.loads(self._storage_path.read_text(encoding="utf-8"))

    def save(self, state: dict[str, Any]) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(state, indent=2, sort_keys=True, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, self._storage_path)

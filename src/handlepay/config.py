"""Protocol parameters — fee rates, stakeholder shares, administrative owner.

Loaded from config/protocol_params.json. The file only supplies the
initial values for a new deployment; afterwards each component owns its
configuration and changes it through its authorized setters.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from handlepay.addresses import normalize_address
from handlepay.dispatch.dispatcher import MAX_DISPATCHER_FEE_BPS
from handlepay.distribution.distributor import StakeShare
from handlepay.errors import InvalidShares
from handlepay.escrow.ledger import MAX_LEDGER_FEE_BPS
from handlepay.fees import BPS_DENOMINATOR, validate_rate

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
PARAMS_FILENAME = "protocol_params.json"


@dataclass(frozen=True)
class ProtocolParams:
    """Validated deployment parameters."""

    owner: str
    dispatcher_fee_bps: int
    ledger_fee_bps: int
    stakeholders: tuple[StakeShare, StakeShare]

    def __post_init__(self) -> None:
        validate_rate(self.dispatcher_fee_bps, MAX_DISPATCHER_FEE_BPS)
        validate_rate(self.ledger_fee_bps, MAX_LEDGER_FEE_BPS)
        if len(self.stakeholders) != 2:
            raise InvalidShares("Exactly two stakeholders required")
        total = sum(s.share_bps for s in self.stakeholders)
        if total != BPS_DENOMINATOR:
            raise InvalidShares(
                f"Stakeholder shares must sum to {BPS_DENOMINATOR} bps, got {total}"
            )

    @classmethod
    def from_dict(cls, params: dict) -> ProtocolParams:
        stakeholders = tuple(
            StakeShare(normalize_address(s["address"]), int(s["share_bps"]))
            for s in params["fee_distributor"]["stakeholders"]
        )
        return cls(
            owner=normalize_address(params["owner"]),
            dispatcher_fee_bps=int(params["dispatcher"]["fee_rate_bps"]),
            ledger_fee_bps=int(params["escrow_ledger"]["fee_rate_bps"]),
            stakeholders=stakeholders,  # type: ignore[arg-type]
        )

    @classmethod
    def from_config_file(cls, config_dir: Optional[Path] = None) -> ProtocolParams:
        """Load from ``<config_dir>/protocol_params.json``."""
        config_path = (config_dir or DEFAULT_CONFIG_DIR) / PARAMS_FILENAME
        return cls.from_dict(json.loads(config_path.read_text(encoding="utf-8")))

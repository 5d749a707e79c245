#!/usr/bin/env python3
"""HandlePay invariant checks against the parameter file and saved state."""

import json
import sys
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "protocol_params.json"
STATE_PATH = ROOT / "data" / "state.json"

BPS_DENOMINATOR = 10_000
DISPATCHER_FEE_CEILING = 300
LEDGER_FEE_CEILING = 1_000
ZERO_ADDRESS = "0x" + "0" * 40


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_rate(label: str, rate: int, ceiling: int, errors: list[str]) -> None:
    if not isinstance(rate, int) or isinstance(rate, bool):
        errors.append(f"{label} fee rate must be an integer, got {rate!r}")
    elif not 0 <= rate <= ceiling:
        errors.append(f"{label} fee rate {rate} bps outside [0, {ceiling}]")


def check_params(params: dict, errors: list[str]) -> None:
    """Validate fee rates, shares and addresses in the parameter file."""
    check_rate("dispatcher", params["dispatcher"]["fee_rate_bps"], DISPATCHER_FEE_CEILING, errors)
    check_rate("escrow_ledger", params["escrow_ledger"]["fee_rate_bps"], LEDGER_FEE_CEILING, errors)

    stakeholders = params["fee_distributor"]["stakeholders"]
    if len(stakeholders) != 2:
        errors.append(f"exactly two stakeholders required, got {len(stakeholders)}")
    shares = [s["share_bps"] for s in stakeholders]
    if any(share < 0 for share in shares):
        errors.append("stakeholder shares must be non-negative")
    if sum(shares) != BPS_DENOMINATOR:
        errors.append(f"stakeholder shares must sum to {BPS_DENOMINATOR}, got {sum(shares)}")
    addresses = [s["address"].lower() for s in stakeholders]
    if len(set(addresses)) != len(addresses):
        errors.append("stakeholder addresses must be distinct")
    for address in addresses + [params["owner"].lower()]:
        if address == ZERO_ADDRESS:
            errors.append("zero address configured as owner or stakeholder")


def check_state(state: dict, errors: list[str]) -> None:
    """Custody must cover every claim on it, per component and asset."""
    held: dict[tuple[str, str], int] = {}
    for entry in state["assets"]["balances"]:
        held[(entry["asset"], entry["address"])] = int(entry["amount"])

    ledger = state["escrow_ledger"]
    escrowed: dict[str, int] = {}
    for balances in ledger["balances"].values():
        for asset, amount in balances.items():
            if int(amount) < 0:
                errors.append(f"negative escrow balance for {asset}")
            escrowed[asset] = escrowed.get(asset, 0) + int(amount)
    ledger_fees = {a: int(v) for a, v in ledger["accumulated_fees"].items()}
    for asset in set(escrowed) | set(ledger_fees):
        owed = escrowed.get(asset, 0) + ledger_fees.get(asset, 0)
        custody = held.get((asset, ledger["address"]), 0)
        if owed > custody:
            errors.append(
                f"escrow ledger owes {owed} of {asset} but holds only {custody}"
            )

    dispatcher = state["dispatcher"]
    for asset, amount in dispatcher["accumulated_fees"].items():
        custody = held.get((asset, dispatcher["address"]), 0)
        if int(amount) > custody:
            errors.append(
                f"dispatcher fee pool {amount} of {asset} exceeds custody {custody}"
            )


def check(params_path: Path = PARAMS_PATH, state_path: Optional[Path] = STATE_PATH) -> int:
    errors: list[str] = []
    check_params(load_json(params_path), errors)
    if state_path is not None and state_path.exists():
        check_state(load_json(state_path), errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"  - {err}")
        return 1
    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    sys.exit(check())

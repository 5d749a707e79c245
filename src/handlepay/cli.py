"""HandlePay CLI — command-line interface for a persisted deployment.

Usage:
    python -m handlepay.cli status
    python -m handlepay.cli mint --to 0xabc... --amount 1000000000000000000
    python -m handlepay.cli transfer --sender 0xabc... --handle alice --amount 1000
    python -m handlepay.cli register-handle --handle alice --owner 0xdef...
    python -m handlepay.cli withdraw --caller 0xdef... --handle alice
    python -m handlepay.cli pull-fees --caller 0x111... --source ledger
    python -m handlepay.cli claim-share --caller 0x111...
    python -m handlepay.cli check-invariants

Amounts are integer base units. ``--asset`` takes a token address; when
omitted the native coin is used. The config and data directories default
to HANDLEPAY_CONFIG / HANDLEPAY_DATA (a .env file is honoured) and then to
config/ and data/ at the repository root.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from handlepay.config import DEFAULT_CONFIG_DIR, PARAMS_FILENAME, ProtocolParams
from handlepay.persistence.event_log import EventLog
from handlepay.persistence.state_store import StateStore
from handlepay.service import HandlePayService, ServiceResult


DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(config_dir: Path, data_dir: Path) -> HandlePayService:
    """Create a HandlePayService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    params = ProtocolParams.from_config_file(config_dir)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(storage_path=data_dir / "state.json")
    return HandlePayService(params, event_log=event_log, state_store=state_store)


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register_handle(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.register_handle(args.handle, args.owner))


def cmd_release_handle(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.release_handle(args.handle))


def cmd_mint(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.mint(args.asset, args.to, args.amount))


def cmd_approve(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    spender = service.component_address(args.spender)
    return _report(service.approve(args.asset, args.owner, spender, args.amount))


def cmd_transfer(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.transfer(args.sender, args.handle, args.amount, args.asset))


def cmd_batch_transfer(args: argparse.Namespace) -> int:
    handles: list[str] = []
    amounts: list[int] = []
    for item in args.to:
        handle, sep, amount = item.rpartition(":")
        if not sep or not handle:
            print(f"Failed: expected HANDLE:AMOUNT, got {item!r}", file=sys.stderr)
            return 1
        try:
            amounts.append(int(amount))
        except ValueError:
            print(f"Failed: amount must be an integer in {item!r}", file=sys.stderr)
            return 1
        handles.append(handle)
    service = _make_service(args.config, args.data)
    return _report(service.batch_transfer(args.sender, handles, amounts, args.asset))


def cmd_deposit(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.deposit(args.sender, args.handle, args.amount, args.asset))


def cmd_withdraw(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.withdraw(args.caller, args.handle, args.asset))


def cmd_withdraw_all(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.withdraw_all(args.caller, args.handle, args.asset or ()))


def cmd_balance(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.balance(args.handle, args.asset))


def cmd_pull_fees(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    assets = args.asset or [None]
    return _report(service.pull_fees(args.caller, args.source, assets))


def cmd_claim_share(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.claim_share(args.caller, args.asset))


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run parameter and ledger conservation checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config / PARAMS_FILENAME, args.data / "state.json")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="handlepay",
        description="HandlePay — handle-addressed transfers with escrow",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config directory (default: $HANDLEPAY_CONFIG or config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Path to data directory (default: $HANDLEPAY_DATA or data/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show deployment status")

    p_reg = sub.add_parser("register-handle", help="Bind a handle to an address")
    p_reg.add_argument("--handle", required=True)
    p_reg.add_argument("--owner", required=True, help="Owner address")

    p_rel = sub.add_parser("release-handle", help="Unbind a handle")
    p_rel.add_argument("--handle", required=True)

    p_mint = sub.add_parser("mint", help="Credit simulation funds to an address")
    p_mint.add_argument("--to", required=True)
    p_mint.add_argument("--amount", required=True, type=int)
    p_mint.add_argument("--asset", help="Token address (default: native coin)")

    p_appr = sub.add_parser("approve", help="Approve a component to pull tokens")
    p_appr.add_argument("--owner", required=True)
    p_appr.add_argument("--spender", required=True, choices=["dispatcher", "ledger"])
    p_appr.add_argument("--amount", required=True, type=int)
    p_appr.add_argument("--asset", required=True, help="Token address")

    p_tx = sub.add_parser("transfer", help="Send to a handle")
    p_tx.add_argument("--sender", required=True)
    p_tx.add_argument("--handle", required=True)
    p_tx.add_argument("--amount", required=True, type=int)
    p_tx.add_argument("--asset", help="Token address (default: native coin)")

    p_batch = sub.add_parser("batch-transfer", help="Send to several handles at once")
    p_batch.add_argument("--sender", required=True)
    p_batch.add_argument(
        "--to", required=True, nargs="+", metavar="HANDLE:AMOUNT",
        help="Recipients as handle:amount pairs",
    )
    p_batch.add_argument("--asset", help="Token address (default: native coin)")

    p_dep = sub.add_parser("deposit", help="Escrow funds for a handle directly")
    p_dep.add_argument("--sender", required=True)
    p_dep.add_argument("--handle", required=True)
    p_dep.add_argument("--amount", required=True, type=int)
    p_dep.add_argument("--asset", help="Token address (default: native coin)")

    p_wd = sub.add_parser("withdraw", help="Withdraw a handle's escrow")
    p_wd.add_argument("--caller", required=True)
    p_wd.add_argument("--handle", required=True)
    p_wd.add_argument("--asset", help="Token address (default: native coin)")

    p_wda = sub.add_parser("withdraw-all", help="Withdraw native plus listed tokens")
    p_wda.add_argument("--caller", required=True)
    p_wda.add_argument("--handle", required=True)
    p_wda.add_argument("--asset", action="append", help="Token address (repeatable)")

    p_bal = sub.add_parser("balance", help="Show a handle's escrow balance")
    p_bal.add_argument("--handle", required=True)
    p_bal.add_argument("--asset", help="Token address (default: native coin)")

    p_pull = sub.add_parser("pull-fees", help="Pull fee pools into the distributor")
    p_pull.add_argument("--caller", required=True)
    p_pull.add_argument("--source", required=True, choices=["dispatcher", "ledger"])
    p_pull.add_argument("--asset", action="append", help="Token address (repeatable)")

    p_share = sub.add_parser("claim-share", help="Claim a stakeholder share")
    p_share.add_argument("--caller", required=True)
    p_share.add_argument("--asset", help="Token address (default: native coin)")

    sub.add_parser("check-invariants", help="Run parameter and conservation checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    if args.config is None:
        args.config = Path(os.environ.get("HANDLEPAY_CONFIG", DEFAULT_CONFIG_DIR))
    if args.data is None:
        args.data = Path(os.environ.get("HANDLEPAY_DATA", DEFAULT_DATA))

    commands = {
        "status": cmd_status,
        "register-handle": cmd_register_handle,
        "release-handle": cmd_release_handle,
        "mint": cmd_mint,
        "approve": cmd_approve,
        "transfer": cmd_transfer,
        "batch-transfer": cmd_batch_transfer,
        "deposit": cmd_deposit,
        "withdraw": cmd_withdraw,
        "withdraw-all": cmd_withdraw_all,
        "balance": cmd_balance,
        "pull-fees": cmd_pull_fees,
        "claim-share": cmd_claim_share,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())

"""
Command-line interface for Pharma Ledger.

Commands:
- run: Start the API server with periodic sync and webhook workers
- check: Report chain breaks, unfinished operations and ledger divergence
- reconcile: Replay unfinished operations from the outbox
- sync-once: Run one sync cycle (all tables, or one)
- verify-drug: Verify a drug against the common ledger and the chain
- config: Show which configuration is in effect (secrets masked)

Usage:
    pharma-ledger run [--host HOST] [--port PORT]
    pharma-ledger check [--verify-hashes]
    pharma-ledger reconcile
    pharma-ledger sync-once [--table TABLE]
    pharma-ledger verify-drug DRUG_ID
    pharma-ledger config

Every command accepts ``--config PATH`` to load a specific INI file instead
of config/ledger.ini.
"""

import argparse
import json
import sys
from pathlib import Path

from pharma_ledger import config as config_module
from pharma_ledger.errors import LedgerError
from pharma_ledger.logging_config import configure_logging


def _load(args: argparse.Namespace) -> config_module.LedgerConfig:
    cfg = config_module.load_config(args.config) if args.config else config_module.config
    configure_logging(cfg.logging)
    return cfg


def _services(args: argparse.Namespace):
    from pharma_ledger.core.services import build_services

    return build_services(_load(args))


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_run(args: argparse.Namespace) -> int:
    """
    Start the API server.

    Returns:
        0 on clean shutdown, 1 on startup error
    """
    import uvicorn

    from pharma_ledger.api.server import create_app

    try:
        services = _services(args)
    except LedgerError as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1

    cfg = services.config
    host = args.host or cfg.server.host
    port = args.port or cfg.server.port
    print(f"Starting Pharma Ledger API on {host}:{port}")
    uvicorn.run(create_app(services), host=host, port=port, log_config=None)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """
    Run the consistency check.

    Returns:
        0 when consistent, 1 otherwise
    """
    try:
        services = _services(args)
        report = services.manager.consistency_check()
        if args.verify_hashes:
            report["chain"] = services.chain.consistency_check(verify_hashes=True)
            if report["chain"]["status"] != "consistent":
                report["status"] = report["chain"]["status"]
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_json(report)
    return 0 if report["status"] == "consistent" else 1


def cmd_reconcile(args: argparse.Namespace) -> int:
    """
    Replay unfinished operations.

    Returns:
        0 when every open operation was replayed, 1 otherwise
    """
    try:
        result = _services(args).manager.reconcile()
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_json(result)
    return 1 if result["failed"] else 0


def cmd_sync_once(args: argparse.Namespace) -> int:
    """
    Run one sync cycle.

    Returns:
        0 when no table reported an error, 1 otherwise
    """
    try:
        statuses = _services(args).sync.force_sync(args.table)
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_json([status.to_dict() for status in statuses])
    return 1 if any(status.status == "error" for status in statuses) else 0


def cmd_verify_drug(args: argparse.Namespace) -> int:
    """
    Verify one drug.

    Returns:
        0 when verified, 1 on mismatch or error
    """
    try:
        verified = _services(args).manager.verify_drug(args.drug_id)
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"{args.drug_id}: {'verified' if verified else 'NOT verified'}")
    return 0 if verified else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Print the configuration status."""
    _print_json(config_module.get_config_status(_load(args), args.config))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="pharma-ledger",
        description="Pharma Ledger - drug and shipment provenance service",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="INI file to load instead of config/ledger.ini",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the API server",
        description="Start the API server with periodic sync and webhook workers.",
    )
    run_parser.add_argument(
        "--port",
        "-p",
        type=int,
        help="API server port (default: 3000, or PHARMA_PORT env var)",
    )
    run_parser.add_argument(
        "--host",
        type=str,
        help="Host to bind to (default: 0.0.0.0, or PHARMA_HOST env var)",
    )
    run_parser.set_defaults(func=cmd_run)

    # check command
    check_parser = subparsers.add_parser(
        "check",
        help="Report inconsistencies",
        description="Walk the chain and report unfinished operations and ledger divergence.",
    )
    check_parser.add_argument(
        "--verify-hashes",
        action="store_true",
        help="Also recompute every block's transaction hash",
    )
    check_parser.set_defaults(func=cmd_check)

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Replay unfinished operations",
        description="Replay every open outbox intent. Completed steps are skipped.",
    )
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # sync-once command
    sync_parser = subparsers.add_parser(
        "sync-once",
        help="Run one sync cycle",
        description="Chain store rows that have no finalised transaction.",
    )
    sync_parser.add_argument("--table", type=str, help="Sync only this table")
    sync_parser.set_defaults(func=cmd_sync_once)

    # verify-drug command
    verify_parser = subparsers.add_parser(
        "verify-drug",
        help="Verify a drug",
        description="Compare verification hashes and validate the drug's latest transaction.",
    )
    verify_parser.add_argument("drug_id", help="Drug id to verify")
    verify_parser.set_defaults(func=cmd_verify_drug)

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show configuration status",
        description="Print the configuration in effect. Secrets are shown as present or absent.",
    )
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

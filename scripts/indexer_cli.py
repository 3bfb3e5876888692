#!/usr/bin/env python3
"""Genesis migration, checkpoint and validation CLI."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any, Optional, Sequence

# Ensure repository root is importable when script is executed by path.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from indexer.checkpoint import checkpoint
from indexer.config import IndexerConfig, load_indexer_config
from indexer.genesis import load_genesis_document
from indexer.migration_generator import MigrationGenerator
from indexer.migrations import apply_migration_file, bootstrap_chain_schema
from indexer.storage import PostgresClient
from indexer.validation import validate_checkpoint

logger = logging.getLogger("indexer.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Genesis state migration CLI")
    parser.add_argument("--dsn", help="PostgreSQL DSN (overrides INDEXER_STORAGE_ENDPOINT)")
    parser.add_argument("--chain-context", help="Chain context for signature separation")

    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_cmd = subparsers.add_parser("generate", help="Generate a migration from a genesis file")
    generate_cmd.add_argument("--genesis", required=True, type=Path)
    generate_cmd.add_argument("--output", required=True, type=Path)

    init_cmd = subparsers.add_parser("init-schema", help="Create the chain schema and tables")
    init_cmd.add_argument("--genesis", required=True, type=Path)

    apply_cmd = subparsers.add_parser("apply", help="Apply a generated migration in one transaction")
    apply_cmd.add_argument("--migration", required=True, type=Path)
    apply_cmd.add_argument("--chain-id", help="Chain whose processed height is recorded with --height")
    apply_cmd.add_argument("--height", type=int, default=None)

    checkpoint_cmd = subparsers.add_parser("checkpoint", help="Snapshot height-dependent tables")
    checkpoint_cmd.add_argument("--chain-id", required=True)

    validate_cmd = subparsers.add_parser("validate", help="Compare the latest checkpoint to a genesis file")
    validate_cmd.add_argument("--genesis", required=True, type=Path)

    return parser


def _open_client(args: argparse.Namespace, config: IndexerConfig) -> PostgresClient:
    dsn = args.dsn or config.require_storage_endpoint()
    return PostgresClient(
        dsn,
        max_conns=config.storage_max_conns,
        statement_timeout=config.statement_timeout_seconds,
    )


def _run_storage_command(
    args: argparse.Namespace,
    config: IndexerConfig,
    chain_context: Optional[str],
) -> tuple[dict[str, Any], int]:
    if args.command == "apply" and (args.height is None) != (args.chain_id is None):
        raise SystemExit("apply --chain-id and --height must be given together.")

    client = _open_client(args, config)
    try:
        if args.command == "init-schema":
            document = load_genesis_document(args.genesis)
            schema = bootstrap_chain_schema(client, document.chain_id)
            return {"chain_id": document.chain_id, "schema": schema}, 0

        if args.command == "apply":
            processed = (args.chain_id, args.height) if args.height is not None else None
            statements = apply_migration_file(client, args.migration, processed_height=processed)
            return {"migration": str(args.migration), "statements": statements}, 0

        if args.command == "checkpoint":
            height = checkpoint(client, args.chain_id)
            return {"chain_id": args.chain_id, "height": height}, 0

        document = load_genesis_document(args.genesis)
        report = validate_checkpoint(document, client, chain_context=chain_context)
        payload = {"chain_id": document.chain_id, **report.as_dict()}
        return payload, 0 if report.ok else 2
    finally:
        client.shutdown()


def _report_error(exc: RuntimeError) -> int:
    # Configuration problems surface as RuntimeError; indexer failures subclass it.
    print(json.dumps({"error": type(exc).__name__, "detail": str(exc)}, sort_keys=True))
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_indexer_config()
    except RuntimeError as exc:
        return _report_error(exc)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    chain_context = args.chain_context or config.chain_context

    try:
        if args.command == "generate":
            document = load_genesis_document(args.genesis)
            generator = MigrationGenerator(
                max_rows_per_insert=config.migration_max_rows_per_insert,
                chain_context=chain_context,
            )
            script = generator.write(args.output, document)
            payload = {
                "chain_id": document.chain_id,
                "output": str(args.output),
                "bytes": len(script.encode("utf-8")),
            }
            exit_code = 0
        else:
            payload, exit_code = _run_storage_command(args, config, chain_context)
    except RuntimeError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return _report_error(exc)

    print(json.dumps(payload, sort_keys=True))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())

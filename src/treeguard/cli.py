"""Command-line entrypoint."""

from __future__ import annotations

import argparse
import json
import sys
import uuid
from pathlib import Path
from typing import TextIO

from treeguard.config import CliOverrides, load_effective_config
from treeguard.errors import (
    ConfigError,
    IntegrityError,
    LockHeldError,
    TreeguardError,
    WriteFailedError,
)
from treeguard.logging import AuditEvent, JsonlAuditLogger, summarize_result, utc_timestamp
from treeguard.models import Banlist
from treeguard.runner import IntegrityRunner, UpdateResult

EXIT_OK = 0
EXIT_VERIFY_FAILED = 1
EXIT_INTEGRITY = 2
EXIT_CONFIG = 3
EXIT_WRITE = 4
EXIT_INTERNAL = 5

READ_ONLY_COMMANDS = frozenset(
    {"verify", "status", "log", "ban.list", "duplicates", "relative-checksum"}
)


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for global options and subcommands."""
    parser = argparse.ArgumentParser(prog="treeguard")
    parser.add_argument("--root", required=False, default=".")
    parser.add_argument("--storage-dir", required=False, default=None)
    parser.add_argument("--algorithm", required=False, default=None)
    parser.add_argument("--workers", type=int, required=False, default=None)
    parser.add_argument("--io-budget-seconds", type=float, required=False, default=None)
    parser.add_argument("--max-backups", type=int, required=False, default=None)
    parser.add_argument("--expire-after", type=int, required=False, default=None)
    parser.add_argument("--lock", choices=("true", "false"), required=False, default=None)

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init", help="Create the storage directory and default banlist.")
    commands.add_parser("update", help="Rescan the tree and persist a new manifest.")
    verify = commands.add_parser("verify", help="Re-hash tracked files without writing.")
    verify.add_argument("--prefix", required=False, default=None)
    commands.add_parser("status", help="Show stored files and effective config.")

    ban = commands.add_parser("ban", help="Inspect or edit the banlist.")
    ban_actions = ban.add_subparsers(dest="ban_action", required=True)
    ban_actions.add_parser("list")
    ban_add = ban_actions.add_parser("add")
    ban_add.add_argument("patterns", nargs="+")
    ban_remove = ban_actions.add_parser("remove")
    ban_remove.add_argument("patterns", nargs="+")

    commands.add_parser("duplicates", help="List paths sharing a digest.")
    relative = commands.add_parser(
        "relative-checksum", help="Location-independent digest of a subtree."
    )
    relative.add_argument("prefix")

    log = commands.add_parser("log", help="Show recent audit events.")
    log.add_argument("--limit", type=int, required=False, default=20)
    log.add_argument("--since", required=False, default=None)
    return parser


def main(argv: list[str] | None = None, out_stream: TextIO | None = None) -> int:
    """Run one command and print its JSON envelope; return the exit status."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    stream = out_stream if out_stream is not None else sys.stdout
    command = _command_name(args)
    run_id = f"run-{uuid.uuid4().hex[:12]}"

    lock: bool | None = None
    if args.lock == "true":
        lock = True
    if args.lock == "false":
        lock = False
    overrides = CliOverrides(
        storage_dir=Path(args.storage_dir).resolve() if args.storage_dir is not None else None,
        algorithm=args.algorithm,
        workers=args.workers,
        io_budget_seconds=args.io_budget_seconds,
        max_backups=args.max_backups,
        lock=lock,
        unreadable_expiry_runs=args.expire_after,
    )
    try:
        config = load_effective_config(Path(args.root), overrides)
    except ConfigError as error:
        _write(stream, error_response(run_id, command, error.code, error.reason, error.hint))
        return EXIT_CONFIG

    runner = IntegrityRunner(config)
    audit_logger = JsonlAuditLogger(config.audit_path)
    try:
        result, warnings, exit_code = dispatch(runner, audit_logger, args)
        response = success_response(run_id, command, result, warnings)
    except TreeguardError as error:
        exit_code = exit_code_for(error)
        response = error_response(run_id, command, error.code, error.reason, error.hint)
    except Exception as error:
        exit_code = EXIT_INTERNAL
        response = error_response(
            run_id, command, "INTERNAL_ERROR", f"{type(error).__name__}: {error}"
        )

    if args.command in ("update", "verify"):
        response["state"] = runner.machine.state.value
    # Read-only commands never create the storage directory.
    if command not in READ_ONLY_COMMANDS or config.storage_dir.is_dir():
        log_invocation(audit_logger, run_id, command, response, exit_code)
    _write(stream, response)
    return exit_code


def dispatch(
    runner: IntegrityRunner,
    audit_logger: JsonlAuditLogger,
    args: argparse.Namespace,
) -> tuple[dict[str, object], list[str], int]:
    """Execute the parsed command; return (result, warnings, exit status)."""
    warnings: list[str] = []
    if args.command == "init":
        banlist, created = runner.init()
        return (
            {
                "banlist_created": created,
                "bans": _ban_rows(banlist),
                "storage_dir": str(runner.config.storage_dir),
            },
            warnings,
            EXIT_OK,
        )
    if args.command == "update":
        return _update_result(runner.update()), warnings, EXIT_OK
    if args.command == "verify":
        if not runner.manifest_store.exists():
            warnings.append("No manifest exists yet; run 'treeguard update' first.")
        report = runner.verify(prefix=args.prefix)
        result: dict[str, object] = {
            "ok": report.ok,
            "prefix": args.prefix,
            "verified_count": len(report.verified),
            "modified": list(report.modified),
            "missing": list(report.missing),
            "unreadable": list(report.unreadable),
            "banned": list(report.banned),
        }
        return result, warnings, EXIT_OK if report.ok else EXIT_VERIFY_FAILED
    if args.command == "status":
        status = runner.status()
        exit_code = EXIT_OK
        if "corrupt" in (status.banlist_state, status.manifest_state):
            exit_code = EXIT_INTEGRITY
        elif status.manifest_state == "mismatch":
            exit_code = EXIT_CONFIG
        return (
            {
                "config": runner.config.to_public_dict(),
                "manifest": {
                    "state": status.manifest_state,
                    "entries": status.manifest_entries,
                },
                "banlist": {
                    "state": status.banlist_state,
                    "patterns": status.ban_patterns,
                },
                "backups": [path.name for path in status.backups],
                "lock_held": status.lock_held,
                "error_code": status.error,
            },
            warnings,
            exit_code,
        )
    if args.command == "ban":
        return _ban_result(runner, args), warnings, EXIT_OK
    if args.command == "duplicates":
        groups = runner.duplicates()
        return (
            {
                "groups": [
                    {"digest": digest, "paths": list(paths)} for digest, paths in groups.items()
                ],
                "duplicate_paths": sum(len(paths) for paths in groups.values()),
            },
            warnings,
            EXIT_OK,
        )
    if args.command == "relative-checksum":
        value = runner.relative_checksum(args.prefix)
        if value is None:
            warnings.append(f"No tracked files under {args.prefix!r}.")
        return (
            {
                "algorithm": runner.config.hashing.algorithm,
                "prefix": args.prefix,
                "relative_checksum": value,
            },
            warnings,
            EXIT_OK,
        )
    if args.command == "log":
        if args.limit < 1:
            raise ConfigError(reason="--limit must be a positive integer.")
        events = audit_logger.read(since=args.since, limit=args.limit)
        return {"events": events}, warnings, EXIT_OK
    raise ConfigError(reason=f"Unknown command: {args.command}")


def success_response(
    run_id: str,
    command: str,
    result: dict[str, object],
    warnings: list[str] | None = None,
) -> dict[str, object]:
    """Build success envelope."""
    return {
        "run_id": run_id,
        "command": command,
        "ok": True,
        "result": result,
        "warnings": warnings or [],
    }


def error_response(
    run_id: str,
    command: str,
    code: str,
    message: str,
    hint: str = "",
) -> dict[str, object]:
    """Build explicit error envelope."""
    return {
        "run_id": run_id,
        "command": command,
        "ok": False,
        "result": {},
        "warnings": [],
        "error": {"code": code, "message": message, "hint": hint},
    }


def exit_code_for(error: TreeguardError) -> int:
    """Map an error class to its process exit status."""
    if isinstance(error, IntegrityError):
        return EXIT_INTEGRITY
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, (WriteFailedError, LockHeldError)):
        return EXIT_WRITE
    return EXIT_INTERNAL


def log_invocation(
    audit_logger: JsonlAuditLogger,
    run_id: str,
    command: str,
    response: dict[str, object],
    exit_code: int,
) -> None:
    """Append one sanitized event; paths are reduced to counts."""
    error_payload = response.get("error")
    error_code: str | None = None
    if isinstance(error_payload, dict):
        code_value = error_payload.get("code")
        if isinstance(code_value, str):
            error_code = code_value
    result = response.get("result")
    metadata = summarize_result(result) if isinstance(result, dict) else {}
    metadata["exit_code"] = exit_code
    state = response.get("state")
    if isinstance(state, str):
        metadata["state"] = state
    event = AuditEvent(
        timestamp=utc_timestamp(),
        run_id=run_id,
        command=command,
        ok=bool(response.get("ok", False)),
        error_code=error_code,
        metadata=metadata,
    )
    try:
        audit_logger.append(event)
    except OSError as error:
        response.setdefault("warnings", []).append(f"Audit log not written: {error}")


def _update_result(outcome: UpdateResult) -> dict[str, object]:
    report = outcome.report
    return {
        "changed": report.has_changes,
        "added": list(report.added),
        "removed": list(report.removed),
        "modified": list(report.modified),
        "unchanged_count": len(report.unchanged),
        "expired": list(report.expired),
        "unreadable": [
            {"path": path, "reason": outcome.scan.unreadable.get(path, "unreadable")}
            for path in report.unreadable
        ],
        "ignored": [
            {"path": path, "reason": reason}
            for path, reason in sorted(outcome.scan.ignored.items())
        ],
        "backup": outcome.backup_path.name if outcome.backup_path is not None else None,
        "banlist_created": outcome.banlist_created,
        "manifest_entries": outcome.manifest_entries,
        "states": [state.value for state in outcome.states],
        "elapsed_ms": outcome.elapsed_ms,
    }


def _ban_result(runner: IntegrityRunner, args: argparse.Namespace) -> dict[str, object]:
    if args.ban_action == "list":
        return {"bans": _ban_rows(runner.ban_list())}
    if args.ban_action == "add":
        before = set(runner.ban_list().patterns)
        banlist = runner.ban_add(list(args.patterns))
        added = [pattern for pattern in banlist.patterns if pattern not in before]
        return {"bans": _ban_rows(banlist), "added": added}
    banlist, missing = runner.ban_remove(list(args.patterns))
    return {"bans": _ban_rows(banlist), "not_found": list(missing)}


def _ban_rows(banlist: Banlist) -> list[dict[str, str]]:
    return [{"pattern": entry.pattern, "kind": entry.kind} for entry in banlist.entries]


def _command_name(args: argparse.Namespace) -> str:
    if args.command == "ban":
        return f"ban.{args.ban_action}"
    return str(args.command)


def _write(stream: TextIO, payload: dict[str, object]) -> None:
    stream.write(json.dumps(payload, sort_keys=True))
    stream.write("\n")
    stream.flush()


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from sitemigrate.app.core.config import settings
from sitemigrate.app.core.logging_setup import configure_logging
from sitemigrate.app.core.paths import (
    repo_root,
    resolve_checkpoint_dir,
    resolve_content_dir,
    resolve_migration_dir,
    resolve_repo_path,
    resolve_site_db_path,
)
from sitemigrate.database.schema import ensure_schema

logger = logging.getLogger(__name__)


def resolved_paths() -> dict[str, Path]:
    return {
        "repo_root": repo_root(),
        "site_db": resolve_site_db_path(),
        "content_dir": resolve_content_dir(),
        "migration_dir": resolve_migration_dir(),
        "checkpoint_dir": resolve_checkpoint_dir(),
        "state_db": resolve_repo_path(settings.STATE_DB_PATH),
    }


def print_paths() -> None:
    for key, value in resolved_paths().items():
        print(f"{key}: {value}")


def ensure_database() -> Path:
    path = resolve_repo_path(settings.STATE_DB_PATH)
    ensure_schema(path)
    return path


def run_server(*, host: str | None = None, port: int | None = None, reload: bool = False) -> None:
    import uvicorn

    uvicorn.run(
        "sitemigrate.app.main:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
        log_level="info",
    )


def _parse_options(pairs: list[str] | None) -> dict[str, str]:
    options: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"invalid option {pair!r}, expected key=value")
        options[key.strip()] = value.strip()
    return options


def _print_record(record) -> int:
    print(json.dumps(record.as_dict(), ensure_ascii=False, indent=2))
    if record.error:
        print(f"[FAIL] {record.error}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> None:
    # `python -m sitemigrate` with no arguments starts the server.
    if argv is None and len(sys.argv) == 1:
        run_server()
        return

    parser = argparse.ArgumentParser(description="sitemigrate: resumable site export / restore")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="start the HTTP service")
    p_run.add_argument("--host", default=None)
    p_run.add_argument("--port", type=int, default=None)
    p_run.add_argument("--reload", action="store_true", help="development mode with auto reload")

    sub.add_parser("ensure-schema", help="create the tool's own state database")
    sub.add_parser("paths", help="print the resolved runtime paths")
    sub.add_parser("list", help="list completed migration archives")

    p_export = sub.add_parser("export", help="run one export to completion")
    p_export.add_argument("-o", "--option", action="append", metavar="KEY=VALUE", help="export option, repeatable")

    p_restore = sub.add_parser("restore", help="restore a migration archive to completion")
    p_restore.add_argument("migration_id")
    p_restore.add_argument("-o", "--option", action="append", metavar="KEY=VALUE", help="restore option, repeatable")

    sub.add_parser("checkpoints", help="list database checkpoints")
    p_rollback = sub.add_parser("rollback", help="roll the site database back to a checkpoint")
    p_rollback.add_argument("checkpoint_id")

    args = parser.parse_args(argv)
    configure_logging(settings.LOG_LEVEL)

    if args.cmd == "run":
        run_server(host=args.host, port=args.port, reload=bool(args.reload))
        return

    if args.cmd == "ensure-schema":
        path = ensure_database()
        print(f"[OK] state database ready: {path}")
        return

    if args.cmd == "paths":
        print_paths()
        return

    from sitemigrate.app.dependencies import create_dependencies

    deps = create_dependencies()

    if args.cmd == "list":
        for meta in deps.catalog.list_archives():
            print(f"{meta.id}\t{meta.completed_at}\t{meta.archive_size_human}\t{meta.source}")
        return

    if args.cmd == "export":
        record = deps.export_service.run_export_to_completion(_parse_options(args.option))
        raise SystemExit(_print_record(record))

    if args.cmd == "restore":
        record = deps.restore_service.run_restore_to_completion(args.migration_id, _parse_options(args.option))
        raise SystemExit(_print_record(record))

    if args.cmd == "checkpoints":
        for info in deps.checkpoints.list_checkpoints():
            print(f"{info.id}\t{info.created_at}\t{info.operation_type}\t{info.db_size}")
        return

    if args.cmd == "rollback":
        ok, reason = deps.checkpoints.restore_checkpoint(args.checkpoint_id)
        if not ok:
            raise SystemExit(f"[FAIL] {reason}")
        print(f"[OK] site database rolled back to {args.checkpoint_id}")
        return

    raise SystemExit(2)

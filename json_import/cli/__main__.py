from __future__ import annotations

import argparse
import os
import sys
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from ..config.loader import ConfigError, load_config
from ..config.settings_store import SettingsStore
from ..db.memory_store import InMemoryTableStore
from ..db.pg_store import PostgresTableStore
from ..logging.init import log_summary, setup_logging
from ..preprocess.json_reader import JsonInputError, load_parsed_data, split_headers
from ..services.orchestrator import ProcessingError, run_import
from ..services.summary import render_summary_line

"""CLI entrypoint.

Flow:
- Load .env (overrides the process environment) and config/import.yml
- Open a PostgreSQL connection (or fall back to the in-memory store)
- Import one JSON file into one table and print the SUMMARY line

Exit codes: 0 success, 1 fatal (nothing written), 2 partial failure (a write
chunk failed after earlier chunks were applied).
"""

EXIT_SUCCESS_ALL = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2

DEFAULT_CONFIG_PATH = Path("config/import.yml")


@contextmanager
def _db_connection(cfg):  # pragma: no cover (thin wrapper; tested via integration)
    """Context manager to provide a psycopg2 cursor.

    接続情報の解決優先順位:
        1. `.env` / 環境変数の DATABASE_URL / PGDSN (DSN 全体)
        2. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. config/import.yml の database セクション (不足分のフォールバック)
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    try:
        # チャンク単位で確定させる (失敗チャンク以前の書き込みは残る)
        conn.autocommit = True
        cur = conn.cursor()
        try:
            yield cur
        finally:
            cur.close()
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (override=True: .env wins over the process environment)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="JSON -> table store importer")
    p.add_argument("file", type=Path, help="JSON file to import")
    p.add_argument("--table", help="Target table id (defaults to the last used / only table)")
    p.add_argument("--merge-key", nargs="+", metavar="FIELD", help="Merge on these fields (ids or names)")
    p.add_argument("--no-header", action="store_true", help="Treat the first record as data, not headers")
    p.add_argument("--record-path", help="Dotted path to the record array inside the JSON document")
    p.add_argument("--dry-run", action="store_true", help="Compute and report the diff without writing")
    p.add_argument("--inspect-data", action="store_true", help="Print headers & first rows then exit")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config file path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _inspect_data(args: argparse.Namespace, cfg) -> int:
    try:
        parsed = load_parsed_data(args.file, args.record_path, max_rows=cfg.limits.max_rows_per_file)
    except JsonInputError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    headers, rows = split_headers(parsed, not args.no_header)
    print(f"FILE: {parsed.source_name} lines={len(parsed)}")
    print(f"  headers={headers}")
    for row in rows[:3]:
        print(f"  row={row}")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # None のときのみシステム引数を読む (空リストはそのまま使う)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(args, cfg)

    try:
        settings_store = SettingsStore.load(Path(cfg.settings_path))
    except ConfigError as e:
        logger.error(f"settings: {e}")
        return EXIT_FATAL

    options = dict(
        table_id=args.table,
        merge_key=args.merge_key,
        first_line_headers=False if args.no_header else None,
        record_path=args.record_path,
        dry_run=args.dry_run,
        settings_store=settings_store,
    )

    def run_mock():
        store = InMemoryTableStore(cfg.tables.values())
        return run_import(cfg, store, args.file, **options)

    # DB 接続制御: テスト等で完全に無効化したい場合 DISABLE_DB_CONNECT=1
    db_mode = "mock"
    try:
        if os.getenv("DISABLE_DB_CONNECT") == "1":
            logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
            result = run_mock()
        else:
            try:
                with _db_connection(cfg) as cur:
                    db_mode = "live"
                    result = run_import(cfg, PostgresTableStore(cur, cfg.tables), args.file, **options)
            except psycopg2.OperationalError as db_e:
                if db_mode == "live":
                    raise
                # テストで警告抑制したい場合は SUPPRESS_DB_WARNING=1 を設定
                if os.getenv("SUPPRESS_DB_WARNING") == "1":
                    logger.debug(f"DB connection failed (suppressed warn) -> fallback to mock mode: {db_e}")
                else:
                    logger.info(f"DB connection failed -> fallback to mock mode: {db_e}")
                result = run_mock()
    except ProcessingError as e:
        logger.error(f"processing({db_mode}): {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL

    logger.info(f"mode={db_mode} created={result.created} updated={result.updated}")
    log_summary(render_summary_line(result))

    if result.partial_failure:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

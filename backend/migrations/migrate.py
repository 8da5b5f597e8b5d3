"""Numbered SQL migrations for the affiliation review schema.

Files named ``NNN_*.sql`` next to this module run in filename order. Each
applied file is recorded in ``_migrations`` so a rerun only picks up new ones.
``001`` creates the tables, ``002`` loads the reference catalog (products,
auto-approve policy, observation types and causes).

    python migrations/migrate.py [--db PATH] [--dry-run | --status]
"""

import argparse
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR: Path = Path(__file__).resolve().parent

TRACKING_DDL: str = """
CREATE TABLE IF NOT EXISTS _migrations (
    filename   TEXT PRIMARY KEY,
    applied_at TEXT NOT NULL
)
"""


def migration_files() -> list[Path]:
    return sorted(MIGRATIONS_DIR.glob("[0-9][0-9][0-9]_*.sql"))


def applied_migrations(conn: sqlite3.Connection) -> list[str]:
    conn.execute(TRACKING_DDL)
    return [name for (name,) in conn.execute("SELECT filename FROM _migrations ORDER BY filename")]


def pending_migrations(conn: sqlite3.Connection) -> list[Path]:
    done: set[str] = set(applied_migrations(conn))
    return [path for path in migration_files() if path.name not in done]


def apply_pending(conn: sqlite3.Connection, dry_run: bool = False) -> list[str]:
    """Run every pending file on ``conn``, one commit per file.

    Returns the filenames that were applied; always empty on a dry run.
    """
    pending: list[Path] = pending_migrations(conn)
    conn.commit()

    applied: list[str] = []
    for path in pending:
        if dry_run:
            logger.info("migration_pending", filename=path.name)
            continue
        conn.executescript(path.read_text(encoding="utf-8"))
        conn.execute(
            "INSERT INTO _migrations (filename, applied_at) VALUES (?, ?)",
            (path.name, datetime.now(UTC).isoformat()),
        )
        conn.commit()
        applied.append(path.name)
        logger.info("migration_applied", filename=path.name)
    return applied


def _default_db_path() -> Path:
    from config import get_settings

    return get_settings().database.sqlite_file


def migrate(dry_run: bool = False, db_path: str | None = None) -> list[str]:
    """Bring the SQLite file at ``db_path`` up to date."""
    target: Path = Path(db_path) if db_path else _default_db_path()
    target.parent.mkdir(parents=True, exist_ok=True)

    conn: sqlite3.Connection = sqlite3.connect(target)
    try:
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA journal_mode=WAL")
        applied: list[str] = apply_pending(conn, dry_run=dry_run)
    finally:
        conn.close()

    logger.info("migrate_done", database=target.as_posix(), applied=len(applied), dry_run=dry_run)
    return applied


def status(db_path: str | None = None) -> None:
    target: Path = Path(db_path) if db_path else _default_db_path()
    if not target.exists():
        print(f"{target.as_posix()}: no database yet, every migration is pending")
        return

    conn: sqlite3.Connection = sqlite3.connect(target)
    try:
        done: list[str] = applied_migrations(conn)
        todo: list[Path] = pending_migrations(conn)
    finally:
        conn.close()

    print(target.as_posix())
    for name in done:
        print(f"  applied  {name}")
    for path in todo:
        print(f"  pending  {path.name}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply the affiliation review SQL migrations")
    parser.add_argument("--db", default=None, help="SQLite file (defaults to DB_SQLITE_PATH)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="List pending files only")
    mode.add_argument("--status", action="store_true", help="Show applied and pending files")
    args: argparse.Namespace = parser.parse_args()

    if args.status:
        status(args.db)
        return
    migrate(dry_run=args.dry_run, db_path=args.db)


if __name__ == "__main__":
    main()

"""Tests for migrations/migrate.py against a throwaway SQLite file."""

import sqlite3
from pathlib import Path

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine

from db.models import Base
from migrations.migrate import apply_pending, applied_migrations, migrate, pending_migrations


def test_schema_matches_models(tmp_path: Path) -> None:
    db_path: Path = tmp_path / "affiliations.db"
    migrate(db_path=str(db_path))

    eng: Engine = create_engine(f"sqlite:///{db_path.as_posix()}")
    try:
        insp = inspect(eng)
        assert set(Base.metadata.tables) <= set(insp.get_table_names())
        for name, table in Base.metadata.tables.items():
            columns: set[str] = {c["name"] for c in insp.get_columns(name)}
            assert columns == {c.name for c in table.columns}, name
    finally:
        eng.dispose()


def test_reference_catalog_is_seeded_once(tmp_path: Path) -> None:
    db_path: Path = tmp_path / "affiliations.db"
    migrate(db_path=str(db_path))

    conn: sqlite3.Connection = sqlite3.connect(db_path)
    try:
        assert apply_pending(conn) == []
        types: int = conn.execute("SELECT COUNT(*) FROM t_affiliation_observation_type").fetchone()[0]
        configs: list[tuple[int, int]] = conn.execute(
            "SELECT product_id, auto_approve FROM t_affiliation_request_config ORDER BY id"
        ).fetchall()
    finally:
        conn.close()

    assert types == 10
    assert configs == [(2, 0), (1, 1), (3, 1)]


def test_dry_run_applies_nothing(tmp_path: Path) -> None:
    conn: sqlite3.Connection = sqlite3.connect(tmp_path / "dry.db")
    try:
        assert apply_pending(conn, dry_run=True) == []
        tables: set[str] = {
            r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
    finally:
        conn.close()
    assert tables == {"_migrations"}


def test_rerun_reports_nothing_pending(tmp_path: Path) -> None:
    db_path: Path = tmp_path / "affiliations.db"
    first: list[str] = migrate(db_path=str(db_path))
    assert first == ["001_initial_schema.sql", "002_reference_catalog.sql"]
    assert migrate(db_path=str(db_path)) == []

    conn: sqlite3.Connection = sqlite3.connect(db_path)
    try:
        assert applied_migrations(conn) == first
        assert pending_migrations(conn) == []
    finally:
        conn.close()

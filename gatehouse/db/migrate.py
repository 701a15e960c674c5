"""
Schema migrations for the identity and session tables.

Files in `migrations/` are named `<version>_<label>.sql` and run in version order, one
transaction each, while holding a Postgres advisory lock so concurrent app instances
don't race. `schema_migrations` records every applied version with the file's checksum;
editing a file after it was applied is refused.

    python -m gatehouse.db.migrate            # apply pending migrations
    python -m gatehouse.db.migrate --dry-run  # list pending versions only
"""

from __future__ import annotations

import argparse
import hashlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from gatehouse.db.config import DbConfig, build_postgres_dsn, load_db_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Fixed key so every gatehouse process contends on the same lock.
LOCK_KEY = 0x6761746568  # "gateh"


class MigrationError(RuntimeError):
    """A migration file conflicts with what the database has recorded."""


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    checksum: str
    sql: str

    @classmethod
    def from_path(cls, path: Path) -> Migration:
        raw = path.read_bytes()
        version, _, _label = path.stem.partition("_")
        return cls(
            version=version,
            name=path.name,
            checksum=hashlib.sha256(raw).hexdigest(),
            sql=raw.decode("utf-8"),
        )


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    """Migrations found in `directory`, ordered by version. Duplicate versions are an error."""
    found: Dict[str, Migration] = {}
    for path in sorted(directory.glob("*.sql")):
        m = Migration.from_path(path)
        if m.version in found:
            raise MigrationError(f"Duplicate migration version {m.version}: {found[m.version].name}, {m.name}")
        found[m.version] = m
    return [found[v] for v in sorted(found)]


@contextmanager
def migration_lock(conn) -> Iterator[None]:  # type: ignore[no-untyped-def]
    conn.execute("SELECT pg_advisory_lock(%s)", (LOCK_KEY,))
    try:
        yield
    finally:
        conn.execute("SELECT pg_advisory_unlock(%s)", (LOCK_KEY,))


def recorded_checksums(conn) -> Dict[str, str]:  # type: ignore[no-untyped-def]
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations ("
        " version text PRIMARY KEY,"
        " checksum text NOT NULL,"
        " applied_at timestamptz NOT NULL DEFAULT now())"
    )
    rows = conn.execute("SELECT version, checksum FROM schema_migrations").fetchall()
    return {str(version): str(checksum) for version, checksum in rows}


def pending_migrations(migrations: Sequence[Migration], recorded: Dict[str, str]) -> List[Migration]:
    """Migrations not yet recorded. Raises MigrationError if an applied file was edited."""
    out: List[Migration] = []
    for m in migrations:
        checksum = recorded.get(m.version)
        if checksum is None:
            out.append(m)
        elif checksum != m.checksum:
            raise MigrationError(f"{m.name} changed after it was applied (db={checksum[:12]} file={m.checksum[:12]})")
    return out


def apply_migrations(  # type: ignore[no-untyped-def]
    conn,
    migrations: Optional[Sequence[Migration]] = None,
    *,
    dry_run: bool = False,
) -> List[str]:
    """
    Bring the schema on `conn` up to date.

    Returns the versions that were applied (or, with dry_run, that would be).
    """
    migs = list(migrations) if migrations is not None else load_migrations()
    with migration_lock(conn):
        todo = pending_migrations(migs, recorded_checksums(conn))
        if dry_run:
            return [m.version for m in todo]
        for m in todo:
            with conn.transaction():
                conn.execute(m.sql)
                conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES (%s, %s)",
                    (m.version, m.checksum),
                )
            logger.info("Applied migration %s", m.name)
    return [m.version for m in todo]


def _connect(dsn: str):  # type: ignore[no-untyped-def]
    import psycopg

    return psycopg.connect(dsn, autocommit=True)


def migrate(dsn: str, *, dry_run: bool = False) -> List[str]:
    with _connect(dsn) as conn:
        return apply_migrations(conn, dry_run=dry_run)


def maybe_auto_migrate(cfg: Optional[DbConfig] = None) -> Tuple[bool, str]:
    """
    Startup hook: migrate when DB_AUTO_MIGRATE=1 and Postgres is configured.

    Never raises; returns (attempted, message) for the caller to log.
    """
    cfg = cfg or load_db_config()
    if not cfg.db_auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        versions = migrate(dsn)
    except Exception as e:  # startup must survive a broken database
        return True, f"Migration failed: {e}"
    return True, f"Applied {', '.join(versions)}" if versions else "Schema up to date"


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="gatehouse.db.migrate", description="Apply gatehouse schema migrations")
    parser.add_argument("--dry-run", action="store_true", help="List pending versions without applying them")
    args = parser.parse_args(argv)

    dsn = build_postgres_dsn(load_db_config())
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
        return 2
    try:
        versions = migrate(dsn, dry_run=args.dry_run)
    except MigrationError as e:
        print(f"Migration refused: {e}")
        return 1

    if not versions:
        print("Schema up to date.")
    elif args.dry_run:
        print(f"Pending: {', '.join(versions)}")
    else:
        print(f"Applied: {', '.join(versions)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

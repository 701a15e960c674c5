from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


@dataclass(frozen=True)
class DbConfig:
    db_auto_migrate: bool

    # Postgres connection (either dsn or parts)
    postgres_dsn: Optional[str]
    postgres_host: Optional[str]
    postgres_port: int
    postgres_db: Optional[str]
    postgres_user: Optional[str]
    postgres_password: Optional[str]
    connect_timeout: int


@lru_cache(maxsize=1)
def load_db_config() -> DbConfig:
    dsn = (os.getenv("POSTGRES_DSN") or "").strip() or None
    host = (os.getenv("POSTGRES_HOST") or "").strip() or None
    port_raw = (os.getenv("POSTGRES_PORT") or "").strip() or "5432"
    try:
        port = int(port_raw)
    except ValueError:
        port = 5432
    db = (os.getenv("POSTGRES_DB") or "").strip() or None
    user = (os.getenv("POSTGRES_USER") or "").strip() or None
    pw = (os.getenv("POSTGRES_PASSWORD") or "").strip() or None
    try:
        timeout = int((os.getenv("POSTGRES_CONNECT_TIMEOUT") or "").strip() or "5")
    except ValueError:
        timeout = 5

    return DbConfig(
        db_auto_migrate=_env_bool("DB_AUTO_MIGRATE", False),
        postgres_dsn=dsn,
        postgres_host=host,
        postgres_port=port,
        postgres_db=db,
        postgres_user=user,
        postgres_password=pw,
        connect_timeout=max(1, timeout),
    )


def build_postgres_dsn(cfg: DbConfig) -> Optional[str]:
    if cfg.postgres_dsn:
        return cfg.postgres_dsn
    if not (cfg.postgres_host and cfg.postgres_db and cfg.postgres_user and cfg.postgres_password):
        return None
    # psycopg's conninfo builder quotes/escapes special characters in passwords and other fields.
    from psycopg.conninfo import make_conninfo

    return make_conninfo(
        host=cfg.postgres_host,
        port=cfg.postgres_port,
        dbname=cfg.postgres_db,
        user=cfg.postgres_user,
        password=cfg.postgres_password,
    )


def connect(cfg: Optional[DbConfig] = None):
    """
    Open a new Postgres connection.

    Raises RuntimeError when Postgres is not configured; driver errors propagate.
    """
    import psycopg

    cfg = cfg or load_db_config()
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        raise RuntimeError("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars)")
    return psycopg.connect(dsn, connect_timeout=cfg.connect_timeout)

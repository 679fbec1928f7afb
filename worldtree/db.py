from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import psycopg

log = logging.getLogger(__name__)

SCHEMA_SQL = Path(__file__).resolve().parent.parent / "sql" / "schema.sql"


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    return url


@contextmanager
def db_conn(*, autocommit: bool = True) -> Iterator[psycopg.Connection]:
    """Yield a database connection.

    Connections are autocommit by default: ``PgStore`` opens an explicit
    transaction per record write, so one failed write never undoes another.
    """
    with psycopg.connect(get_database_url(), autocommit=autocommit) as conn:
        yield conn


def apply_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_SQL) -> None:
    sql = schema_sql_path.read_text(encoding="utf-8")
    with conn.transaction():
        conn.execute(sql)
    log.info("Applied schema from %s", schema_sql_path)

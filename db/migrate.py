#!/usr/bin/env python3
"""
shedwatch database migration runner.

Usage:
    python3 db/migrate.py

Connects with DATABASE_URL, or the PG_* variables when it is unset, and
applies every db/migrations/*.sql file in numeric filename order, recording
each one in schema_migrations. Exits non-zero on the first failure.
"""

import logging
import os
import re
import sys
from pathlib import Path

import psycopg2

from shedwatch.shared.logging import configure_logging

logger = logging.getLogger("migrator")

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

CREATE_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version     TEXT        NOT NULL PRIMARY KEY,
    filename    TEXT        NOT NULL,
    applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def get_connection():
    db_url = os.environ.get("DATABASE_URL")
    if db_url:
        return psycopg2.connect(db_url)
    return psycopg2.connect(
        host=os.environ.get("PG_HOST", "shedwatch-postgres"),
        port=int(os.environ.get("PG_PORT", "5432")),
        dbname=os.environ.get("PG_DB", "shedwatch"),
        user=os.environ.get("PG_USER", "shedwatch"),
        password=os.environ.get("PG_PASS", ""),
    )


def get_migration_files(directory: Path = MIGRATIONS_DIR) -> list[tuple[str, Path]]:
    files: list[tuple[str, Path]] = []
    for file_path in directory.glob("*.sql"):
        match = re.match(r"^(\d+)", file_path.name)
        if match:
            files.append((match.group(1), file_path))
    return sorted(files, key=lambda item: int(item[0]))


def run_migrations(conn, directory: Path = MIGRATIONS_DIR) -> int:
    conn.autocommit = False
    with conn.cursor() as cur:
        cur.execute(CREATE_TRACKING_TABLE)
    conn.commit()

    applied_count = 0
    for version, file_path in get_migration_files(directory):
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM schema_migrations WHERE version = %s", (version,))
            if cur.fetchone():
                logger.info("migration_skipped", extra={"migration": file_path.name})
                continue

        try:
            with conn.cursor() as cur:
                cur.execute(file_path.read_text(encoding="utf-8"))
                cur.execute(
                    "INSERT INTO schema_migrations (version, filename) VALUES (%s, %s)",
                    (version, file_path.name),
                )
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            logger.error("migration_failed", extra={"migration": file_path.name, "error": str(exc)})
            raise
        logger.info("migration_applied", extra={"migration": file_path.name})
        applied_count += 1

    return applied_count


def main():
    configure_logging("migrator")
    conn = get_connection()
    try:
        applied = run_migrations(conn)
    except psycopg2.Error:
        sys.exit(1)
    finally:
        conn.close()
    logger.info("migrations_complete", extra={"applied": applied})


if __name__ == "__main__":
    main()

"""Bring the SQL document store schema to an Alembic revision.

``SqlDocumentStore`` creates ``document_nodes`` on its own when it first
connects, so a database may already hold the table without any Alembic
history. Such databases are stamped at the initial revision before upgrading.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, inspect, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from elearning.config import get_settings
from elearning.db.models import DocumentNodeModel
from elearning.db.session import build_engine

LOGGER = logging.getLogger("elearning.schema")
BACKEND_ROOT = Path(__file__).resolve().parent.parent
INITIAL_REVISION = "20241101_01_document_nodes"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or upgrade the document store schema.")
    parser.add_argument("--revision", default="head", help="Revision to upgrade to (default: head).")
    parser.add_argument(
        "--timeout",
        type=int,
        default=int(os.getenv("ELEARNING_DB_MIGRATION_TIMEOUT", "60")),
        help="Seconds to wait for the database to answer.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=float(os.getenv("ELEARNING_DB_MIGRATION_POLL_INTERVAL", "3")),
        help="Seconds between readiness probes.",
    )
    parser.add_argument("--config", default=str(BACKEND_ROOT / "alembic.ini"), help="Path to alembic.ini.")
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    """URL from alembic.ini, else from the backend settings; written back into ``config``."""
    url = config.get_main_option("sqlalchemy.url") or os.getenv("ELEARNING_DATABASE_URL") or get_settings().database_url
    if not url:
        raise RuntimeError("ELEARNING_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", url)
    return url


def wait_for_database(engine: Engine, *, timeout: int, poll_interval: float) -> None:
    """Probe with ``SELECT 1``; transient errors are retried until ``timeout``."""
    deadline = time.monotonic() + timeout
    last_error: Optional[Exception] = None
    while True:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            LOGGER.info("Database is reachable.")
            return
        except OperationalError as exc:
            last_error = exc
            LOGGER.warning("Database not ready yet: %s", exc)
        except SQLAlchemyError as exc:
            last_error = exc
            LOGGER.error("Database error during readiness probe: %s", exc)
            break
        if time.monotonic() >= deadline:
            break
        time.sleep(poll_interval)
    raise RuntimeError("Database did not become ready in time.") from last_error


def needs_stamp(engine: Engine) -> bool:
    """True when the node table exists but Alembic has never recorded a revision."""
    tables = set(inspect(engine).get_table_names())
    return DocumentNodeModel.__tablename__ in tables and "alembic_version" not in tables


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    engine = build_engine(database_url)
    try:
        wait_for_database(engine, timeout=timeout, poll_interval=poll_interval)
        if needs_stamp(engine):
            LOGGER.info("Found a store-created schema; stamping %s", INITIAL_REVISION)
            command.stamp(config, INITIAL_REVISION)
    finally:
        engine.dispose()
    LOGGER.info("Upgrading document store schema to %s", revision)
    command.upgrade(config, revision)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("ELEARNING_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=get_alembic_config(args.config),
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Schema migration failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

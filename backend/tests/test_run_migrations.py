from __future__ import annotations

import pytest
from sqlalchemy import create_engine, inspect, text

from elearning.config import Settings
from elearning.db.session import build_engine
from elearning.store import SqlDocumentStore
from scripts import run_migrations as runner


def _config():
    return runner.get_alembic_config(str(runner.BACKEND_ROOT / "alembic.ini"))


def test_resolve_database_url_falls_back_to_env(monkeypatch) -> None:
    config = _config()
    monkeypatch.setenv("ELEARNING_DATABASE_URL", "sqlite://")
    assert runner.resolve_database_url(config) == "sqlite://"
    assert config.get_main_option("sqlalchemy.url") == "sqlite://"


def test_resolve_database_url_requires_a_url(monkeypatch) -> None:
    monkeypatch.delenv("ELEARNING_DATABASE_URL", raising=False)
    monkeypatch.setattr(runner, "get_settings", lambda: Settings(ELEARNING_DATABASE_URL=None))
    with pytest.raises(RuntimeError):
        runner.resolve_database_url(_config())


def test_wait_for_database_succeeds_with_sqlite(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'probe.sqlite'}")
    try:
        runner.wait_for_database(engine, timeout=2, poll_interval=0.1)
    finally:
        engine.dispose()


def test_wait_for_database_times_out() -> None:
    class DummyEngine:
        def connect(self):
            raise runner.OperationalError("SELECT 1", {}, Exception("boom"))

    with pytest.raises(RuntimeError):
        runner.wait_for_database(DummyEngine(), timeout=0, poll_interval=0)


def test_upgrade_creates_the_document_table(tmp_path, monkeypatch) -> None:
    url = f"sqlite:///{tmp_path / 'store.sqlite'}"
    monkeypatch.setenv("ELEARNING_DATABASE_URL", url)

    assert runner.main(["--timeout", "2", "--poll-interval", "0.1"]) == 0

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        assert "document_nodes" in inspector.get_table_names()
        columns = {column["name"] for column in inspector.get_columns("document_nodes")}
        assert {"path", "payload", "created_at", "updated_at"} <= columns
    finally:
        engine.dispose()


def test_store_created_schema_is_stamped_not_recreated(tmp_path, monkeypatch) -> None:
    url = f"sqlite:///{tmp_path / 'existing.sqlite'}"
    engine = build_engine(url, Settings())
    SqlDocumentStore(engine)
    assert runner.needs_stamp(engine)
    engine.dispose()

    monkeypatch.setenv("ELEARNING_DATABASE_URL", url)
    runner.run_migrations("head", timeout=1, poll_interval=0.1, config=_config())

    engine = create_engine(url)
    try:
        assert not runner.needs_stamp(engine)
        with engine.connect() as connection:
            version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        assert version == runner.INITIAL_REVISION
    finally:
        engine.dispose()


def test_main_reports_failures(monkeypatch) -> None:
    monkeypatch.delenv("ELEARNING_DATABASE_URL", raising=False)
    monkeypatch.setattr(runner, "get_settings", lambda: Settings(ELEARNING_DATABASE_URL=None))
    assert runner.main([]) == 1

import pytest
from sqlalchemy import inspect

from meterhub.core.database import build_engine, init_db


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'data' / 'hub.db'}")
    yield engine
    engine.dispose()


def test_init_db_migrates_fresh_database_to_head(file_engine, tmp_path):
    head = init_db(file_engine, auto_migrate=True)

    assert head == "0001"
    assert (tmp_path / "data" / "hub.db").exists()
    tables = set(inspect(file_engine).get_table_names())
    assert {"readings", "runtime_settings", "alembic_version"} <= tables


def test_init_db_is_idempotent(file_engine):
    assert init_db(file_engine, auto_migrate=True) == "0001"
    assert init_db(file_engine, auto_migrate=False) == "0001"


def test_init_db_refuses_stale_schema_without_auto_migrate(file_engine):
    with pytest.raises(RuntimeError, match="revision mismatch"):
        init_db(file_engine, auto_migrate=False)

import importlib

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from supportsync.models import Base

migration = importlib.import_module("supportsync.migrations.001_create_support_sync_tables")

TABLES = {
    "users",
    "message_threads",
    "message_participants",
    "messages",
    "message_attachments",
    "support_cases",
}


@pytest.fixture
def migrated_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrations.db'}")
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            migration.upgrade()
    yield engine
    engine.dispose()


def _run(engine, step):
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            step()


def test_upgrade_matches_models(migrated_engine):
    inspector = inspect(migrated_engine)

    assert TABLES <= set(inspector.get_table_names())
    for name in TABLES:
        migrated = {column["name"] for column in inspector.get_columns(name)}
        declared = {column.name for column in Base.metadata.tables[name].columns}
        assert migrated == declared, name


def test_external_ids_are_unique(migrated_engine):
    inspector = inspect(migrated_engine)

    thread_indexes = {ix["name"]: ix for ix in inspector.get_indexes("message_threads")}
    assert thread_indexes["ix_message_threads_external_conversation_id"]["unique"]
    message_uniques = {uc["name"] for uc in inspector.get_unique_constraints("messages")}
    assert "messages_thread_external_message_unique" in message_uniques
    case_indexes = {ix["name"]: ix for ix in inspector.get_indexes("support_cases")}
    assert case_indexes["ix_support_cases_thread_id"]["unique"]


def test_downgrade_drops_tables(migrated_engine):
    _run(migrated_engine, migration.downgrade)

    assert not TABLES & set(inspect(migrated_engine).get_table_names())

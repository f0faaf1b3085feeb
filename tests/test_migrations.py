"""
Tests für Schema-Migrationen und Schema-Push (nutridb.environment.migrations).

Nutzt eine temporäre SQLite-Datenbank und eigene Metadaten, damit keine
Anwendungs-Models benötigt werden.
"""

import shutil
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Column, Float, Integer, MetaData, String, Table, inspect, text

from nutridb.core.errors import ConfigurationError, MigrationError
from nutridb.environment.migrations import AlembicMigrationTool, SchemaOutcome, apply_schema, load_models

PROJECT_ROOT = Path(__file__).resolve().parent.parent

MIGRATION_001 = '''"""create ingredients

Revision ID: 001_create_ingredients
Revises:
Create Date: 2024-01-01 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


revision = "001_create_ingredients"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ingredients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
    )


def downgrade() -> None:
    op.drop_table("ingredients")
'''


def _metadata(with_calories: bool = False) -> MetaData:
    metadata = MetaData()
    columns = [
        Column("id", Integer, primary_key=True),
        Column("name", String, nullable=False),
    ]
    if with_calories:
        columns.append(Column("calories_per_100g", Float))
    Table("ingredients", metadata, *columns)
    return metadata


@pytest.fixture
def migrations_dir(tmp_path):
    """Alembic-Skriptverzeichnis mit dem env.py des Projekts und leerem versions/."""
    script_dir = tmp_path / "alembic"
    (script_dir / "versions").mkdir(parents=True)
    shutil.copy(PROJECT_ROOT / "alembic" / "env.py", script_dir / "env.py")
    shutil.copy(PROJECT_ROOT / "alembic" / "script.py.mako", script_dir / "script.py.mako")
    return script_dir


def _tool(engine, migrations_dir, tmp_path, metadata=None):
    return AlembicMigrationTool(
        engine=engine,
        metadata=metadata if metadata is not None else _metadata(),
        alembic_ini=tmp_path / "missing.ini",
        migrations_dir=migrations_dir,
        artifacts_dir=tmp_path / "generated",
    )


def test_has_migrations_detects_version_files(sqlite_engine, migrations_dir, tmp_path):
    tool = _tool(sqlite_engine, migrations_dir, tmp_path)
    assert tool.has_migrations() is False

    (migrations_dir / "versions" / "001_create_ingredients.py").write_text(MIGRATION_001)
    assert tool.has_migrations() is True


def test_apply_migrations_upgrades_to_head(sqlite_engine, migrations_dir, tmp_path):
    (migrations_dir / "versions" / "001_create_ingredients.py").write_text(MIGRATION_001)
    tool = _tool(sqlite_engine, migrations_dir, tmp_path)

    assert tool.has_pending_migrations() is True
    tool.apply_migrations()

    assert "ingredients" in inspect(sqlite_engine).get_table_names()
    assert tool.has_pending_migrations() is False


def test_push_creates_missing_tables(sqlite_engine, migrations_dir, tmp_path):
    tool = _tool(sqlite_engine, migrations_dir, tmp_path)

    tool.push_schema_directly()

    assert "ingredients" in inspect(sqlite_engine).get_table_names()
    assert tool.schema_diff() == []


def test_push_refuses_destructive_change_without_flag(sqlite_engine, migrations_dir, tmp_path):
    _tool(sqlite_engine, migrations_dir, tmp_path).push_schema_directly()
    tool = _tool(sqlite_engine, migrations_dir, tmp_path, metadata=_metadata(with_calories=True))

    with pytest.raises(MigrationError, match="accept_data_loss"):
        tool.push_schema_directly()

    columns = {c["name"] for c in inspect(sqlite_engine).get_columns("ingredients")}
    assert "calories_per_100g" not in columns


def test_push_with_accept_data_loss_recreates_tables(sqlite_engine, migrations_dir, tmp_path):
    _tool(sqlite_engine, migrations_dir, tmp_path).push_schema_directly()
    tool = _tool(sqlite_engine, migrations_dir, tmp_path, metadata=_metadata(with_calories=True))

    tool.push_schema_directly(accept_data_loss=True)

    columns = {c["name"] for c in inspect(sqlite_engine).get_columns("ingredients")}
    assert "calories_per_100g" in columns


def test_generate_client_artifacts_writes_ddl(sqlite_engine, migrations_dir, tmp_path):
    tool = _tool(sqlite_engine, migrations_dir, tmp_path)

    path = tool.generate_client_artifacts()

    assert path == tmp_path / "generated" / "schema.sql"
    assert "CREATE TABLE ingredients" in path.read_text()


def _mock_tool(has_migrations=True, pending=True, apply_error=None, has_models=True):
    tool = MagicMock(spec=AlembicMigrationTool)
    tool.has_migrations.return_value = has_migrations
    tool.has_models.return_value = has_models
    tool.has_pending_migrations.return_value = pending
    if apply_error is not None:
        tool.apply_migrations.side_effect = apply_error
    return tool


def test_apply_schema_pushes_when_no_migrations():
    tool = _mock_tool(has_migrations=False)

    assert apply_schema(tool) is SchemaOutcome.PUSHED
    tool.push_schema_directly.assert_called_once_with(accept_data_loss=False)
    tool.apply_migrations.assert_not_called()


def test_apply_schema_applies_pending_migrations():
    tool = _mock_tool()

    assert apply_schema(tool) is SchemaOutcome.MIGRATED
    tool.apply_migrations.assert_called_once()
    tool.push_schema_directly.assert_not_called()


def test_apply_schema_skips_when_up_to_date():
    tool = _mock_tool(pending=False)

    assert apply_schema(tool) is SchemaOutcome.UP_TO_DATE
    tool.apply_migrations.assert_not_called()


def test_failed_migration_does_not_push_by_default():
    """Der Push nach fehlgeschlagener Migration ist opt-in."""
    tool = _mock_tool(apply_error=MigrationError("broken revision"))

    with pytest.raises(MigrationError):
        apply_schema(tool)
    tool.push_schema_directly.assert_not_called()


def test_failed_migration_pushes_when_fallback_allowed():
    tool = _mock_tool(apply_error=MigrationError("broken revision"))

    outcome = apply_schema(tool, allow_push_fallback=True, accept_data_loss=True)

    assert outcome is SchemaOutcome.PUSHED_AFTER_FAILED_MIGRATION
    tool.push_schema_directly.assert_called_once_with(accept_data_loss=True)


def test_apply_schema_without_models_leaves_database_alone():
    tool = _mock_tool(has_migrations=False, has_models=False)

    assert apply_schema(tool, accept_data_loss=True) is SchemaOutcome.NO_MODELS
    tool.push_schema_directly.assert_not_called()


def _populate(engine):
    _metadata().create_all(engine)
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO ingredients (id, name) VALUES (1, 'Apfel')"))


def _row_count(engine):
    with engine.connect() as conn:
        return conn.execute(text("SELECT COUNT(*) FROM ingredients")).scalar_one()


def test_rerun_on_populated_database_keeps_data(sqlite_engine, migrations_dir, tmp_path):
    _populate(sqlite_engine)
    tool = _tool(sqlite_engine, migrations_dir, tmp_path)

    assert apply_schema(tool) is SchemaOutcome.PUSHED
    assert apply_schema(tool) is SchemaOutcome.PUSHED
    assert _row_count(sqlite_engine) == 1


def test_push_with_empty_metadata_is_refused(sqlite_engine, migrations_dir, tmp_path):
    _populate(sqlite_engine)
    tool = _tool(sqlite_engine, migrations_dir, tmp_path, metadata=MetaData())

    with pytest.raises(MigrationError, match="MODELS_MODULE"):
        tool.push_schema_directly(accept_data_loss=True)

    assert apply_schema(tool, accept_data_loss=True) is SchemaOutcome.NO_MODELS
    assert "ingredients" in inspect(sqlite_engine).get_table_names()
    assert _row_count(sqlite_engine) == 1


def test_push_never_drops_tables_without_model(sqlite_engine, migrations_dir, tmp_path):
    _populate(sqlite_engine)
    recipes = MetaData()
    Table("recipes", recipes, Column("id", Integer, primary_key=True), Column("title", String))
    tool = _tool(sqlite_engine, migrations_dir, tmp_path, metadata=recipes)

    tool.push_schema_directly(accept_data_loss=True)

    assert set(inspect(sqlite_engine).get_table_names()) >= {"ingredients", "recipes"}
    assert _row_count(sqlite_engine) == 1


def test_load_models_imports_configured_module(tmp_path, monkeypatch):
    (tmp_path / "nutrition_models_for_tests.py").write_text("LOADED = True\n")
    monkeypatch.syspath_prepend(str(tmp_path))

    module = load_models("nutrition_models_for_tests")

    assert module.LOADED is True


def test_load_models_without_module_is_noop(monkeypatch):
    from nutridb.core.config import config

    monkeypatch.setattr(config, "MODELS_MODULE", None)
    assert load_models() is None


def test_load_models_reports_missing_module():
    with pytest.raises(ConfigurationError, match="nutrition_models_missing"):
        load_models("nutrition_models_missing")

"""
Alembic Environment Configuration.

Dieses Modul konfiguriert Alembic für Migrationen mit SQLModel.
Nutzt eine bereits geöffnete Verbindung, wenn das Setup sie über
`config.attributes["connection"]` übergibt (AlembicMigrationTool).
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

from sqlmodel import SQLModel
from nutridb.core.config import config as app_config
from nutridb.core.database import normalize_database_url
from nutridb.environment.migrations import load_models

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Bestehende Logger (nutridb.*) nicht deaktivieren
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# SQLModel Metadata für autogenerate; die Models kommen aus MODELS_MODULE
load_models(app_config.MODELS_MODULE)
target_metadata = SQLModel.metadata

# Database URL aus nutridb.core.config, falls nicht bereits vom Setup gesetzt
if not config.get_main_option("sqlalchemy.url"):
    database_url = app_config.DATABASE_URL or app_config.default_database_url()
    database_url = normalize_database_url(database_url)
    config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))


def run_migrations_offline() -> None:
    """
    Führt Migrationen im 'offline' Modus durch (nur SQL-Generierung).
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
        compare_type=True,  # Spalten-Typ-Änderungen erkennen
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    Führt Migrationen im 'online' Modus durch.

    Verwendet die übergebene Verbindung oder erstellt eine eigene Engine.
    """
    connection = config.attributes.get("connection")
    if connection is not None:
        _run_with_connection(connection)
        return

    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        _run_with_connection(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

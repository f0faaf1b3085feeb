"""
Schema-Migrationen über Alembic.

- Vorhandene Migrationen werden mit `upgrade head` angewendet.
- Ohne Migrationen wird das Schema direkt aus SQLModel.metadata gepusht.
  Die Tabellen registriert das Models-Modul der Anwendung (MODELS_MODULE);
  ohne registrierte Models wird nie gepusht.
- Tabellen ohne Model werden beim Push nie angefasst.
- Der direkte Push nach einer fehlgeschlagenen Migration ist opt-in
  (allow_push_fallback).
"""

import importlib
import logging
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any, List, Optional

from alembic import command
from alembic.autogenerate import compare_metadata
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import MetaData
from sqlalchemy.engine import Engine
from sqlalchemy.schema import CreateTable
from sqlmodel import SQLModel

from nutridb.core.config import config
from nutridb.core.errors import ConfigurationError, MigrationError

logger = logging.getLogger(__name__)

# Diff-Operationen, die ohne Datenverlust per create_all umsetzbar sind
# (add_index nur für Indizes neuer Tabellen)
ADDITIVE_OPERATIONS = frozenset({"add_table", "add_index"})

SCHEMA_ARTIFACT = "schema.sql"


class SchemaOutcome(str, Enum):
    """Ergebnis von apply_schema()."""
    UP_TO_DATE = "up_to_date"
    MIGRATED = "migrated"
    PUSHED = "pushed"
    PUSHED_AFTER_FAILED_MIGRATION = "pushed_after_failed_migration"
    NO_MODELS = "no_models"


def load_models(module_name: Optional[str] = None) -> Optional[ModuleType]:
    """
    Importiert das Modul, das die SQLModel-Tabellen der Anwendung definiert.

    Args:
        module_name: Importpfad (Standard: config.MODELS_MODULE)

    Returns:
        Das importierte Modul oder None, wenn kein Modul konfiguriert ist

    Raises:
        ConfigurationError: Wenn das Modul nicht importiert werden kann
    """
    module_name = module_name or config.MODELS_MODULE
    if not module_name:
        return None
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Models-Modul '{module_name}' nicht importierbar: {e}") from e
    logger.info("Models geladen aus %s", module_name)
    return module


def _is_table_removal(diff: Any) -> bool:
    return not isinstance(diff, list) and diff[0] == "remove_table"


def _is_additive(diff: Any, added_tables: set) -> bool:
    operation = _diff_operation(diff)
    if operation not in ADDITIVE_OPERATIONS:
        return False
    if operation == "add_index":
        return diff[1].table.name in added_tables
    return True


def _diff_operation(diff: Any) -> str:
    # Spalten-Änderungen kommen als Liste von Tupeln, alles andere als Tupel
    if isinstance(diff, list):
        return diff[0][0]
    return diff[0]


class AlembicMigrationTool:
    """
    Kapselt Alembic und SQLModel-Metadaten für das Setup.

    Args:
        engine: Ziel-Engine (Standard: prozessweite Engine)
        metadata: Ziel-Schema (Standard: SQLModel.metadata)
        alembic_ini: Pfad zur alembic.ini (optional)
        migrations_dir: Alembic-Skriptverzeichnis (enthält versions/)
        artifacts_dir: Zielverzeichnis für generate_client_artifacts()
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        metadata: Optional[MetaData] = None,
        alembic_ini: Optional[Path] = None,
        migrations_dir: Optional[Path] = None,
        artifacts_dir: Optional[Path] = None,
    ):
        self._engine = engine
        self.metadata = metadata if metadata is not None else SQLModel.metadata
        self.alembic_ini = Path(alembic_ini or config.ALEMBIC_INI)
        self.migrations_dir = Path(migrations_dir or config.MIGRATIONS_DIR)
        self.artifacts_dir = Path(artifacts_dir or config.ARTIFACTS_DIR)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            from nutridb.core.database import get_engine

            self._engine = get_engine()
        return self._engine

    def _alembic_config(self) -> AlembicConfig:
        if self.alembic_ini.exists():
            cfg = AlembicConfig(str(self.alembic_ini))
        else:
            cfg = AlembicConfig()
        cfg.set_main_option("script_location", str(self.migrations_dir))
        url = self.engine.url.render_as_string(hide_password=False)
        # configparser-Interpolation: % muss escaped werden
        cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
        return cfg

    def has_models(self) -> bool:
        """True, wenn die Metadaten mindestens eine Tabelle kennen."""
        return bool(self.metadata.tables)

    def has_migrations(self) -> bool:
        """True, wenn im versions/-Verzeichnis mindestens eine Migration liegt."""
        versions_dir = self.migrations_dir / "versions"
        if not versions_dir.is_dir():
            return False
        return any(p.is_file() for p in versions_dir.glob("*.py"))

    def has_pending_migrations(self) -> bool:
        """Vergleicht die Heads im Skriptverzeichnis mit dem Stand der Datenbank."""
        if not self.has_migrations():
            return False
        try:
            script = ScriptDirectory.from_config(self._alembic_config())
            heads = set(script.get_heads())
            with self.engine.connect() as conn:
                current = set(MigrationContext.configure(conn).get_current_heads())
        except Exception as e:
            raise MigrationError(f"Migrationsstand nicht ermittelbar: {e}") from e
        return heads != current

    def apply_migrations(self) -> None:
        """
        Führt `alembic upgrade head` aus.

        Raises:
            MigrationError: Wenn die Migration fehlschlägt
        """
        cfg = self._alembic_config()
        try:
            with self.engine.begin() as connection:
                cfg.attributes["connection"] = connection
                command.upgrade(cfg, "head")
        except Exception as e:
            raise MigrationError(f"Migration fehlgeschlagen: {e}") from e
        logger.info("Migrationen angewendet")

    def schema_diff(self) -> List[Any]:
        """Unterschiede zwischen Datenbank und Metadaten (Alembic-Autogenerate-Format)."""
        with self.engine.connect() as conn:
            return compare_metadata(MigrationContext.configure(conn), self.metadata)

    def push_schema_directly(self, accept_data_loss: bool = False) -> None:
        """
        Gleicht das Datenbankschema direkt an die Metadaten an (ohne Migrationen).

        Fehlende Tabellen werden angelegt. Alle anderen Unterschiede erfordern
        ein Neuanlegen der Modell-Tabellen und sind nur mit accept_data_loss
        erlaubt. Tabellen, die die Metadaten nicht kennen, bleiben unverändert.

        Raises:
            MigrationError: Ohne registrierte Models, bei nicht-additiven
                Unterschieden ohne accept_data_loss oder wenn der Push fehlschlägt
        """
        if not self.has_models():
            raise MigrationError(
                "Keine Models registriert (Metadaten sind leer). "
                "MODELS_MODULE setzen, bevor das Schema gepusht wird."
            )
        try:
            diffs = self.schema_diff()
        except Exception as e:
            raise MigrationError(f"Schema-Vergleich fehlgeschlagen: {e}") from e

        unknown = [d[1].name for d in diffs if _is_table_removal(d)]
        if unknown:
            logger.info("Tabellen ohne Model bleiben unverändert: %s", ", ".join(sorted(unknown)))
        diffs = [d for d in diffs if not _is_table_removal(d)]

        if not diffs:
            logger.info("Schema ist bereits aktuell")
            return

        added_tables = {d[1].name for d in diffs if _diff_operation(d) == "add_table"}
        destructive = [_diff_operation(d) for d in diffs if not _is_additive(d, added_tables)]
        if destructive and not accept_data_loss:
            raise MigrationError(
                "Schema-Push würde Daten verwerfen ("
                + ", ".join(sorted(set(destructive)))
                + "). Mit accept_data_loss erneut ausführen."
            )

        try:
            with self.engine.begin() as conn:
                if destructive:
                    logger.warning(
                        "Schema-Push mit Datenverlust: %s", ", ".join(sorted(set(destructive)))
                    )
                    self.metadata.drop_all(conn)
                self.metadata.create_all(conn)
        except Exception as e:
            raise MigrationError(f"Schema-Push fehlgeschlagen: {e}") from e
        logger.info("Schema direkt in die Datenbank gepusht")

    def generate_client_artifacts(self) -> Path:
        """
        Schreibt einen DDL-Snapshot des Schemas (schema.sql) für Client-Tooling.

        Returns:
            Pfad der geschriebenen Datei
        """
        target = self.artifacts_dir / SCHEMA_ARTIFACT
        try:
            dialect = self.engine.dialect
            statements = [
                str(CreateTable(table).compile(dialect=dialect)).strip() + ";"
                for table in self.metadata.sorted_tables
            ]
            self.artifacts_dir.mkdir(parents=True, exist_ok=True)
            target.write_text("\n\n".join(statements) + "\n", encoding="utf-8")
        except Exception as e:
            raise MigrationError(f"Artefakt-Generierung fehlgeschlagen: {e}") from e
        logger.info("Schema-Artefakt geschrieben: %s (%d Tabellen)", target, len(statements))
        return target


def apply_schema(
    tool: AlembicMigrationTool,
    allow_push_fallback: bool = False,
    accept_data_loss: bool = False,
) -> SchemaOutcome:
    """
    Bringt das Datenbankschema auf den aktuellen Stand.

    Args:
        tool: Migrations-Werkzeug
        allow_push_fallback: Nach fehlgeschlagener Migration direkt pushen
        accept_data_loss: Destruktive Änderungen beim Push erlauben

    Raises:
        MigrationError: Wenn Migration (und ggf. Fallback) fehlschlagen
    """
    if not tool.has_migrations():
        if not tool.has_models():
            logger.warning(
                "Weder Migrationen noch Models vorhanden, Schema bleibt unverändert "
                "(MODELS_MODULE setzen)"
            )
            return SchemaOutcome.NO_MODELS
        logger.info("Keine Migrationen gefunden, pushe Schema direkt...")
        tool.push_schema_directly(accept_data_loss=accept_data_loss)
        return SchemaOutcome.PUSHED

    try:
        if not tool.has_pending_migrations():
            logger.info("Alle Migrationen sind bereits angewendet")
            return SchemaOutcome.UP_TO_DATE
        logger.info("Vorhandene Migrationen gefunden, wende sie an...")
        tool.apply_migrations()
        return SchemaOutcome.MIGRATED
    except MigrationError as e:
        if not allow_push_fallback:
            raise
        logger.warning("Migration fehlgeschlagen (%s), versuche direkten Schema-Push...", e)
        tool.push_schema_directly(accept_data_loss=accept_data_loss)
        return SchemaOutcome.PUSHED_AFTER_FAILED_MIGRATION

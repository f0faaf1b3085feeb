"""
Einrichtung der lokalen Entwicklungsdatenbank (`nutridb-setup`).

Ablauf:
1. docker und docker compose prüfen
2. Datenbank-Container finden, (neu) starten oder erstellen und warten,
   bis PostgreSQL Verbindungen annimmt
3. .env-Datei anlegen, falls sie fehlt
4. Models aus MODELS_MODULE laden, Migrationen anwenden bzw. Schema pushen
5. Schema-Artefakte generieren

Exit-Code 0 bei Erfolg, 1 bei jedem nicht behebbaren Fehler.
Darf pro Umgebung nur einmal gleichzeitig laufen.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from nutridb.core.config import config
from nutridb.core.database import install_shutdown_hooks
from nutridb.core.errors import (
    NutriDbError,
    ReadinessTimeoutError,
    ResourceUnreachableError,
    ToolingMissingError,
)
from nutridb.core.logging_config import setup_logging
from nutridb.environment.envfile import ensure_env_file
from nutridb.environment.migrations import (
    AlembicMigrationTool,
    SchemaOutcome,
    apply_schema,
    load_models,
)
from nutridb.environment.probes import PgIsReadyProbe
from nutridb.environment.readiness import PollBudget, ResourceReadinessOrchestrator
from nutridb.environment.runtime import DockerCliRuntime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetupOptions:
    allow_schema_push: bool = False
    accept_data_loss: bool = False
    skip_migrations: bool = False


def _progress_dot(attempt: int, total: int) -> None:
    sys.stdout.write(".")
    sys.stdout.flush()


def check_tooling(runtime: DockerCliRuntime) -> None:
    """
    Raises:
        ToolingMissingError: Wenn docker oder docker compose fehlen
    """
    if not runtime.is_installed():
        raise ToolingMissingError("Docker", "Bitte Docker Desktop installieren.")
    if not runtime.compose_available():
        raise ToolingMissingError("Docker Compose", "Bitte Docker Compose installieren.")


async def run_setup(
    options: Optional[SetupOptions] = None,
    runtime: Optional[DockerCliRuntime] = None,
    probe: Optional[Callable[[], None]] = None,
    migration_tool: Optional[AlembicMigrationTool] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> int:
    """
    Führt das komplette Datenbank-Setup aus.

    Returns:
        Exit-Code (0 = Erfolg, 1 = Fehler)
    """
    options = options or SetupOptions()
    runtime = runtime or DockerCliRuntime()
    probe = probe or PgIsReadyProbe(runtime=runtime)

    try:
        print("🔍 Prüfe Docker-Setup...")
        check_tooling(runtime)
        print("✓ Docker und Docker Compose sind verfügbar")

        orchestrator = ResourceReadinessOrchestrator(
            name=config.DB_CONTAINER_NAME,
            runtime=runtime,
            probe=probe,
            budget=PollBudget.from_config(),
            on_progress=_progress_dot,
            sleep=sleep,
        )
        print("Warte auf die Datenbank", end="", flush=True)
        report = await orchestrator.ensure_ready()
        print()
        print(f"✓ Datenbank ist bereit (nach {report.probe_attempts} Versuch(en))")

        if ensure_env_file():
            print("✓ .env-Datei angelegt")
        if not config.DATABASE_URL:
            config.DATABASE_URL = config.default_database_url()

        if options.skip_migrations:
            print("Migrationen übersprungen (--skip-migrations)")
        else:
            tool = migration_tool
            if tool is None:
                load_models(config.MODELS_MODULE)
                tool = AlembicMigrationTool()
            print("Richte Datenbankschema ein...")
            outcome = apply_schema(
                tool,
                allow_push_fallback=options.allow_schema_push or config.ALLOW_SCHEMA_PUSH_FALLBACK,
                accept_data_loss=options.accept_data_loss,
            )
            print(f"✓ Schema: {outcome.value}")
            if outcome is SchemaOutcome.NO_MODELS:
                print("Keine Models registriert, Schema-Artefakt übersprungen (MODELS_MODULE setzen)")
            else:
                artifact = tool.generate_client_artifacts()
                print(f"✓ Schema-Artefakt generiert: {artifact}")
    except ToolingMissingError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except ResourceUnreachableError as e:
        print()
        print(f"❌ Datenbank-Container nicht erreichbar: {e}", file=sys.stderr)
        return 1
    except ReadinessTimeoutError as e:
        print()
        print(
            f"❌ Container läuft, aber die Datenbank wurde nach {e.attempts} Versuchen nicht bereit",
            file=sys.stderr,
        )
        return 1
    except NutriDbError as e:
        print(f"❌ Setup fehlgeschlagen: {e}", file=sys.stderr)
        return 1

    print("\n✅ Datenbank-Setup abgeschlossen!")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nutridb-setup",
        description="Richtet die lokale PostgreSQL-Datenbank für den Nutrition-Tracker ein.",
    )
    parser.add_argument(
        "--allow-schema-push",
        action="store_true",
        help="Nach fehlgeschlagener Migration das Schema direkt pushen",
    )
    parser.add_argument(
        "--accept-data-loss",
        action="store_true",
        help="Destruktive Schema-Änderungen beim Push erlauben",
    )
    parser.add_argument("--skip-migrations", action="store_true")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    parser.add_argument("--json-logs", action="store_true", default=config.LOG_JSON)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_level=args.log_level, log_json=args.json_logs)
    install_shutdown_hooks()
    options = SetupOptions(
        allow_schema_push=args.allow_schema_push,
        accept_data_loss=args.accept_data_loss,
        skip_migrations=args.skip_migrations,
    )
    try:
        return asyncio.run(run_setup(options))
    except Exception as e:
        logger.exception("Unerwarteter Fehler beim Setup")
        print(f"❌ Setup fehlgeschlagen: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

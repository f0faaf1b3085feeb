"""
Pytest Configuration und Fixtures.

Dieses Modul definiert gemeinsame Fixtures für alle Tests:
- Aufzeichnendes Sleep (keine echten Wartezeiten)
- Fake-Container-Runtime und Fake-Probes (kein Docker nötig)
- Temporäre SQLite-Datenbank und Verzeichnisse
"""

from typing import List

import pytest
import sqlalchemy.exc
from sqlmodel import create_engine

from nutridb.core import database
from nutridb.core.config import config
from nutridb.core.errors import ProbeFailedError, RuntimeCommandError


class FakeRuntime:
    """Container-Runtime im Speicher; protokolliert alle Aufrufe."""

    def __init__(self, running=False, exists=False, start_fails=False, create_fails=False,
                 installed=True, compose=True):
        self.running = running
        self.present = exists or running
        self.start_fails = start_fails
        self.create_fails = create_fails
        self.installed = installed
        self.compose = compose
        self.calls: List[str] = []

    def is_installed(self) -> bool:
        return self.installed

    def compose_available(self) -> bool:
        return self.compose

    def is_running(self, name: str) -> bool:
        self.calls.append("is_running")
        return self.running

    def exists(self, name: str) -> bool:
        self.calls.append("exists")
        return self.present

    def start(self, name: str) -> None:
        self.calls.append("start")
        if self.start_fails:
            raise RuntimeCommandError(["docker", "start", name], 1, "container is corrupted")
        self.running = True

    def create_from_declaration(self) -> None:
        self.calls.append("create")
        if self.create_fails:
            raise RuntimeCommandError(["docker", "compose", "up", "-d"], 1, "compose failed")
        self.present = True
        self.running = True


class FlakyProbe:
    """Liveness-Probe, die die ersten `failures` Aufrufe fehlschlägt."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ProbeFailedError("no response")


class RecordingSleep:
    """Async-Sleep-Ersatz, der nur die Wartezeiten aufzeichnet."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture(scope="function")
def recording_sleep():
    return RecordingSleep()


@pytest.fixture(scope="function")
def make_runtime():
    """Factory für FakeRuntime-Instanzen."""
    return FakeRuntime


@pytest.fixture(scope="function")
def make_probe():
    """Factory für FlakyProbe-Instanzen."""
    return FlakyProbe


@pytest.fixture(scope="function")
def transient_error():
    """SQLAlchemy-OperationalError wie bei nicht erreichbarem Server."""
    return sqlalchemy.exc.OperationalError(
        "SELECT 1", {}, Exception("could not connect to server: Connection refused")
    )


@pytest.fixture(scope="function")
def fatal_error():
    """SQLAlchemy-IntegrityError (Constraint-Verletzung)."""
    return sqlalchemy.exc.IntegrityError(
        "INSERT INTO ingredients", {}, Exception("duplicate key value violates unique constraint")
    )


@pytest.fixture(scope="function")
def sqlite_engine(tmp_path):
    """
    Erstellt eine temporäre SQLite-Datenbank (Datei in tmp_path).

    Yields:
        Engine: SQLAlchemy Engine für Tests
    """
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        echo=False,
    )
    yield test_engine
    test_engine.dispose()


@pytest.fixture(scope="function")
def configured_database(tmp_path):
    """
    Setzt DATABASE_URL auf eine temporäre SQLite-Datenbank und setzt
    den Engine-Lifecycle vor und nach dem Test zurück.
    """
    original_url = config.DATABASE_URL
    config.DATABASE_URL = f"sqlite:///{tmp_path / 'nutridb.db'}"
    database.reset_engine()

    yield config.DATABASE_URL

    database.reset_engine()
    config.DATABASE_URL = original_url


@pytest.fixture(scope="function")
def temp_env_file(tmp_path):
    """
    Biegt config.ENV_FILE auf eine (noch nicht existierende) Datei in tmp_path um.

    Returns:
        Path: Pfad zur temporären .env-Datei
    """
    env_file = tmp_path / ".env"

    original_env_file = config.ENV_FILE
    config.ENV_FILE = env_file

    yield env_file

    config.ENV_FILE = original_env_file


@pytest.fixture(scope="function")
def temp_artifacts_dir(tmp_path):
    artifacts_dir = tmp_path / "generated"

    original_artifacts_dir = config.ARTIFACTS_DIR
    config.ARTIFACTS_DIR = artifacts_dir

    yield artifacts_dir

    config.ARTIFACTS_DIR = original_artifacts_dir

"""
Liveness-Probes für die Datenbank.

Eine Probe wirft ProbeFailedError (oder einen beliebigen anderen Fehler),
solange die Ressource keine Verbindungen akzeptiert. Probes sind rein lesend
und dürfen beliebig oft wiederholt werden.
"""

import logging
from typing import Optional, Protocol

from sqlalchemy.engine import Engine

from nutridb.core.config import config
from nutridb.core.errors import ProbeFailedError
from nutridb.environment.runtime import DockerCliRuntime

logger = logging.getLogger(__name__)


class LivenessProbe(Protocol):
    def __call__(self) -> None: ...


class PgIsReadyProbe:
    """
    Prüft per `pg_isready` im Container, ob PostgreSQL Verbindungen annimmt.

    Ziel ist genau ein Container und genau eine Datenbank darin.
    """

    def __init__(
        self,
        container_name: Optional[str] = None,
        user: Optional[str] = None,
        database: Optional[str] = None,
        runtime: Optional[DockerCliRuntime] = None,
    ):
        self.container_name = container_name or config.DB_CONTAINER_NAME
        self.user = user or config.DB_USER
        self.database = database or config.DB_NAME
        self.runtime = runtime or DockerCliRuntime()

    def __call__(self) -> None:
        code, stdout, stderr = self.runtime.exec(
            self.container_name,
            ["pg_isready", "-U", self.user, "-d", self.database],
        )
        if code != 0:
            raise ProbeFailedError(
                (stderr or stdout).strip() or f"pg_isready Exit-Code {code}"
            )


class SqlProbe:
    """In-Process-Probe: führt SELECT 1 über eine SQLAlchemy-Engine aus."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    def __call__(self) -> None:
        from nutridb.core.database import check_connection

        try:
            check_connection(self._engine)
        except Exception as e:
            raise ProbeFailedError(str(e)) from e

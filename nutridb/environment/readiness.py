"""
Readiness-Orchestrierung für den lokalen Datenbank-Container.

Ablauf (der Startzustand wird bei jedem Aufruf neu ermittelt, nie gecacht):

    ABSENT         -> erstellen + starten     -> Liveness-Polling
    STOPPED_EXISTS -> starten                 -> Liveness-Polling
    STOPPED_EXISTS -> Start fehlgeschlagen    -> neu erstellen -> Liveness-Polling
    RUNNING                                   -> Liveness-Polling
    Liveness-Polling -> Probe ok              -> READY (terminal)
    Liveness-Polling -> Budget erschöpft      -> ReadinessTimeoutError (terminal)

Das Polling nutzt feste Intervalle ohne Backoff.

Nicht für parallele Aufrufe gegen denselben Container gedacht: zwei
gleichzeitige Bring-ups konkurrieren bei der Discovery. Der Aufrufer muss
serialisieren (z. B. ein einziger Setup-Einstiegspunkt pro Umgebung).
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt, wait_fixed

from nutridb.core.config import Config, config
from nutridb.core.errors import ReadinessTimeoutError, ResourceStartError
from nutridb.environment.probes import LivenessProbe
from nutridb.environment.runtime import ContainerRuntime

logger = logging.getLogger(__name__)


class ResourceState(str, Enum):
    """Zustand der Ressource, abgeleitet aus der Runtime (nicht persistiert)."""
    ABSENT = "absent"
    STOPPED_EXISTS = "stopped_exists"
    RUNNING = "running"
    READY = "ready"


@dataclass(frozen=True)
class PollBudget:
    """
    Budget für das Liveness-Polling.

    Attributes:
        max_attempts: Maximale Anzahl Probe-Versuche (>= 1)
        interval: Feste Wartezeit in Sekunden zwischen zwei Versuchen
    """
    max_attempts: int = 30
    interval: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts muss >= 1 sein, ist {self.max_attempts}")
        if self.interval < 0:
            raise ValueError(f"interval darf nicht negativ sein, ist {self.interval}")

    @classmethod
    def from_config(cls, cfg: Config = config) -> "PollBudget":
        return cls(
            max_attempts=cfg.READINESS_MAX_ATTEMPTS,
            interval=cfg.READINESS_INTERVAL_MS / 1000.0,
        )


@dataclass(frozen=True)
class ReadinessReport:
    """Ergebnis eines erfolgreichen Bring-ups."""
    name: str
    initial_state: ResourceState
    final_state: ResourceState
    probe_attempts: int
    created: bool = False
    restarted: bool = False


ProgressCallback = Callable[[int, int], None]


class ResourceReadinessOrchestrator:
    """
    Bringt eine benannte Ressource (Datenbank-Container) in den Zustand READY.

    Args:
        name: Name des Containers
        runtime: Container-Runtime (exists/is_running/start/create_from_declaration)
        probe: Liveness-Probe, wirft solange die Ressource nicht bereit ist
        budget: Poll-Budget (Standard aus config)
        on_progress: Callback (versuch, gesamt) pro fehlgeschlagener Probe
        sleep: Async-Sleep (Standard asyncio.sleep)
    """

    def __init__(
        self,
        name: str,
        runtime: ContainerRuntime,
        probe: LivenessProbe,
        budget: Optional[PollBudget] = None,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.name = name
        self.runtime = runtime
        self.probe = probe
        self.budget = budget or PollBudget.from_config()
        self.on_progress = on_progress
        self._sleep = sleep

    async def _async_sleep(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
        else:
            await asyncio.sleep(seconds)

    def discover(self) -> ResourceState:
        """
        Ermittelt den aktuellen Zustand über zwei unabhängige Abfragen.

        "existiert" und "läuft" sind nicht gleichwertig: ein gestoppter
        Container wird neu gestartet statt neu erstellt.
        """
        running = self.runtime.is_running(self.name)
        exists = self.runtime.exists(self.name)
        if running:
            return ResourceState.RUNNING
        if exists:
            return ResourceState.STOPPED_EXISTS
        return ResourceState.ABSENT

    def _create(self) -> None:
        logger.info("Erstelle Container '%s' aus der Compose-Deklaration...", self.name)
        try:
            self.runtime.create_from_declaration()
        except Exception as e:
            logger.error("Container '%s' konnte nicht erstellt werden: %s", self.name, e)
            raise ResourceStartError(self.name) from e
        logger.info("Container '%s' erstellt und gestartet", self.name)

    def _restart(self) -> bool:
        """Startet den vorhandenen Container. Returns False, wenn neu erstellt werden musste."""
        logger.info("Container '%s' existiert, läuft aber nicht. Starte ihn...", self.name)
        try:
            self.runtime.start(self.name)
        except Exception as e:
            logger.warning(
                "Start von '%s' fehlgeschlagen (%s). Erstelle Container neu...", self.name, e
            )
            self._create()
            return False
        logger.info("Container '%s' gestartet", self.name)
        return True

    def _after_failed_probe(self, retry_state: RetryCallState) -> None:
        attempt = retry_state.attempt_number
        logger.info(
            "Datenbank in '%s' noch nicht bereit (Versuch %d/%d): %s",
            self.name,
            attempt,
            self.budget.max_attempts,
            retry_state.outcome.exception(),
        )
        if self.on_progress is not None:
            self.on_progress(attempt, self.budget.max_attempts)

    async def wait_until_ready(self) -> int:
        """
        Pollt die Liveness-Probe bis zum Erfolg oder bis das Budget erschöpft ist.

        Returns:
            Anzahl der benötigten Probe-Versuche

        Raises:
            ReadinessTimeoutError: Wenn keine Probe innerhalb des Budgets erfolgreich war
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.budget.max_attempts),
            wait=wait_fixed(self.budget.interval),
            after=self._after_failed_probe,
            sleep=self._async_sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    self.probe()
        except RetryError as e:
            raise ReadinessTimeoutError(
                self.name, e.last_attempt.attempt_number
            ) from e.last_attempt.exception()
        return attempt.retry_state.attempt_number

    async def ensure_ready(self) -> ReadinessReport:
        """
        Idempotentes Bring-up: Discovery, ggf. (Neu-)Start, dann Liveness-Polling.

        Raises:
            ResourceStartError: Container konnte weder gestartet noch erstellt werden
            ReadinessTimeoutError: Container läuft, wurde aber nie bereit
        """
        initial_state = self.discover()
        created = False
        restarted = False

        if initial_state is ResourceState.ABSENT:
            logger.info("Kein Container '%s' gefunden.", self.name)
            self._create()
            created = True
        elif initial_state is ResourceState.STOPPED_EXISTS:
            restarted = self._restart()
            created = not restarted
        else:
            logger.info("Container '%s' läuft bereits", self.name)

        probe_attempts = await self.wait_until_ready()
        logger.info("Datenbank in '%s' ist bereit", self.name)
        return ReadinessReport(
            name=self.name,
            initial_state=initial_state,
            final_state=ResourceState.READY,
            probe_attempts=probe_attempts,
            created=created,
            restarted=restarted,
        )

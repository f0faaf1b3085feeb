"""
Retry mit Exponential Backoff für Datenbank-Operationen.

Schützt Aufrufer vor transienten Verbindungsfehlern (Server nicht erreichbar,
Connection-Pool erschöpft, Timeout beim Holen einer Verbindung). Alle anderen
Fehler (Constraint-Verletzungen, ungültige Eingaben, Logikfehler) sind fatal
und werden beim ersten Auftreten unverändert weitergereicht.

Wartezeit vor Versuch k+1 (k 0-basiert): base_delay * 2^k, ohne Jitter.
Die Retry-Mechanik selbst läuft über Tenacity.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from nutridb.core.config import Config, config

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

BACKOFF_MULTIPLIER = 2

# SQLAlchemy-Fehlercode 3o7r = Pool-TimeoutError (Timeout beim Holen einer
# Verbindung aus dem Pool). e3q8 (OperationalError) steht auch für fehlende
# Tabellen oder falsche Zugangsdaten und wird nur über die Meldung erkannt.
# P1001/P2024 sind die entsprechenden Codes der Engine-Toolchain.
RETRYABLE_ERROR_CODES = frozenset({"3o7r", "P1001", "P2024"})

RETRYABLE_MESSAGE_MARKERS = (
    "connection pool",
    "queuepool limit",
    "timed out fetching",
    "connection timed out",
    "can't reach database server",
    "could not connect to server",
    "connection refused",
    "server closed the connection unexpectedly",
    "the database system is starting up",
    "the database system is shutting down",
    "p1001",
    "p2024",
)


class FailureClassification(str, Enum):
    """Einstufung eines Fehlers durch den Retry-Executor."""
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Unveränderliche Retry-Konfiguration pro Aufrufstelle.

    Attributes:
        max_attempts: Maximale Anzahl Versuche (>= 1; 1 = kein Retry)
        base_delay: Wartezeit in Sekunden vor dem zweiten Versuch
    """
    max_attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts muss >= 1 sein, ist {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay darf nicht negativ sein, ist {self.base_delay}")

    def delay_for(self, attempt_index: int) -> float:
        """Wartezeit nach dem fehlgeschlagenen Versuch attempt_index (0-basiert)."""
        return self.base_delay * (BACKOFF_MULTIPLIER ** attempt_index)

    @classmethod
    def from_config(cls, cfg: Config = config) -> "RetryPolicy":
        return cls(
            max_attempts=cfg.DB_RETRY_MAX_ATTEMPTS,
            base_delay=cfg.DB_RETRY_BASE_DELAY_MS / 1000.0,
        )


@dataclass(frozen=True)
class Attempt:
    """
    Ein fehlgeschlagener, wiederholbarer Versuch.

    Wird vor dem Warten als Diagnose-Event an on_retry übergeben.
    """
    index: int
    total: int
    delay: float
    error: BaseException

    @property
    def number(self) -> int:
        return self.index + 1

    def as_event(self) -> dict:
        return {
            "attempt": self.number,
            "total": self.total,
            "delay_ms": int(round(self.delay * 1000)),
        }


RetryCallback = Callable[[Attempt], None]


def classify_failure(exc: BaseException) -> FailureClassification:
    """
    Stuft einen Fehler als wiederholbar oder fatal ein.

    Geprüft werden ein strukturiertes `code`-Attribut (falls vorhanden), das
    `connection_invalidated`-Flag von SQLAlchemy und der Meldungstext.
    Alles andere (fehlende Tabellen, Syntax, Zugangsdaten) ist fatal.
    """
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in RETRYABLE_ERROR_CODES:
        return FailureClassification.RETRYABLE

    # Von SQLAlchemy als Verbindungsabbruch erkannt (Pool wurde invalidiert)
    if getattr(exc, "connection_invalidated", False) is True:
        return FailureClassification.RETRYABLE

    message = str(exc).lower()
    if any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS):
        return FailureClassification.RETRYABLE

    return FailureClassification.FATAL


def is_retryable(exc: BaseException) -> bool:
    return classify_failure(exc) is FailureClassification.RETRYABLE


class RetryExecutor:
    """
    Führt eine Operation mit Retry und Exponential Backoff aus.

    Jeder execute()-Aufruf besitzt seinen eigenen Versuchszähler; parallele
    Aufrufe teilen keinen veränderlichen Zustand.

    Example:
        executor = RetryExecutor(RetryPolicy(max_attempts=3, base_delay=1.0))
        ingredient = await executor.execute(lambda: repo.upsert(record))
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[RetryCallback] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        sync_sleep: Optional[Callable[[float], None]] = None,
    ):
        self.policy = policy or RetryPolicy.from_config()
        self.on_retry = on_retry
        self._sleep = sleep
        self._sync_sleep = sync_sleep

    async def _async_sleep(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
        else:
            await asyncio.sleep(seconds)

    def _blocking_sleep(self, seconds: float) -> None:
        if self._sync_sleep is not None:
            self._sync_sleep(seconds)
        else:
            time.sleep(seconds)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        attempt = Attempt(
            index=retry_state.attempt_number - 1,
            total=self.policy.max_attempts,
            delay=delay,
            error=retry_state.outcome.exception(),
        )
        event = attempt.as_event()
        logger.warning(
            "Datenbank-Operation fehlgeschlagen (Versuch %d/%d), neuer Versuch in %dms: %s",
            event["attempt"],
            event["total"],
            event["delay_ms"],
            attempt.error,
            extra={"event": event},
        )
        if self.on_retry is not None:
            self.on_retry(attempt)

    def _retry_kwargs(self) -> dict:
        return dict(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(
                multiplier=self.policy.base_delay, exp_base=BACKOFF_MULTIPLIER, min=0
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._before_sleep,
            reraise=True,
        )

    async def execute(self, operation: Callable[[], Union[_T, Awaitable[_T]]]) -> _T:
        """
        Führt operation() aus und wiederholt bei transienten Fehlern.

        operation darf einen Wert oder ein Awaitable liefern.

        Raises:
            Den zuletzt beobachteten Fehler, wenn er fatal ist oder das
            Versuchsbudget erschöpft ist.
        """
        async def _invoke() -> Any:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result

        retrying = AsyncRetrying(sleep=self._async_sleep, **self._retry_kwargs())
        return await retrying(_invoke)

    def execute_sync(self, operation: Callable[[], _T]) -> _T:
        """Synchrone Variante von execute() (blockierendes Warten)."""
        retrying = Retrying(sleep=self._blocking_sleep, **self._retry_kwargs())
        return retrying(operation)


def with_database_retry(policy: Optional[RetryPolicy] = None):
    """
    Decorator für async Funktionen: jeder Aufruf läuft über einen RetryExecutor.
    """
    def decorator(func: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> _T:
            executor = RetryExecutor(policy)
            return await executor.execute(lambda: func(*args, **kwargs))
        return wrapper
    return decorator

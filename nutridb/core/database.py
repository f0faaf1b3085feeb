"""
Database Module.

Dieses Modul verwaltet die prozessweite Datenbankverbindung für SQLModel.

Features:
- Engine wird lazy beim ersten Zugriff erstellt (ein Connection-Pool pro Prozess)
- close_engine() gibt den Pool genau einmal frei (auch bei mehrfachen Signalen)
- Shutdown-Hooks für SIGINT, SIGTERM und normales Prozessende
- Session-Hilfen mit Retry bei transienten Verbindungsfehlern

Hinweis: Migrationen werden nicht automatisch ausgeführt, siehe
nutridb.environment.migrations bzw. `nutridb-setup`.
"""

import atexit
import logging
import signal
import sys
import threading
from typing import TYPE_CHECKING, Callable, Generator, Iterable, Optional, TypeVar

from sqlalchemy.engine import Engine, make_url
from sqlmodel import Session, create_engine, text

from nutridb.core.config import config
from nutridb.core.errors import ConfigurationError

if TYPE_CHECKING:
    from nutridb.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_engine: Optional[Engine] = None
_closed = False
_lock = threading.Lock()
_hooks_installed = False


def _missing_url_message() -> str:
    if config.ENVIRONMENT == "development":
        return (
            "DATABASE_URL ist nicht gesetzt.\n"
            'Bitte "nutridb-setup" ausführen, um die lokale Datenbank einzurichten, '
            "oder eine .env-Datei mit der Verbindungs-URL anlegen."
        )
    return "DATABASE_URL ist nicht gesetzt. Bitte in den Environment-Variablen setzen."


def normalize_database_url(database_url: str) -> str:
    """
    Bringt eine Datenbank-URL in die Form, die SQLAlchemy mit psycopg2 erwartet.

    - postgres:// und postgresql:// werden zu postgresql+psycopg2://
    - Der Prisma-Parameter ?schema=<name> wird entfernt; ein anderes Schema
      als public wird als search_path über `options` gesetzt
    """
    url = make_url(database_url)
    if url.drivername in ("postgres", "postgresql"):
        url = url.set(drivername="postgresql+psycopg2")
    schema = url.query.get("schema")
    if schema is not None:
        url = url.difference_update_query(["schema"])
        if schema != "public" and "options" not in url.query:
            url = url.update_query_dict({"options": f"-csearch_path={schema}"})
    return url.render_as_string(hide_password=False)


def _create_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_engine(
        normalize_database_url(database_url),
        echo=False,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def get_engine() -> Engine:
    """
    Liefert die prozessweite Engine und erstellt sie beim ersten Aufruf.

    Raises:
        ConfigurationError: Wenn DATABASE_URL fehlt
        RuntimeError: Wenn die Engine bereits geschlossen wurde
    """
    global _engine
    with _lock:
        if _closed:
            raise RuntimeError("Datenbank-Engine wurde bereits geschlossen")
        if _engine is None:
            if not config.DATABASE_URL:
                raise ConfigurationError(_missing_url_message())
            _engine = _create_engine(config.DATABASE_URL)
            logger.debug("Datenbank-Engine erstellt")
        return _engine


def close_engine() -> bool:
    """
    Gibt den Connection-Pool frei. Weitere Aufrufe sind wirkungslos.

    Returns:
        True, wenn dieser Aufruf die Engine tatsächlich geschlossen hat
    """
    global _engine, _closed
    with _lock:
        if _closed:
            return False
        _closed = True
        engine, _engine = _engine, None
    if engine is not None:
        engine.dispose()
        logger.info("Datenbank-Verbindungen geschlossen")
    return True


def reset_engine() -> None:
    """Setzt den Lifecycle-Zustand zurück (für Tests und Neustarts im selben Prozess)."""
    global _engine, _closed
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _closed = False


def install_shutdown_hooks(
    signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
) -> None:
    """
    Registriert close_engine() für normales Prozessende und Signale.

    Bei SIGINT/SIGTERM wird die Engine geschlossen und der Prozess mit
    Exit-Code 0 beendet. Mehrfaches Installieren ist wirkungslos.
    """
    global _hooks_installed
    if _hooks_installed:
        return
    _hooks_installed = True

    atexit.register(close_engine)

    def signal_handler(signum, frame):
        try:
            signal_name = signal.Signals(signum).name
        except (ValueError, AttributeError):
            signal_name = str(signum)
        logger.info("Signal %s empfangen, schließe Datenbank-Verbindungen...", signal_name)
        close_engine()
        sys.exit(0)

    for sig in signals:
        signal.signal(sig, signal_handler)
    logger.debug("Shutdown-Hooks registriert")


def get_session() -> Generator[Session, None, None]:
    """
    Liefert eine Session auf der prozessweiten Engine.

    Yields:
        Session: SQLModel Session für Datenbankzugriffe
    """
    with Session(get_engine()) as session:
        yield session


def check_connection(engine: Optional[Engine] = None) -> None:
    """
    Leichtgewichtiger Verbindungstest (SELECT 1). Wirft bei Fehlern.
    """
    engine = engine or get_engine()
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def run_in_session(
    fn: Callable[[Session], _T],
    policy: Optional["RetryPolicy"] = None,
    engine: Optional[Engine] = None,
) -> _T:
    """
    Führt fn(session) in einer eigenen Transaktion aus.

    Jeder Versuch bekommt eine frische Session; bei transienten
    Verbindungsfehlern wird mit Exponential Backoff wiederholt.
    Fatale Fehler (z. B. IntegrityError) werden unverändert weitergereicht.
    """
    def _attempt() -> _T:
        with Session(engine or get_engine()) as session:
            result = fn(session)
            session.commit()
            return result

    from nutridb.resilience.retry import RetryExecutor

    return RetryExecutor(policy).execute_sync(_attempt)

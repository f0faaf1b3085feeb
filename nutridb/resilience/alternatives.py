"""
Fallback-Kette für gleichwertige Strategien.

Beispiel: `docker compose up -d` (Compose v2) und `docker-compose up -d`
(Legacy) sind zwei Dialekte derselben Operation. Sie werden der Reihe nach
versucht, der erste Erfolg gewinnt.
"""

import logging
from typing import Callable, List, Sequence, Tuple, TypeVar

from nutridb.core.errors import AlternativesExhaustedError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

Strategy = Tuple[str, Callable[[], _T]]


def try_alternatives(strategies: Sequence[Strategy]) -> _T:
    """
    Führt die Strategien nacheinander aus, bis eine erfolgreich ist.

    Args:
        strategies: Liste von (name, zero-arg callable)

    Returns:
        Ergebnis der ersten erfolgreichen Strategie

    Raises:
        AlternativesExhaustedError: Wenn alle Strategien fehlschlagen
            (der letzte Fehler ist als __cause__ verkettet)
    """
    if not strategies:
        raise ValueError("Mindestens eine Strategie erforderlich")

    errors: List[Tuple[str, Exception]] = []
    for name, strategy in strategies:
        try:
            result = strategy()
        except Exception as e:
            logger.info("Strategie '%s' fehlgeschlagen: %s", name, e)
            errors.append((name, e))
            continue
        if errors:
            logger.info("Strategie '%s' erfolgreich (nach %d Fehlversuchen)", name, len(errors))
        return result

    raise AlternativesExhaustedError(errors) from errors[-1][1]

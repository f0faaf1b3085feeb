"""
Bulk-Import von bereits validierten Datensätzen (Zutaten, Rezepte).

Jeder Schreibvorgang läuft einzeln über den RetryExecutor: transiente
Verbindungsfehler werden mit Backoff wiederholt, fachliche Fehler brechen
den Import sofort ab und werden unverändert weitergereicht.
"""

import json
import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from nutridb.resilience.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
WriteOne = Callable[[Record], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ImportSummary:
    total: int
    imported: int


def load_records(path: Path) -> List[Record]:
    """Liest ein JSON-Array von Datensätzen."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: erwartet ein JSON-Array, gefunden {type(data).__name__}")
    return data


async def import_records(
    records: Sequence[Record],
    write_one: WriteOne,
    policy: Optional[RetryPolicy] = None,
    on_progress: Optional[Callable[[int, int, Record], None]] = None,
    executor: Optional[RetryExecutor] = None,
    label_key: str = "name",
) -> ImportSummary:
    """
    Schreibt alle Datensätze nacheinander.

    Args:
        records: Datensätze (bereits validiert)
        write_one: Schreibt einen Datensatz (z. B. Upsert), sync oder async
        policy: Retry-Policy pro Schreibvorgang (Standard: aus config)
        on_progress: Callback (index, gesamt, datensatz) nach jedem Import
        executor: Fertiger Retry-Executor, hat Vorrang vor policy
        label_key: Feld für Log-Ausgaben
    """
    executor = executor or RetryExecutor(policy)
    total = len(records)
    logger.info("Importiere %d Datensätze...", total)

    for i, record in enumerate(records, start=1):
        label = record.get(label_key, "?") if isinstance(record, dict) else "?"
        try:
            await executor.execute(partial(write_one, record))
        except Exception:
            logger.error("Import bei Datensatz %d von %d abgebrochen: %s", i, total, label)
            raise
        logger.info("Importiert %d von %d: %s", i, total, label)
        if on_progress is not None:
            on_progress(i, total, record)

    logger.info("Import abgeschlossen (%d Datensätze)", total)
    return ImportSummary(total=total, imported=total)


async def import_file(
    path: Path,
    write_one: WriteOne,
    policy: Optional[RetryPolicy] = None,
    executor: Optional[RetryExecutor] = None,
    label_key: str = "name",
) -> ImportSummary:
    """Liest eine JSON-Datei und importiert ihre Datensätze."""
    records = load_records(path)
    return await import_records(
        records, write_one, policy=policy, executor=executor, label_key=label_key
    )

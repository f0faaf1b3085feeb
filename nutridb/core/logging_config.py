"""
Logging-Konfiguration.

Enthält JsonFormatter und setup_logging() für einheitliches
Log-Level und optionales JSON-Format (z. B. für CI-Logs).
"""

import json
import logging
from datetime import datetime, timezone

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Formatter für strukturierte JSON-Logs (eine Zeile pro Eintrag)."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Strukturierte Zusatzfelder (z. B. Retry-Events) übernehmen
        event = getattr(record, "event", None)
        if isinstance(event, dict):
            log_obj["event"] = event
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


def setup_logging(log_level: str = "INFO", log_json: bool = False) -> None:
    """
    Setzt Log-Level und optional JSON-Format für alle Root-Handler.

    Legt einen Standard-Handler an, falls noch keiner existiert.

    Args:
        log_level: Name des Log-Levels (z. B. "INFO", "DEBUG").
        log_json: Wenn True, werden alle Handler auf JsonFormatter umgestellt.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    level = getattr(logging, log_level.upper(), logging.INFO)
    root.setLevel(level)
    if log_json:
        for h in root.handlers:
            h.setFormatter(JsonFormatter())

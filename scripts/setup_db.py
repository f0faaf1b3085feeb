#!/usr/bin/env python3
"""
Richtet die lokale Entwicklungsdatenbank ein (Wrapper für `nutridb-setup`).

Startet bzw. erstellt den PostgreSQL-Container, wartet bis er bereit ist,
legt die .env-Datei an und wendet Migrationen an.
"""
import sys
from pathlib import Path

# Projekt-Root für nutridb-Import (wichtig bei Ausführung aus scripts/)
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from nutridb.setup_db import main


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))

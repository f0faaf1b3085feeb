"""
nutridb: Datenwerkzeuge für den Nutrition-Tracker.

Lokale Datenbank bereitstellen, Migrationen anwenden und Zutaten/Rezepte
importieren, mit Retry bei transienten Verbindungsfehlern.
"""

__version__ = "0.1.0"

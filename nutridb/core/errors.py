"""
Fehler-Taxonomie für nutridb.

Alle eigenen Exceptions erben von NutriDbError. Fachliche Datenfehler
(Constraint-Verletzungen, ungültige Eingaben) werden nicht
gekapselt, sondern unverändert an den Aufrufer weitergereicht.
"""

from typing import List, Optional


class NutriDbError(Exception):
    """Basisklasse aller nutridb-Fehler."""


class ConfigurationError(NutriDbError):
    """Pflicht-Konfiguration fehlt oder ist ungültig (z. B. DATABASE_URL)."""


class ToolingMissingError(NutriDbError):
    """Benötigtes externes Werkzeug (docker, docker compose) ist nicht installiert."""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        message = f"{tool} ist nicht installiert."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)


class RuntimeCommandError(NutriDbError):
    """Ein Aufruf der Container-Runtime endete mit Exit-Code != 0."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        detail = (stderr or "").strip()
        message = f"Befehl '{' '.join(self.command)}' fehlgeschlagen (Exit-Code {returncode})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class AlternativesExhaustedError(NutriDbError):
    """Alle gleichwertigen Strategien einer Fallback-Kette sind fehlgeschlagen."""

    def __init__(self, errors: List[tuple]):
        self.errors = list(errors)
        names = ", ".join(name for name, _ in self.errors) or "keine"
        super().__init__(f"Alle Alternativen fehlgeschlagen ({names})")


class ProbeFailedError(NutriDbError):
    """Liveness-Probe war nicht erfolgreich (Ressource akzeptiert noch keine Verbindungen)."""


class ResourceUnreachableError(NutriDbError):
    """Die Ressource konnte überhaupt nicht gestartet bzw. erreicht werden."""

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"Ressource '{name}' ist nicht erreichbar")


class ResourceStartError(ResourceUnreachableError):
    """Start per Name UND Neuerstellung der Ressource sind fehlgeschlagen."""

    def __init__(self, name: str):
        super().__init__(
            name,
            f"Container '{name}' konnte weder gestartet noch neu erstellt werden",
        )


class ReadinessTimeoutError(NutriDbError):
    """
    Ressource läuft, wurde aber innerhalb des Poll-Budgets nie bereit.

    Abgrenzung zu ResourceUnreachableError: hier wurde die
    Ressource gestartet, die Liveness-Probe war aber nie erfolgreich.
    """

    def __init__(self, name: str, attempts: int):
        self.name = name
        self.attempts = attempts
        super().__init__(
            f"Datenbank in '{name}' wurde nach {attempts} Versuchen nicht bereit"
        )


class MigrationError(NutriDbError):
    """Schema-Migration, Schema-Push oder Artefakt-Generierung fehlgeschlagen."""

"""
Container-Runtime über die docker-CLI.

Alle Aufrufe sind synchrone Subprozesse; ein Exit-Code != 0 gilt als Fehler.
Die Erstellung aus der Compose-Deklaration probiert zwei gleichwertige
CLI-Dialekte (Compose v2 und Legacy docker-compose) der Reihe nach.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from nutridb.core.config import config
from nutridb.core.errors import RuntimeCommandError
from nutridb.resilience.alternatives import try_alternatives

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 300


class ContainerRuntime(Protocol):
    """Schnittstelle, die der Readiness-Orchestrator von einer Runtime erwartet."""

    def exists(self, name: str) -> bool: ...

    def is_running(self, name: str) -> bool: ...

    def start(self, name: str) -> None: ...

    def create_from_declaration(self) -> None: ...


def _run_command(
    cmd: List[str], cwd: Optional[Path] = None, timeout: int = COMMAND_TIMEOUT
) -> Tuple[int, str, str]:
    """Führt einen Befehl aus (synchron). Returns (exit_code, stdout, stderr)."""
    try:
        result = subprocess.run(
            cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout
        )
        return (result.returncode, result.stdout, result.stderr)
    except subprocess.TimeoutExpired:
        logger.error("Befehl Timeout: %s", " ".join(cmd))
        return (-1, "", f"Timeout: Befehl dauerte länger als {timeout} Sekunden")
    except OSError as e:
        logger.debug("Befehl konnte nicht gestartet werden: %s (%s)", " ".join(cmd), e)
        return (-1, "", str(e))


class DockerCliRuntime:
    """
    Container-Runtime auf Basis der docker-CLI.

    Args:
        project_dir: Arbeitsverzeichnis für docker compose
        compose_file: Compose-Datei relativ zu project_dir
    """

    def __init__(
        self,
        project_dir: Optional[Path] = None,
        compose_file: Optional[str] = None,
        docker_binary: str = "docker",
        legacy_compose_binary: str = "docker-compose",
    ):
        self.project_dir = project_dir or config.PROJECT_DIR
        self.compose_file = compose_file or config.COMPOSE_FILE
        self.docker = docker_binary
        self.legacy_compose = legacy_compose_binary

    def _succeeds(self, cmd: List[str]) -> bool:
        code, _, _ = _run_command(cmd, cwd=self.project_dir)
        return code == 0

    def _check(self, cmd: List[str]) -> str:
        code, stdout, stderr = _run_command(cmd, cwd=self.project_dir)
        if code != 0:
            raise RuntimeCommandError(cmd, code, stderr)
        return stdout

    # Tooling

    def is_installed(self) -> bool:
        if shutil.which(self.docker) is None:
            return False
        return self._succeeds([self.docker, "--version"])

    def compose_available(self) -> bool:
        if self._succeeds([self.docker, "compose", "version"]):
            return True
        return self._succeeds([self.legacy_compose, "--version"])

    # Discovery

    def _list_names(self, name: str, include_stopped: bool) -> List[str]:
        cmd = [self.docker, "ps"]
        if include_stopped:
            cmd.append("-a")
        cmd += ["--filter", f"name={name}", "--format", "{{.Names}}"]
        code, stdout, stderr = _run_command(cmd, cwd=self.project_dir)
        if code != 0:
            logger.debug("docker ps fehlgeschlagen (%d): %s", code, stderr.strip())
            return []
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    def is_running(self, name: str) -> bool:
        # --filter name= matcht auch Teilstrings, daher exakter Vergleich
        return name in self._list_names(name, include_stopped=False)

    def exists(self, name: str) -> bool:
        return name in self._list_names(name, include_stopped=True)

    # Zustandsänderungen

    def start(self, name: str) -> None:
        self._check([self.docker, "start", name])

    def _compose_commands(self) -> List[Tuple[str, List[str]]]:
        return [
            ("docker compose", [self.docker, "compose", "-f", self.compose_file, "up", "-d"]),
            ("docker-compose", [self.legacy_compose, "-f", self.compose_file, "up", "-d"]),
        ]

    def create_from_declaration(self) -> None:
        """
        Erstellt und startet die Container aus der Compose-Datei (idempotent).

        Raises:
            AlternativesExhaustedError: Wenn beide Compose-Dialekte fehlschlagen
        """
        try_alternatives(
            [
                (label, lambda cmd=cmd: self._check(cmd))
                for label, cmd in self._compose_commands()
            ]
        )

    def exec(self, name: str, args: List[str]) -> Tuple[int, str, str]:
        """Führt einen Befehl im Container aus. Returns (exit_code, stdout, stderr)."""
        return _run_command([self.docker, "exec", name] + list(args), cwd=self.project_dir)

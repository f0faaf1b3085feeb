"""
Environment package: Container-Runtime, Liveness-Probes, Readiness-Orchestrierung,
.env-Materialisierung und Schema-Migrationen.
"""

from nutridb.environment.envfile import ensure_env_file
from nutridb.environment.migrations import (
    AlembicMigrationTool,
    SchemaOutcome,
    apply_schema,
    load_models,
)
from nutridb.environment.probes import PgIsReadyProbe, SqlProbe
from nutridb.environment.readiness import (
    PollBudget,
    ReadinessReport,
    ResourceReadinessOrchestrator,
    ResourceState,
)
from nutridb.environment.runtime import ContainerRuntime, DockerCliRuntime

__all__ = [
    "AlembicMigrationTool",
    "ContainerRuntime",
    "DockerCliRuntime",
    "PgIsReadyProbe",
    "PollBudget",
    "ReadinessReport",
    "ResourceReadinessOrchestrator",
    "ResourceState",
    "SchemaOutcome",
    "SqlProbe",
    "apply_schema",
    "ensure_env_file",
    "load_models",
]

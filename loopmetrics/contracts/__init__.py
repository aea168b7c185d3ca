"""
contracts/ - External document schemas and loaders.
"""

from .schemas import (
    AttributeDefinition,
    BlockDefinition,
    ModelDefinition,
    ScenarioDefinition,
    RunOptionsDefinition,
    GroupDiagnosticPayload,
    RunDiagnosticsPayload,
    RunResultPayload,
)
from .loader import (
    define_model,
    define_scenarios,
    load_model_file,
    load_scenario_file,
)

__all__ = [
    # Schemas
    "AttributeDefinition",
    "BlockDefinition",
    "ModelDefinition",
    "ScenarioDefinition",
    "RunOptionsDefinition",
    "GroupDiagnosticPayload",
    "RunDiagnosticsPayload",
    "RunResultPayload",
    # Loaders
    "define_model",
    "define_scenarios",
    "load_model_file",
    "load_scenario_file",
]

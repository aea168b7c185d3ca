"""
errors/ - Error Taxonomy

Structured exception hierarchy for model definition and evaluation runs.
"""

from .taxonomy import (
    ErrorCategory,
    ErrorCode,
    LoopMetricsError,
    DefinitionError,
    DuplicateAttributeError,
    UnknownDependencyError,
    MissingFormulaError,
    UnexpectedFormulaError,
    MissingDependencyDeclarationError,
    InvalidDefaultError,
    InvalidNameError,
    RegistrySealedError,
    RegistryNotSealedError,
    UnknownAttributeError,
    InvalidOverrideError,
    UnknownScenarioError,
    DuplicateScenarioError,
    RuntimeEvaluationError,
    FormulaEvaluationError,
    RunCancelledError,
    InvalidTransitionError,
)

__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "LoopMetricsError",
    # Definition
    "DefinitionError",
    "DuplicateAttributeError",
    "UnknownDependencyError",
    "MissingFormulaError",
    "UnexpectedFormulaError",
    "MissingDependencyDeclarationError",
    "InvalidDefaultError",
    "InvalidNameError",
    "RegistrySealedError",
    "RegistryNotSealedError",
    "UnknownAttributeError",
    # Scenario
    "InvalidOverrideError",
    "UnknownScenarioError",
    "DuplicateScenarioError",
    # Runtime
    "RuntimeEvaluationError",
    "FormulaEvaluationError",
    "RunCancelledError",
    "InvalidTransitionError",
]

"""
errors/taxonomy.py - Error classification system

Definition errors are raised while a model or scenario set is loaded and
abort construction. Runtime errors are scoped to a single evaluation run.
Convergence problems are diagnostics and never appear here.
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Dict, Optional, Sequence


class ErrorCategory(Enum):
    """Error categories."""
    DEFINITION = "definition"
    SCENARIO = "scenario"
    RUNTIME = "runtime"


class ErrorCode(Enum):
    """Specific error codes."""

    # Definition (1xxx)
    DEF_DUPLICATE_ATTRIBUTE = 1001
    DEF_UNKNOWN_DEPENDENCY = 1002
    DEF_MISSING_FORMULA = 1003
    DEF_UNEXPECTED_FORMULA = 1004
    DEF_MISSING_DEPENDENCIES = 1005
    DEF_INVALID_DEFAULT = 1006
    DEF_INVALID_NAME = 1007
    DEF_SEALED = 1008
    DEF_NOT_SEALED = 1009
    DEF_UNKNOWN_ATTRIBUTE = 1010

    # Scenario (2xxx)
    SCN_INVALID_OVERRIDE = 2001
    SCN_UNKNOWN = 2002
    SCN_DUPLICATE = 2003

    # Runtime (3xxx)
    RUN_FORMULA_FAILED = 3001
    RUN_CANCELLED = 3002
    RUN_INVALID_TRANSITION = 3003


class LoopMetricsError(Exception):
    """Base class for all engine errors."""

    code: ErrorCode = ErrorCode.DEF_UNKNOWN_ATTRIBUTE
    category: ErrorCategory = ErrorCategory.DEFINITION

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "details": {k: _plain(v) for k, v in self.details.items()},
        }


def _plain(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


# =============================================================================
# DEFINITION ERRORS
# =============================================================================

class DefinitionError(LoopMetricsError):
    """Raised while a model definition is being loaded or validated."""
    category = ErrorCategory.DEFINITION


class DuplicateAttributeError(DefinitionError):
    code = ErrorCode.DEF_DUPLICATE_ATTRIBUTE

    def __init__(self, identity: str):
        super().__init__(f"Attribute already defined: {identity}", identity=identity)
        self.identity = identity


class UnknownDependencyError(DefinitionError):
    code = ErrorCode.DEF_UNKNOWN_DEPENDENCY

    def __init__(self, missing: Dict[str, Sequence[str]]):
        listing = "; ".join(
            f"{ident} -> {', '.join(refs)}" for ident, refs in sorted(missing.items())
        )
        super().__init__(f"Unknown dependencies: {listing}", missing=missing)
        self.missing = {k: tuple(v) for k, v in missing.items()}


class MissingFormulaError(DefinitionError):
    code = ErrorCode.DEF_MISSING_FORMULA

    def __init__(self, identity: str):
        super().__init__(f"Calculated attribute {identity} has no formula", identity=identity)
        self.identity = identity


class UnexpectedFormulaError(DefinitionError):
    code = ErrorCode.DEF_UNEXPECTED_FORMULA

    def __init__(self, identity: str):
        super().__init__(
            f"Input attribute {identity} cannot carry a formula or dependencies",
            identity=identity,
        )
        self.identity = identity


class MissingDependencyDeclarationError(DefinitionError):
    code = ErrorCode.DEF_MISSING_DEPENDENCIES

    def __init__(self, identity: str):
        super().__init__(
            f"Calculated attribute {identity} must declare its dependencies "
            f"(use an empty list for none)",
            identity=identity,
        )
        self.identity = identity


class InvalidDefaultError(DefinitionError):
    code = ErrorCode.DEF_INVALID_DEFAULT

    def __init__(self, identity: str, reason: str):
        super().__init__(f"Invalid default for {identity}: {reason}", identity=identity)
        self.identity = identity


class InvalidNameError(DefinitionError):
    code = ErrorCode.DEF_INVALID_NAME

    def __init__(self, name: str):
        super().__init__(f"Invalid block or attribute name: {name!r}", name=name)
        self.name = name


class RegistrySealedError(DefinitionError):
    code = ErrorCode.DEF_SEALED


class RegistryNotSealedError(DefinitionError):
    code = ErrorCode.DEF_NOT_SEALED


class UnknownAttributeError(DefinitionError, KeyError):
    code = ErrorCode.DEF_UNKNOWN_ATTRIBUTE

    def __init__(self, identity: str):
        super().__init__(f"Unknown attribute: {identity}", identity=identity)
        self.identity = identity

    def __str__(self) -> str:
        return self.message


# =============================================================================
# SCENARIO ERRORS
# =============================================================================

class InvalidOverrideError(DefinitionError):
    code = ErrorCode.SCN_INVALID_OVERRIDE
    category = ErrorCategory.SCENARIO

    def __init__(self, scenario: str, identity: str, reason: str):
        super().__init__(
            f"Scenario {scenario!r}: invalid override for {identity}: {reason}",
            scenario=scenario,
            identity=identity,
        )
        self.scenario = scenario
        self.identity = identity
        self.reason = reason


class UnknownScenarioError(DefinitionError, KeyError):
    code = ErrorCode.SCN_UNKNOWN
    category = ErrorCategory.SCENARIO

    def __init__(self, scenario: str):
        super().__init__(f"Unknown scenario: {scenario}", scenario=scenario)
        self.scenario = scenario

    def __str__(self) -> str:
        return self.message


class DuplicateScenarioError(DefinitionError):
    code = ErrorCode.SCN_DUPLICATE
    category = ErrorCategory.SCENARIO

    def __init__(self, scenario: str):
        super().__init__(f"Scenario already defined: {scenario}", scenario=scenario)
        self.scenario = scenario


# =============================================================================
# RUNTIME ERRORS
# =============================================================================

class RuntimeEvaluationError(LoopMetricsError):
    """Raised during a run; the run aborts and nothing is cached."""
    category = ErrorCategory.RUNTIME


class FormulaEvaluationError(RuntimeEvaluationError):
    code = ErrorCode.RUN_FORMULA_FAILED

    def __init__(self, identity: str, reason: str, iteration: Optional[int] = None):
        where = f" (iteration {iteration})" if iteration is not None else ""
        super().__init__(
            f"Formula for {identity} failed{where}: {reason}",
            identity=identity,
            iteration=iteration,
        )
        self.identity = identity
        self.reason = reason
        self.iteration = iteration


class RunCancelledError(RuntimeEvaluationError):
    code = ErrorCode.RUN_CANCELLED

    def __init__(self, reason: str, diagnostics: Optional[Sequence[Any]] = None):
        super().__init__(f"Run cancelled: {reason}", reason=reason)
        self.reason = reason
        self.diagnostics = list(diagnostics or [])


class InvalidTransitionError(RuntimeEvaluationError):
    code = ErrorCode.RUN_INVALID_TRANSITION

    def __init__(self, from_state: Any, to_state: Any):
        super().__init__(
            f"Illegal run state transition: {from_state} -> {to_state}",
            from_state=from_state,
            to_state=to_state,
        )
        self.from_state = from_state
        self.to_state = to_state

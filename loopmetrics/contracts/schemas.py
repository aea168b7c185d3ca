"""
contracts/schemas.py - Pydantic document models

External shapes of model definitions, scenario definitions, run options and
run results. Formulas travel by name; the caller supplies the callables in
a formula library when the document is loaded.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from loopmetrics.core.enums import AttributeKind
from loopmetrics.core.model import SEPARATOR


def _check_name(value: str) -> str:
    if SEPARATOR in value:
        raise ValueError(f"name may not contain {SEPARATOR!r}: {value}")
    return value


# =============================================================================
# Model Schemas
# =============================================================================


class AttributeDefinition(BaseModel):
    """One attribute of a block."""

    name: str = Field(..., min_length=1, description="Attribute name, unique within its block")
    kind: AttributeKind = Field(..., description="input or calculated")
    default: Optional[float] = Field(None, description="Default value (input only)")
    formula: Optional[str] = Field(
        None, description="Name of the formula in the formula library (calculated only)"
    )
    dependencies: Optional[List[str]] = Field(
        None, description="Declared references, bare or Block.attr"
    )
    description: str = Field(default="", description="Human-readable description")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)


class BlockDefinition(BaseModel):
    """A block and its attributes, in declaration order."""

    name: str = Field(..., min_length=1, description="Block name")
    description: str = Field(default="", description="Human-readable description")
    attributes: List[AttributeDefinition] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)


class ScenarioDefinition(BaseModel):
    """
    A named set of input overrides.

    Overrides may be flat (``{"Block.attr": 1.0}``) or nested by block
    (``{"Block": {"attr": 1.0}}``); both forms can be mixed.
    """

    name: str = Field(..., min_length=1, description="Scenario name")
    description: str = Field(default="", description="Human-readable description")
    overrides: Dict[str, Union[float, Dict[str, float]]] = Field(default_factory=dict)

    def flat_overrides(self) -> Dict[str, float]:
        """Overrides keyed by qualified identity."""
        flat: Dict[str, float] = {}
        for key, value in self.overrides.items():
            if isinstance(value, dict):
                for attr, v in value.items():
                    flat[f"{key}{SEPARATOR}{attr}"] = v
            else:
                flat[key] = value
        return flat


class ModelDefinition(BaseModel):
    """A complete model document."""

    version: str = Field(default="1", description="Model version")
    blocks: List[BlockDefinition] = Field(default_factory=list)
    scenarios: List[ScenarioDefinition] = Field(default_factory=list)


# =============================================================================
# Run Schemas
# =============================================================================


class RunOptionsDefinition(BaseModel):
    """Run options as accepted from callers."""

    max_iterations: int = Field(default=100, ge=1, description="Iteration cap per cyclic group")
    threshold: float = Field(default=0.001, gt=0, description="Convergence threshold")
    deadline_seconds: Optional[float] = Field(None, gt=0, description="Wall-clock budget")
    parallel: bool = Field(default=True, description="Evaluate a level's components concurrently")
    max_workers: int = Field(default=4, ge=1, description="Worker threads per run")
    warm_start: bool = Field(default=False, description="Seed cyclic groups from previous values")
    use_cache: bool = Field(default=True, description="Read and write the result cache")

    def to_options(self):
        from loopmetrics.kernel.context import RunOptions

        return RunOptions(**self.model_dump())


class GroupDiagnosticPayload(BaseModel):
    """Convergence record of one cyclic group."""

    members: List[str]
    converged: bool
    iterations: int = Field(..., ge=0)
    max_delta: Optional[float] = Field(None, description="Last sweep change, None before any sweep")
    status: str
    from_cache: bool = False


class RunDiagnosticsPayload(BaseModel):
    """Diagnostics of a run."""

    run_id: str = ""
    state: str
    from_cache: bool = False
    elapsed_ms: float = Field(default=0.0, ge=0)
    levels: int = Field(default=0, ge=0)
    evaluated_components: int = Field(default=0, ge=0)
    cached_components: int = Field(default=0, ge=0)
    per_group: List[GroupDiagnosticPayload] = Field(default_factory=list)


class RunResultPayload(BaseModel):
    """Run result as handed to reporting and UI consumers."""

    scenario: str
    model_version: str
    fingerprint: str
    converged: bool
    values: Dict[str, float] = Field(default_factory=dict)
    diagnostics: RunDiagnosticsPayload

    def by_block(self) -> Dict[str, Dict[str, float]]:
        """Values nested as ``{block: {attribute: value}}``."""
        nested: Dict[str, Dict[str, Any]] = {}
        for identity, value in self.values.items():
            block, _, name = identity.partition(SEPARATOR)
            nested.setdefault(block, {})[name] = value
        return nested

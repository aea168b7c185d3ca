"""
contracts/loader.py - Build registries and scenario stores from documents

Documents are validated with the pydantic schemas first; the registry and
scenario store then apply their own checks (unknown dependencies, invalid
overrides) and raise definition errors.
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Tuple, Union
import json
import logging

from loopmetrics.contracts.schemas import ModelDefinition, ScenarioDefinition
from loopmetrics.core.enums import AttributeKind
from loopmetrics.core.model import Formula, qualify
from loopmetrics.core.registry import ModelRegistry
from loopmetrics.core.scenarios import ScenarioStore
from loopmetrics.errors import MissingFormulaError

logger = logging.getLogger(__name__)


def define_model(
    definition: Union[ModelDefinition, Mapping[str, Any]],
    formulas: Mapping[str, Formula],
    version: Optional[str] = None,
    seal: bool = True,
) -> ModelRegistry:
    """
    Build a model registry from a model document.

    Args:
        definition: ModelDefinition or a dict of the same shape
        formulas: Formula library; calculated attributes name their formula
            here (by default the attribute's qualified identity)
        version: Overrides the document's version
        seal: Seal the registry before returning it

    Raises:
        pydantic.ValidationError: malformed document
        MissingFormulaError: a calculated attribute names no known formula
        DefinitionError: any registry check failed
    """
    if not isinstance(definition, ModelDefinition):
        definition = ModelDefinition.model_validate(definition)

    registry = ModelRegistry(version=version or definition.version)
    for block in definition.blocks:
        registry.define_block(block.name, block.description)
        for attr in block.attributes:
            formula = None
            if attr.kind is AttributeKind.CALCULATED:
                formula_name = attr.formula or qualify(block.name, attr.name)
                formula = formulas.get(formula_name)
                if formula is None:
                    raise MissingFormulaError(qualify(block.name, attr.name))
            registry.define_attribute(
                block.name,
                attr.name,
                attr.kind,
                formula=formula,
                dependencies=attr.dependencies,
                default=attr.default,
                description=attr.description,
            )

    if seal:
        registry.seal()
    logger.info(f"Loaded model v{registry.version} with {len(registry)} attributes")
    return registry


def define_scenarios(
    store: ScenarioStore,
    definitions: Iterable[Union[ScenarioDefinition, Mapping[str, Any]]],
    replace: bool = False,
) -> ScenarioStore:
    """Add scenario documents to a store."""
    count = 0
    for definition in definitions:
        if not isinstance(definition, ScenarioDefinition):
            definition = ScenarioDefinition.model_validate(definition)
        store.define_scenario(
            definition.name,
            definition.flat_overrides(),
            description=definition.description,
            replace=replace,
        )
        count += 1
    logger.debug(f"Defined {count} scenarios")
    return store


def load_model_file(
    filepath: Union[str, Path],
    formulas: Mapping[str, Formula],
) -> Tuple[ModelRegistry, ScenarioStore]:
    """
    Load a model document (with optional scenarios) from JSON.

    Returns:
        (registry, scenario store)
    """
    with open(filepath) as f:
        definition = ModelDefinition.model_validate(json.load(f))
    registry = define_model(definition, formulas)
    store = define_scenarios(ScenarioStore(registry), definition.scenarios)
    return registry, store


def load_scenario_file(
    filepath: Union[str, Path],
    store: ScenarioStore,
    replace: bool = False,
) -> ScenarioStore:
    """
    Load scenarios from JSON.

    The file holds either a list of scenario documents or a mapping
    ``{name: overrides}``.
    """
    with open(filepath) as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = [{"name": name, "overrides": overrides} for name, overrides in data.items()]

    return define_scenarios(store, data, replace=replace)

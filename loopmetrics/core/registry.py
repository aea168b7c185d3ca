"""
Model Registry

Holds Block and Attribute definitions for one model version.

Definitions may reference attributes that are declared later in the same
load; references are checked once, when ``seal()`` is called. After sealing
the registry is read-only and safe to share between threads.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
import logging
import threading

from loopmetrics.core.enums import AttributeKind
from loopmetrics.core.model import (
    SEPARATOR,
    Attribute,
    Block,
    Formula,
    is_number,
    qualify,
)
from loopmetrics.errors import (
    DuplicateAttributeError,
    InvalidDefaultError,
    InvalidNameError,
    MissingDependencyDeclarationError,
    MissingFormulaError,
    RegistrySealedError,
    UnexpectedFormulaError,
    UnknownAttributeError,
    UnknownDependencyError,
)

logger = logging.getLogger(__name__)


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not name or SEPARATOR in name:
        raise InvalidNameError(name)


class ModelRegistry:
    """
    Registry of blocks and attributes for a single model version.

    Attributes keep their declaration order; that order is the tie-break
    used wherever evaluation order is not fixed by dependencies.
    """

    def __init__(self, version: str = "1"):
        self._version = str(version)
        self._blocks: Dict[str, Block] = {}
        self._attributes: Dict[str, Attribute] = {}
        self._order: Dict[str, int] = {}
        self._sealed = False
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Definition
    # -------------------------------------------------------------------------

    def define_block(self, name: str, description: str = "") -> Block:
        """Define a block. Defining an existing block returns it unchanged."""
        with self._lock:
            self._ensure_open()
            return self._define_block(name, description)

    def _define_block(self, name: str, description: str = "") -> Block:
        _check_name(name)
        block = self._blocks.get(name)
        if block is None:
            block = Block(name=name, description=description)
            self._blocks[name] = block
        elif description and not block.description:
            block.description = description
        return block

    def define_attribute(
        self,
        block: str,
        name: str,
        kind: Union[AttributeKind, str],
        formula: Optional[Formula] = None,
        dependencies: Optional[Sequence[str]] = None,
        default: Optional[float] = None,
        description: str = "",
    ) -> Attribute:
        """
        Define an attribute inside a block (created on demand).

        Args:
            block: Owning block name
            name: Attribute name, unique within the block
            kind: ``input`` or ``calculated``
            formula: Callable over a dependency snapshot (calculated only)
            dependencies: Declared references, bare names resolve inside
                the block; must be given (possibly empty) for calculated
            default: Default value (input only)

        Raises:
            DuplicateAttributeError, MissingFormulaError,
            UnexpectedFormulaError, MissingDependencyDeclarationError,
            InvalidDefaultError, RegistrySealedError
        """
        kind = AttributeKind(kind)
        _check_name(name)

        with self._lock:
            self._ensure_open()
            owner = self._define_block(block)
            identity = qualify(owner.name, name)

            if identity in self._attributes:
                raise DuplicateAttributeError(identity)

            if kind is AttributeKind.INPUT:
                if formula is not None or dependencies:
                    raise UnexpectedFormulaError(identity)
                if default is None:
                    raise InvalidDefaultError(identity, "input attributes need a default value")
                if not is_number(default):
                    raise InvalidDefaultError(identity, f"{default!r} is not a finite number")
                declared = None
                default = float(default)
            else:
                if formula is None:
                    raise MissingFormulaError(identity)
                if not callable(formula):
                    raise MissingFormulaError(identity)
                if dependencies is None:
                    raise MissingDependencyDeclarationError(identity)
                if default is not None:
                    raise InvalidDefaultError(identity, "calculated attributes take no default")
                if isinstance(dependencies, str):
                    dependencies = [dependencies]
                declared = tuple(dict.fromkeys(dependencies))

            attribute = Attribute(
                block=owner.name,
                name=name,
                kind=kind,
                default=default,
                formula=formula,
                dependencies=declared,
                description=description,
            )
            self._attributes[identity] = attribute
            self._order[identity] = len(self._order)
            owner.attributes.append(identity)

        logger.debug(f"Defined {kind.value} attribute {identity}")
        return attribute

    def define_input(self, block: str, name: str, default: float, description: str = "") -> Attribute:
        """Shorthand for an input attribute."""
        return self.define_attribute(
            block, name, AttributeKind.INPUT, default=default, description=description
        )

    def define_calculated(
        self,
        block: str,
        name: str,
        formula: Formula,
        dependencies: Sequence[str],
        description: str = "",
    ) -> Attribute:
        """Shorthand for a calculated attribute."""
        return self.define_attribute(
            block,
            name,
            AttributeKind.CALCULATED,
            formula=formula,
            dependencies=dependencies,
            description=description,
        )

    def seal(self) -> "ModelRegistry":
        """
        Validate all references and freeze the registry.

        Raises:
            UnknownDependencyError: listing every unresolved reference
        """
        with self._lock:
            if self._sealed:
                return self

            missing: Dict[str, List[str]] = {}
            resolved: Dict[str, Attribute] = {}

            for identity, attribute in self._attributes.items():
                if not attribute.is_calculated:
                    resolved[identity] = attribute
                    continue
                dep_ids = []
                for ref in attribute.dependencies or ():
                    dep_id = attribute.resolve_reference(ref)
                    if dep_id not in self._attributes:
                        missing.setdefault(identity, []).append(ref)
                    elif dep_id not in dep_ids:
                        dep_ids.append(dep_id)
                resolved[identity] = replace(attribute, dependency_ids=tuple(dep_ids))

            if missing:
                raise UnknownDependencyError(missing)

            self._attributes = resolved
            self._sealed = True

        logger.info(
            f"Model registry v{self._version} sealed: "
            f"{len(self._blocks)} blocks, {len(self._attributes)} attributes"
        )
        return self

    def _ensure_open(self) -> None:
        if self._sealed:
            raise RegistrySealedError(
                f"Model registry v{self._version} is sealed; define a new version instead"
            )

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def resolve(self, identity: str) -> Attribute:
        """Get an attribute by qualified identity."""
        try:
            return self._attributes[identity]
        except KeyError:
            raise UnknownAttributeError(identity) from None

    def has_attribute(self, identity: str) -> bool:
        return identity in self._attributes

    def get_block(self, name: str) -> Block:
        """Copy of a block; changing it does not touch the registry."""
        try:
            block = self._blocks[name]
        except KeyError:
            raise UnknownAttributeError(name) from None
        return replace(block, attributes=list(block.attributes))

    def declaration_index(self, identity: str) -> int:
        """Position of an attribute in declaration order."""
        try:
            return self._order[identity]
        except KeyError:
            raise UnknownAttributeError(identity) from None

    def sort_by_declaration(self, identities: Iterable[str]) -> List[str]:
        return sorted(identities, key=self.declaration_index)

    @property
    def version(self) -> str:
        return self._version

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    @property
    def blocks(self) -> List[Block]:
        return [replace(b, attributes=list(b.attributes)) for b in self._blocks.values()]

    @property
    def attributes(self) -> List[Attribute]:
        """All attributes in declaration order."""
        return list(self._attributes.values())

    @property
    def identities(self) -> List[str]:
        return list(self._attributes.keys())

    @property
    def input_ids(self) -> List[str]:
        return [i for i, a in self._attributes.items() if a.is_input]

    @property
    def calculated_ids(self) -> List[str]:
        return [i for i, a in self._attributes.items() if a.is_calculated]

    def defaults(self) -> Dict[str, float]:
        """Default value of every input attribute."""
        return {i: a.default for i, a in self._attributes.items() if a.is_input}

    def __len__(self) -> int:
        return len(self._attributes)

    def __contains__(self, identity: str) -> bool:
        return identity in self._attributes

    # -------------------------------------------------------------------------
    # Construction helpers
    # -------------------------------------------------------------------------

    @classmethod
    def from_blocks(
        cls,
        blocks: Mapping[str, Mapping[str, Mapping[str, Any]]],
        version: str = "1",
        seal: bool = True,
    ) -> "ModelRegistry":
        """
        Build a registry from a nested ``{block: {attribute: spec}}`` mapping.

        Each spec holds ``kind`` plus either ``default`` or ``formula`` and
        ``dependencies``.
        """
        registry = cls(version=version)
        for block_name, attributes in blocks.items():
            registry.define_block(block_name)
            for attr_name, spec in attributes.items():
                registry.define_attribute(
                    block_name,
                    attr_name,
                    spec.get("kind", AttributeKind.INPUT),
                    formula=spec.get("formula"),
                    dependencies=spec.get("dependencies"),
                    default=spec.get("default"),
                    description=spec.get("description", ""),
                )
        if seal:
            registry.seal()
        return registry

    def to_dict(self) -> Dict[str, Any]:
        """Serialize definitions (formulas are omitted)."""
        return {
            "version": self._version,
            "sealed": self._sealed,
            "blocks": {
                block.name: {
                    "description": block.description,
                    "attributes": {
                        self._attributes[i].name: {
                            "kind": self._attributes[i].kind.value,
                            "default": self._attributes[i].default,
                            "dependencies": list(self._attributes[i].dependencies or ()),
                        }
                        for i in block.attributes
                    },
                }
                for block in self._blocks.values()
            },
        }

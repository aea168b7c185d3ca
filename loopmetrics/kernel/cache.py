"""
kernel/cache.py - Result caching with single-flight

Two tiers, both content-addressed:

- Scenario tier: fingerprint(model version, scenario, resolved inputs,
  solver options) -> complete run result. A hit skips the scheduler.
- Component tier: (model version, component, upstream input values,
  solver options) -> values of one condensed component. A run that
  changes only inputs outside a component's upstream closure reuses it.

Entries are immutable once written and replaced, never updated. Only one
computation per fingerprint runs at a time; concurrent callers wait for it.
Failed or cancelled computations write nothing.
"""

from __future__ import annotations
from collections import OrderedDict
from concurrent.futures import Future, TimeoutError as WaitTimeout
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    TypeVar,
)
import hashlib
import json
import logging
import threading
import time

from loopmetrics.dependencies.invalidation import (
    InvalidationEvent,
    InvalidationIndex,
    InvalidationReason,
    InvalidationScope,
)
from loopmetrics.errors import RunCancelledError
from loopmetrics.kernel.context import CancellationToken
from loopmetrics.kernel.solver import GroupDiagnostic

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How often a waiting caller re-checks its own cancellation token
WAIT_SLICE_SECONDS = 0.05


# =============================================================================
# KEYS
# =============================================================================

def _digest(payload: Dict[str, Any]) -> str:
    content = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(content.encode()).hexdigest()[:32]


def compute_fingerprint(
    model_version: str,
    scenario: str,
    inputs: Mapping[str, float],
    solver_key: Optional[Mapping[str, Any]] = None,
) -> str:
    """Deterministic key of a scenario-level run."""
    return _digest({
        "model_version": model_version,
        "scenario": scenario,
        "inputs": {k: float(v) for k, v in inputs.items()},
        "solver": dict(solver_key or {}),
    })


def compute_component_key(
    model_version: str,
    component_id: str,
    upstream_inputs: Mapping[str, float],
    solver_key: Optional[Mapping[str, Any]] = None,
) -> str:
    """Deterministic key of one component's values."""
    return _digest({
        "model_version": model_version,
        "component": component_id,
        "inputs": {k: float(v) for k, v in upstream_inputs.items()},
        "solver": dict(solver_key or {}),
    })


# =============================================================================
# ENTRIES
# =============================================================================

@dataclass(frozen=True)
class CacheEntry:
    """A cached run result."""
    fingerprint: str
    model_version: str
    scenario: str
    inputs: Mapping[str, float]
    result: Any
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ComponentEntry:
    """Cached values of one condensed component."""
    key: str
    model_version: str
    component_id: str
    values: Mapping[str, float]
    diagnostic: Optional[GroupDiagnostic] = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


# =============================================================================
# CACHE MANAGER
# =============================================================================

class CacheManager:
    """
    Shared result store for all runs of an engine.

    Reads are lock-protected lookups; writes for a fingerprint happen only
    from the single computation that owns it.
    """

    DEFAULT_MAX_ENTRIES = 1000
    DEFAULT_MAX_COMPONENT_ENTRIES = 10000
    DEFAULT_MAX_EVENTS = 1000

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_component_entries: int = DEFAULT_MAX_COMPONENT_ENTRIES,
        component_cache: bool = True,
    ):
        self.max_entries = max_entries
        self.max_component_entries = max_component_entries
        self.component_cache = component_cache

        self._lock = threading.RLock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._components: "OrderedDict[str, ComponentEntry]" = OrderedDict()
        self._last_values: Dict[Tuple[str, str], Mapping[str, float]] = {}
        self._inflight: Dict[str, Future] = {}
        self._indexes: Dict[str, InvalidationIndex] = {}
        self._events: List[InvalidationEvent] = []

        self._stats = {
            "hits": 0,
            "misses": 0,
            "shared": 0,
            "evictions": 0,
            "invalidations": 0,
            "component_hits": 0,
            "component_misses": 0,
        }

    # -------------------------------------------------------------------------
    # Scenario tier
    # -------------------------------------------------------------------------

    def get(self, fingerprint: str) -> Optional[Any]:
        """Get a cached run result, or None."""
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
        logger.debug(f"Cache hit: {fingerprint}")
        return entry.result

    def put(
        self,
        fingerprint: str,
        result: Any,
        model_version: str,
        scenario: str,
        inputs: Mapping[str, float],
    ) -> CacheEntry:
        """Store a run result, replacing any previous entry for the key."""
        entry = CacheEntry(
            fingerprint=fingerprint,
            model_version=model_version,
            scenario=scenario,
            inputs=MappingProxyType(dict(inputs)),
            result=result,
        )
        with self._lock:
            self._entries.pop(fingerprint, None)
            self._entries[fingerprint] = entry
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats["evictions"] += 1
                logger.debug(f"Evicted oldest entry: {evicted}")
        logger.debug(f"Cached run {scenario!r}: {fingerprint}")
        return entry

    def contains(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def get_or_compute(
        self,
        fingerprint: str,
        compute: Callable[[], T],
        model_version: str,
        scenario: str,
        inputs: Mapping[str, float],
        token: Optional[CancellationToken] = None,
    ) -> Tuple[T, bool]:
        """
        Return the cached result for a fingerprint, computing it at most once.

        Concurrent callers for the same fingerprint wait for the computation
        already in progress. If that computation was cancelled, a waiter
        computes on its own behalf; any other failure is re-raised to the
        waiters. A waiter stops waiting once its own token is cancelled or
        past its deadline; the shared computation carries on for the others.

        Returns:
            (result, reused) where reused is False only for the caller
            that actually ran ``compute``

        Raises:
            RunCancelledError: the caller's token fired while waiting
        """
        while True:
            with self._lock:
                entry = self._entries.get(fingerprint)
                if entry is not None:
                    self._stats["hits"] += 1
                    logger.debug(f"Cache hit: {fingerprint}")
                    return entry.result, True

                flight = self._inflight.get(fingerprint)
                leader = flight is None
                if leader:
                    self._stats["misses"] += 1
                    flight = Future()
                    self._inflight[fingerprint] = flight

            if not leader:
                try:
                    result = self._wait(flight, fingerprint, token)
                except RunCancelledError:
                    if token is not None and token.is_cancelled:
                        raise
                    logger.debug(f"Shared computation for {fingerprint} was cancelled, retrying")
                    continue
                with self._lock:
                    self._stats["shared"] += 1
                return result, True

            try:
                result = compute()
            except BaseException as e:
                with self._lock:
                    self._inflight.pop(fingerprint, None)
                flight.set_exception(e)
                raise

            with self._lock:
                self.put(fingerprint, result, model_version, scenario, inputs)
                self._inflight.pop(fingerprint, None)
            flight.set_result(result)
            return result, False

    @staticmethod
    def _wait(flight: Future, fingerprint: str, token: Optional[CancellationToken]) -> Any:
        if token is None:
            return flight.result()
        while True:
            if token.is_cancelled:
                logger.debug(f"Stopped waiting for {fingerprint} ({token.reason.value})")
                raise RunCancelledError(token.reason.value, [])
            try:
                return flight.result(timeout=WAIT_SLICE_SECONDS)
            except WaitTimeout:
                continue

    def in_flight(self) -> Set[str]:
        with self._lock:
            return set(self._inflight)

    # -------------------------------------------------------------------------
    # Component tier
    # -------------------------------------------------------------------------

    def get_component(self, key: str) -> Optional[ComponentEntry]:
        if not self.component_cache:
            return None
        with self._lock:
            entry = self._components.get(key)
            if entry is None:
                self._stats["component_misses"] += 1
            else:
                self._stats["component_hits"] += 1
            return entry

    def put_components(self, entries: Iterable[ComponentEntry]) -> int:
        """Commit the component values of a successful run."""
        if not self.component_cache:
            return 0
        count = 0
        with self._lock:
            for entry in entries:
                self._components.pop(entry.key, None)
                self._components[entry.key] = entry
                self._last_values[(entry.model_version, entry.component_id)] = entry.values
                count += 1
            while len(self._components) > self.max_component_entries:
                self._components.popitem(last=False)
                self._stats["evictions"] += 1
        return count

    def last_values(self, model_version: str, component_id: str) -> Optional[Mapping[str, float]]:
        """Most recently committed values of a component (warm start seed)."""
        with self._lock:
            return self._last_values.get((model_version, component_id))

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def register_index(self, index: InvalidationIndex) -> None:
        """Attach the reverse-dependency index of a model version."""
        with self._lock:
            self._indexes[index.model_version] = index

    def invalidate_inputs(
        self,
        model_version: str,
        identities: Iterable[str],
        reason: InvalidationReason = InvalidationReason.INPUT_CHANGED,
        scenario: Optional[str] = None,
    ) -> InvalidationEvent:
        """
        Drop entries affected by a change to the given inputs.

        Component entries are dropped only for components downstream of
        the inputs; components outside that closure stay cached. When a
        scenario is named, its run results are dropped as well.
        """
        identities = list(identities)
        with self._lock:
            index = self._indexes.get(model_version)
            if index is None:
                affected: Set[str] = set()
                logger.warning(
                    f"No dependency index for model v{model_version}; "
                    f"component entries left in place"
                )
            else:
                affected = index.affected_components(identities, include_inputs=False)

            removed = 0
            for key in [
                k for k, e in self._components.items()
                if e.model_version == model_version and e.component_id in affected
            ]:
                del self._components[key]
                removed += 1
            for cid in affected:
                self._last_values.pop((model_version, cid), None)

            if scenario is not None:
                removed += self._drop_entries(
                    lambda e: e.model_version == model_version and e.scenario == scenario
                )

            event = InvalidationEvent(
                trigger_attributes=identities,
                scenario=scenario,
                model_version=model_version,
                reason=reason,
                scope=InvalidationScope.DOWNSTREAM,
                invalidated_components=sorted(affected),
                removed_entries=removed,
            )
            self._record_event(event)

        logger.info(
            f"Invalidated {len(affected)} components ({removed} entries) "
            f"due to change of {', '.join(identities) or 'nothing'}"
        )
        return event

    def invalidate_scenario(
        self,
        model_version: str,
        scenario: str,
        reason: InvalidationReason = InvalidationReason.SCENARIO_REDEFINED,
    ) -> InvalidationEvent:
        """Drop every run result of one scenario."""
        with self._lock:
            removed = self._drop_entries(
                lambda e: e.model_version == model_version and e.scenario == scenario
            )
            event = InvalidationEvent(
                scenario=scenario,
                model_version=model_version,
                reason=reason,
                scope=InvalidationScope.SCENARIO,
                removed_entries=removed,
            )
            self._record_event(event)
        return event

    def invalidate_version(
        self,
        model_version: str,
        reason: InvalidationReason = InvalidationReason.MODEL_REPLACED,
    ) -> InvalidationEvent:
        """Drop everything keyed to a model version."""
        with self._lock:
            removed = self._drop_entries(lambda e: e.model_version == model_version)
            stale = [k for k, e in self._components.items() if e.model_version == model_version]
            for key in stale:
                del self._components[key]
            removed += len(stale)
            for key in [k for k in self._last_values if k[0] == model_version]:
                del self._last_values[key]
            self._indexes.pop(model_version, None)

            event = InvalidationEvent(
                model_version=model_version,
                reason=reason,
                scope=InvalidationScope.VERSION,
                removed_entries=removed,
            )
            self._record_event(event)

        logger.info(f"Invalidated model v{model_version}: {removed} entries removed")
        return event

    def clear(self) -> None:
        """Clear all entries."""
        with self._lock:
            count = len(self._entries) + len(self._components)
            self._entries.clear()
            self._components.clear()
            self._last_values.clear()
            self._record_event(InvalidationEvent(
                reason=InvalidationReason.MANUAL_INVALIDATION,
                scope=InvalidationScope.ALL,
                removed_entries=count,
            ))
        logger.info(f"Cleared {count} cache entries")

    def _drop_entries(self, predicate: Callable[[CacheEntry], bool]) -> int:
        stale = [k for k, e in self._entries.items() if predicate(e)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def _record_event(self, event: InvalidationEvent) -> None:
        self._stats["invalidations"] += 1
        self._events.append(event)
        if len(self._events) > self.DEFAULT_MAX_EVENTS:
            self._events = self._events[-self.DEFAULT_MAX_EVENTS:]

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_events(self, limit: int = 100) -> List[InvalidationEvent]:
        with self._lock:
            return self._events[-limit:]

    def component_ids(self, model_version: str) -> Set[str]:
        """Components with at least one cached entry."""
        with self._lock:
            return {
                e.component_id for e in self._components.values()
                if e.model_version == model_version
            }

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with hit/miss counters, entry counts and hit_rate
        """
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = self._stats["hits"] / total if total > 0 else 0.0
            return {
                **self._stats,
                "entries": len(self._entries),
                "component_entries": len(self._components),
                "in_flight": len(self._inflight),
                "hit_rate": round(hit_rate, 3),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""
Unit tests for kernel/context.py

Tests run options, cancellation tokens, dependency snapshots and formula
evaluation.
"""

import math
import time

import pytest

from loopmetrics.bootstrap.config import EngineConfig
from loopmetrics.core.registry import ModelRegistry
from loopmetrics.errors import FormulaEvaluationError, RunCancelledError
from loopmetrics.kernel.context import (
    CancellationToken,
    DependencySnapshot,
    RunOptions,
    evaluate_formula,
)
from loopmetrics.kernel.enums import CancelReason


class TestRunOptions:
    """Test RunOptions validation and construction."""

    def test_defaults(self):
        options = RunOptions()
        assert options.max_iterations == 100
        assert options.threshold == 0.001
        assert options.deadline_seconds is None
        assert options.warm_start is False

    @pytest.mark.parametrize("kwargs", [
        {"max_iterations": 0},
        {"threshold": 0},
        {"threshold": -1.0},
        {"deadline_seconds": 0},
        {"max_workers": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RunOptions(**kwargs)

    def test_from_config(self):
        """Test options follow configuration, then overrides."""
        config = EngineConfig()
        config.solver.max_iterations = 50
        config.scheduler.parallel = False

        options = RunOptions.from_config(config, threshold=0.01)
        assert options.max_iterations == 50
        assert options.parallel is False
        assert options.threshold == 0.01

    def test_solver_key(self):
        """Test that only value-affecting options are keyed."""
        a = RunOptions(parallel=True, max_workers=8)
        b = RunOptions(parallel=False, max_workers=1)
        assert a.solver_key() == b.solver_key()
        assert RunOptions(threshold=0.01).solver_key() != a.solver_key()


class TestCancellationToken:
    """Test cooperative cancellation."""

    def test_not_cancelled_initially(self):
        token = CancellationToken()
        assert not token.is_cancelled
        assert token.reason is None
        token.raise_if_cancelled()

    def test_cancel(self):
        """Test explicit cancellation."""
        token = CancellationToken()
        token.cancel()
        assert token.is_cancelled
        assert token.reason is CancelReason.REQUESTED

        with pytest.raises(RunCancelledError) as exc:
            token.raise_if_cancelled(["partial"])
        assert exc.value.reason == "requested"
        assert exc.value.diagnostics == ["partial"]

    def test_deadline(self):
        """Test that a passed deadline counts as cancellation."""
        token = CancellationToken(deadline_seconds=0.01)
        time.sleep(0.03)
        assert token.is_cancelled
        assert token.reason is CancelReason.DEADLINE

    def test_with_deadline_keeps_earlier(self):
        """Test that a later deadline does not extend an earlier one."""
        token = CancellationToken(deadline_seconds=0.01).with_deadline(60)
        time.sleep(0.03)
        assert token.is_cancelled

    def test_with_deadline_none(self):
        token = CancellationToken().with_deadline(None)
        assert not token.is_cancelled


class TestDependencySnapshot:
    """Test the view formulas receive."""

    @pytest.fixture
    def ecofees(self, cost_registry):
        return cost_registry.resolve("Logistics.ecoFees")

    @pytest.fixture
    def values(self):
        return {
            "Logistics.logisticsCost": 40.0,
            "Production.co2Cost": 10.0,
            "Logistics.transportCost": 35.0,
        }

    def test_declared_and_qualified_keys(self, ecofees, values):
        """Test values are reachable by reference and identity."""
        snapshot = DependencySnapshot(ecofees, values)
        assert snapshot["logisticsCost"] == 40.0
        assert snapshot["Logistics.logisticsCost"] == 40.0
        assert snapshot["Production.co2Cost"] == 10.0

    def test_undeclared_key_rejected(self, ecofees, values):
        """Test that undeclared attributes are invisible."""
        snapshot = DependencySnapshot(ecofees, values)
        with pytest.raises(KeyError, match="not a declared dependency"):
            snapshot["transportCost"]
        assert "Logistics.transportCost" not in snapshot

    def test_read_only(self, ecofees, values):
        snapshot = DependencySnapshot(ecofees, values)
        with pytest.raises(TypeError):
            snapshot["logisticsCost"] = 1.0


class TestEvaluateFormula:
    """Test formula evaluation and error wrapping."""

    def _attribute(self, formula, dependencies=("x",)):
        registry = ModelRegistry()
        registry.define_input("A", "x", 1)
        registry.define_calculated("A", "y", formula, list(dependencies))
        return registry.seal().resolve("A.y")

    def test_returns_float(self):
        attr = self._attribute(lambda d: int(d["x"]) * 2)
        result = evaluate_formula(attr, {"A.x": 3.0})
        assert result == 6.0
        assert isinstance(result, float)

    def test_formula_exception_wrapped(self):
        """Test that formula errors name the attribute."""
        attr = self._attribute(lambda d: 1 / 0)
        with pytest.raises(FormulaEvaluationError) as exc:
            evaluate_formula(attr, {"A.x": 1.0}, iteration=3)
        assert exc.value.identity == "A.y"
        assert exc.value.iteration == 3
        assert "ZeroDivisionError" in exc.value.reason

    def test_undeclared_read_wrapped(self):
        """Test reading an undeclared attribute fails the evaluation."""
        attr = self._attribute(lambda d: d["z"])
        with pytest.raises(FormulaEvaluationError, match="not a declared dependency"):
            evaluate_formula(attr, {"A.x": 1.0})

    @pytest.mark.parametrize("result", [None, "1.0", math.nan, math.inf, True])
    def test_non_numeric_result(self, result):
        """Test that results must be finite numbers."""
        attr = self._attribute(lambda d: result)
        with pytest.raises(FormulaEvaluationError):
            evaluate_formula(attr, {"A.x": 1.0})

    def test_overflow_allowed_returns_infinite(self):
        """Test that an overflowing formula can report inf instead of failing."""
        attr = self._attribute(lambda d: d["x"] * 1e308)
        assert evaluate_formula(attr, {"A.x": 10.0}, allow_overflow=True) == math.inf

        power = self._attribute(lambda d: 10.0 ** d["x"])
        assert evaluate_formula(power, {"A.x": 400.0}, allow_overflow=True) == math.inf
        with pytest.raises(FormulaEvaluationError, match="OverflowError"):
            evaluate_formula(power, {"A.x": 400.0})

    def test_overflow_allowed_still_rejects_non_numeric(self):
        attr = self._attribute(lambda d: None)
        with pytest.raises(FormulaEvaluationError):
            evaluate_formula(attr, {"A.x": 1.0}, allow_overflow=True)

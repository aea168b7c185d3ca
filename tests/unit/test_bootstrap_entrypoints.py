"""
Unit tests for bootstrap/entrypoints.py

Tests logging setup and the command line runner.
"""

import json
import logging
from unittest.mock import patch

import pytest

from loopmetrics.bootstrap.entrypoints import JSONFormatter, cli_main, setup_logging


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Run the CLI from an empty directory with logging setup stubbed out."""
    monkeypatch.chdir(tmp_path)
    with patch("loopmetrics.bootstrap.entrypoints.setup_logging") as mock_setup:
        yield mock_setup


class TestSetupLogging:
    """Test logging configuration."""

    def test_handlers_replaced(self, tmp_path):
        """Test that repeated setup does not stack handlers."""
        root = logging.getLogger()
        before = list(root.handlers)
        level = root.level
        try:
            setup_logging("DEBUG", log_file=str(tmp_path / "run.log"))
            setup_logging("WARNING")
            ours = [h for h in root.handlers if getattr(h, "_loopmetrics", False)]
            assert len(ours) == 1
            assert root.level == logging.WARNING
        finally:
            for handler in [h for h in root.handlers if h not in before]:
                root.removeHandler(handler)
                handler.close()
            root.setLevel(level)

    def test_json_formatter(self):
        record = logging.LogRecord("loopmetrics.kernel", logging.INFO, "", 0, "Converged", (), None)
        data = json.loads(JSONFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["logger"] == "loopmetrics.kernel"
        assert data["message"] == "Converged"


class TestCli:
    """Test the command line runner."""

    def test_text_output(self, cli_env, capsys):
        assert cli_main(["-s", "Base"]) == 0
        out = capsys.readouterr().out

        assert "Scenario Base" in out
        assert "Converged in 6 iterations" in out
        assert "Production.co2Cost" in out
        cli_env.assert_called_once()

    def test_json_output(self, cli_env, capsys):
        assert cli_main(["--json"]) == 0
        data = json.loads(capsys.readouterr().out)

        assert [r["scenario"] for r in data] == ["Base", "HighEnergyPrices"]
        assert data[1]["values"]["Logistics.ecoFees"] == pytest.approx(5.2515, abs=1e-3)

    def test_not_converged_exit_code(self, cli_env, capsys):
        assert cli_main(["-s", "Base", "--max-iterations", "2"]) == 2
        assert "Did not converge after 2 iterations" in capsys.readouterr().out

    def test_unknown_scenario(self, cli_env):
        assert cli_main(["-s", "Nope"]) == 1

    def test_scenarios_file(self, cli_env, tmp_path, capsys):
        path = tmp_path / "extra.json"
        path.write_text(json.dumps({"Cheap": {"Production": {"materialCost": 100}}}))

        assert cli_main(["-s", "Cheap", "--scenarios-file", str(path), "--sequential"]) == 0
        assert "Scenario Cheap" in capsys.readouterr().out

    def test_verbose_sets_debug(self, cli_env):
        cli_main(["-s", "Base", "-v"])
        assert cli_env.call_args.kwargs["level"] == "DEBUG"

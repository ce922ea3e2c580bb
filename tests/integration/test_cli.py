"""
Tests for the maintenance CLI.
"""

import json

import pytest

from quote_kernel.cli import main
from quote_kernel.db.engine import reset_engine

from conftest import quote_payload


@pytest.fixture
def db_url(tmp_path):
    yield f"sqlite:///{tmp_path / 'cli.db'}"
    reset_engine()


@pytest.fixture
def payload_file(tmp_path):
    path = tmp_path / "quote.json"
    path.write_text(json.dumps({"line_items": quote_payload()["line_items"], "currency": "NZD"}))
    return path


class TestCalculate:

    def test_prints_preview(self, payload_file, capsys):
        assert main(["calculate", "--file", str(payload_file)]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["total_amount"] == "6900.00"
        assert out["line_items"][0]["tax_amount"] == "900.00"

    def test_invalid_payload(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"line_items": []}))
        assert main(["calculate", "--file", str(path)]) == 1
        assert "VALIDATION_ERROR" in capsys.readouterr().err

    def test_unreadable_file(self, tmp_path, capsys):
        assert main(["calculate", "--file", str(tmp_path / "missing.json")]) == 1
        assert "Cannot read" in capsys.readouterr().err

    def test_bad_config(self, tmp_path, payload_file, capsys):
        config = tmp_path / "bad.yaml"
        config.write_text("retry:\n  max_attemps: 3\n")
        assert main(["--config", str(config), "calculate", "--file", str(payload_file)]) == 1
        assert "Failed to load config" in capsys.readouterr().err

    def test_config_changes_pricing(self, tmp_path, payload_file, capsys):
        config = tmp_path / "engine.yaml"
        config.write_text("pricing:\n  currency_decimal_places:\n    NZD: 0\n")
        assert main(["--config", str(config), "calculate", "--file", str(payload_file)]) == 0
        assert json.loads(capsys.readouterr().out)["total_amount"] == "6900"


class TestDatabaseCommands:

    def test_init_sweep_and_stats(self, db_url, capsys):
        assert main(["init-db", "--db-url", db_url]) == 0
        assert "Tables created" in capsys.readouterr().out

        assert main(["sweep-idempotency", "--db-url", db_url]) == 0
        assert "Removed 0" in capsys.readouterr().out

        assert main(["idempotency-stats", "--db-url", db_url, "--organization", "org-a"]) == 0
        assert json.loads(capsys.readouterr().out) == {
            "active_records": 0,
            "expired_records": 0,
            "total_records": 0,
        }

    def test_unknown_command_exits(self):
        with pytest.raises(SystemExit):
            main(["frobnicate"])

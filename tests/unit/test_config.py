"""
Tests for YAML configuration loading.
"""

from decimal import Decimal

import pytest

from quote_kernel.config import (
    CONFIG_ENV_VAR,
    DEFAULTS_PATH,
    MAX_IDEMPOTENCY_KEY_LENGTH,
    EngineConfig,
    load_config,
    parse_config,
)


class TestDefaults:

    def test_packaged_defaults_load(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        config = load_config()
        assert config.idempotency.ttl_hours == 24
        assert config.idempotency.max_key_length == 128
        assert config.retry.max_attempts == 3
        assert config.status.locked_statuses == frozenset({"approved", "accepted"})
        assert config.pricing.currency_decimal_places["JPY"] == 0
        assert config.pricing.currency_decimal_places["KWD"] == 3
        assert "travel" in config.pricing.tax_exempt_types

    def test_packaged_defaults_match_dataclass_defaults(self):
        loaded = load_config(DEFAULTS_PATH)
        defaults = EngineConfig()
        assert loaded.status.transitions == defaults.status.transitions
        assert loaded.permissions == defaults.permissions
        assert loaded.retry == defaults.retry
        assert loaded.quote_numbers == defaults.quote_numbers

    def test_empty_document_gives_defaults(self):
        assert parse_config(None) == EngineConfig()


class TestOverrides:

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.yaml"
        path.write_text("idempotency:\n  ttl_hours: 1\nretry:\n  max_attempts: 7\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        config = load_config()
        assert config.idempotency.ttl_hours == 1
        assert config.retry.max_attempts == 7

    def test_explicit_path_beats_env(self, tmp_path, monkeypatch):
        env_file = tmp_path / "env.yaml"
        env_file.write_text("quote_numbers:\n  prefix: ENV\n")
        explicit = tmp_path / "explicit.yaml"
        explicit.write_text("quote_numbers:\n  prefix: QT\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(env_file))
        assert load_config(explicit).quote_numbers.prefix == "QT"

    def test_transition_table_replaced(self):
        config = parse_config({"status": {"transitions": {"draft": ["accepted"]}}})
        assert config.status.transitions["draft"] == frozenset({"accepted"})
        assert config.status.transitions["pending"] == frozenset()

    def test_currency_override_upper_cased(self):
        config = parse_config({"pricing": {"currency_decimal_places": {"usd": 4}}})
        assert config.pricing.currency_decimal_places == {"USD": 4}


class TestRejections:

    @pytest.mark.parametrize("data", [
        {"unknown_section": {}},
        {"retry": {"max_attemps": 3}},
        {"status": {"transitions": {"draft": ["archived"]}}},
        {"status": {"locked_statuses": ["frozen"]}},
        {"idempotency": {"ttl_hours": 0}},
        {"idempotency": {"max_key_length": 0}},
        {"idempotency": {"max_key_length": 256}},
        {"pricing": {"currency_decimal_places": {"USD": -1}}},
        {"quote_numbers": {"padding": True}},
    ])
    def test_invalid_config_raises_value_error(self, data):
        with pytest.raises(ValueError):
            parse_config(data)

    def test_key_length_may_reach_column_width(self):
        config = parse_config({"idempotency": {"max_key_length": MAX_IDEMPOTENCY_KEY_LENGTH}})
        assert config.idempotency.max_key_length == 255

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

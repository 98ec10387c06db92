"""Tests for EngineConfig and the YAML loader (ledger_kernel/config.py)."""

from decimal import Decimal

import pytest
import yaml

from ledger_kernel.config import (
    ENV_DATABASE_URL,
    ENV_LOG_LEVEL,
    EngineConfig,
    load_config,
)
from ledger_kernel.domain.roles import AccountRole


@pytest.fixture(autouse=True)
def _no_env_overrides(monkeypatch):
    monkeypatch.delenv(ENV_DATABASE_URL, raising=False)
    monkeypatch.delenv(ENV_LOG_LEVEL, raising=False)


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig.with_defaults()
        assert config.money_decimal_places == 2
        assert config.rounding_tolerance == Decimal("0.01")
        assert config.reserve_stock_for_drafts is True
        assert config.account_codes[AccountRole.CASH] == "1000"
        assert config.document_number_prefixes["sale"] == "SAL"

    def test_log_level_normalized(self):
        assert EngineConfig(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValueError, match="log_level"):
            EngineConfig(log_level="LOUD")

    def test_decimal_places_range(self):
        with pytest.raises(ValueError, match="money_decimal_places"):
            EngineConfig(money_decimal_places=12)

    def test_tolerance_coerced_to_decimal(self):
        assert EngineConfig(rounding_tolerance="0.05").rounding_tolerance == Decimal("0.05")

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError, match="rounding_tolerance"):
            EngineConfig(rounding_tolerance="-1")

    def test_account_codes_keyed_by_role(self):
        codes = {role.value: code for role, code in EngineConfig().account_codes.items()}
        codes["cash"] = 1001
        config = EngineConfig(account_codes=codes)
        assert config.account_codes[AccountRole.CASH] == "1001"

    def test_missing_role_rejected(self):
        with pytest.raises(ValueError, match="account_codes missing roles"):
            EngineConfig(account_codes={"cash": "1000"})

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            EngineConfig.from_dict({"money_places": 2})


class TestLoadConfig:
    def test_packaged_defaults(self):
        config = load_config()
        assert config.database_url == "sqlite+pysqlite:///:memory:"
        assert config.account_codes[AccountRole.SALES_REVENUE] == "4000"
        assert config.document_number_prefixes["payment"] == "PAY"

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({"money_decimal_places": 3, "log_level": "warning"}))

        config = load_config(path)
        assert config.money_decimal_places == 3
        assert config.log_level == "WARNING"
        # Keys not in the file keep their packaged values
        assert config.default_currency == "NGN"

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({"database_url": "sqlite:///from-file.db"}))
        monkeypatch.setenv(ENV_DATABASE_URL, "sqlite:///from-env.db")
        monkeypatch.setenv(ENV_LOG_LEVEL, "error")

        config = load_config(path)
        assert config.database_url == "sqlite:///from-env.db"
        assert config.log_level == "ERROR"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_unknown_key_in_file_raises(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("surprise: true\n")
        with pytest.raises(ValueError, match="surprise"):
            load_config(path)

"""Tests for the ledger-kernel command line (ledger_kernel/cli.py)."""

from uuid import uuid4

import pytest
import yaml

from ledger_kernel import cli
from ledger_kernel.config import ENV_DATABASE_URL
from ledger_kernel.db.engine import init_engine_from_url
from ledger_kernel.exceptions import ValidationError


@pytest.fixture
def cli_config(tmp_path, monkeypatch, database_url, db_tables):
    """A config file pointing at a private SQLite database.

    The CLI replaces the process-wide engine, so the suite's engine is
    restored afterwards.
    """
    monkeypatch.delenv(ENV_DATABASE_URL, raising=False)
    path = tmp_path / "ledger.yaml"
    path.write_text(yaml.safe_dump({
        "database_url": f"sqlite+pysqlite:///{tmp_path / 'cli.db'}",
        "log_level": "DEBUG",
    }))
    yield str(path)
    init_engine_from_url(database_url, echo=False, pool_size=30, max_overflow=20, pool_timeout=10)


def _run(config, *args) -> int:
    return cli.main(["--config", config, *args])


def test_init_seed_and_trial_balance(cli_config, capsys):
    business, actor = str(uuid4()), str(uuid4())

    assert _run(cli_config, "init-db") == 0
    assert _run(cli_config, "seed-chart", "--business-id", business, "--actor-id", actor) == 0
    assert "Created 14 accounts." in capsys.readouterr().out

    assert _run(cli_config, "seed-chart", "--business-id", business, "--actor-id", actor) == 0
    assert "Created 0 accounts." in capsys.readouterr().out

    assert _run(cli_config, "trial-balance", "--business-id", business) == 0
    out = capsys.readouterr().out
    assert "TOTAL" in out
    assert "0.00" in out


def test_reconcile_inventory_empty(cli_config, capsys):
    assert _run(cli_config, "init-db") == 0
    assert _run(cli_config, "reconcile-inventory", "--business-id", str(uuid4())) == 0
    assert "0 rows checked, 0 drifting" in capsys.readouterr().out


def test_apply_requires_actor(cli_config):
    with pytest.raises(SystemExit) as exc_info:
        _run(cli_config, "reconcile-inventory", "--business-id", str(uuid4()), "--apply")
    assert exc_info.value.code == 2


def test_missing_config_file(tmp_path, capsys):
    assert cli.main(["--config", str(tmp_path / "missing.yaml"), "init-db"]) == 2
    assert "Failed to load config" in capsys.readouterr().err


def test_unknown_config_key(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("colour: blue\n")
    assert cli.main(["--config", str(path), "init-db"]) == 2
    assert "Unknown configuration keys" in capsys.readouterr().err


def test_kernel_error_exit_code(cli_config, monkeypatch, capsys):
    def _fail(self, business_id, actor_id):
        raise ValidationError("chart is locked")

    monkeypatch.setattr(cli.AccountDirectory, "seed_default_chart", _fail)
    assert _run(cli_config, "init-db") == 0
    code = _run(cli_config, "seed-chart", "--business-id", str(uuid4()), "--actor-id", str(uuid4()))
    assert code == 1
    assert "ERROR [VALIDATION_ERROR]: chart is locked" in capsys.readouterr().err

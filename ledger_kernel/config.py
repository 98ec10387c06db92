"""
Engine Configuration.

Responsibility
--------------
Defines the ``EngineConfig`` schema with sensible defaults and loads it from
YAML.  Defaults ship with the package in ``default_config.yaml``; a
deployment points ``load_config`` at its own file and may override the
database URL and log level from the environment.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from ledger_kernel.domain.roles import DEFAULT_ACCOUNT_CODES, AccountRole
from ledger_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default_config.yaml"

ENV_DATABASE_URL = "LEDGER_DATABASE_URL"
ENV_LOG_LEVEL = "LEDGER_LOG_LEVEL"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _default_prefixes() -> dict[str, str]:
    return {"sale": "SAL", "purchase": "PUR", "invoice": "INV", "expense": "EXP", "payment": "PAY"}


@dataclass
class EngineConfig:
    """
    Configuration schema for the ledger engine.

    Override at instantiation with deployment values:

        config = EngineConfig(
            database_url="postgresql://ledger@db/ledger",
            money_decimal_places=2,
        )
    """

    # Persistence
    database_url: str = "sqlite+pysqlite:///:memory:"
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10

    # Logging
    log_level: str = "INFO"

    # Money
    money_decimal_places: int = 2
    rounding_tolerance: Decimal = Decimal("0.01")
    default_currency: str = "NGN"

    # Documents
    document_number_prefixes: dict[str, str] = field(default_factory=_default_prefixes)
    document_number_width: int = 6

    # Inventory
    reserve_stock_for_drafts: bool = True

    # Chart of accounts role bindings
    account_codes: dict[AccountRole, str] = field(
        default_factory=lambda: dict(DEFAULT_ACCOUNT_CODES)
    )

    def __post_init__(self):
        self.log_level = self.log_level.upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, got '{self.log_level}'"
            )
        if not 0 <= self.money_decimal_places <= 9:
            raise ValueError("money_decimal_places must be between 0 and 9")
        self.rounding_tolerance = Decimal(str(self.rounding_tolerance))
        if self.rounding_tolerance < 0:
            raise ValueError("rounding_tolerance cannot be negative")
        if self.pool_size <= 0:
            raise ValueError("pool_size must be positive")
        if self.document_number_width <= 0:
            raise ValueError("document_number_width must be positive")

        self.account_codes = {
            AccountRole(role): str(code) for role, code in self.account_codes.items()
        }
        missing = set(AccountRole) - set(self.account_codes)
        if missing:
            raise ValueError(
                f"account_codes missing roles: {sorted(r.value for r in missing)}"
            )

        logger.debug(
            "engine_config_initialized",
            extra={
                "log_level": self.log_level,
                "money_decimal_places": self.money_decimal_places,
                "rounding_tolerance": self.rounding_tolerance,
                "default_currency": self.default_currency,
                "reserve_stock_for_drafts": self.reserve_stock_for_drafts,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with built-in defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. parsed YAML)."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        logger.info(
            "engine_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(path: str | Path | None = None) -> EngineConfig:
    """
    Load the engine configuration.

    The packaged defaults are read first, then ``path`` (if given) is layered
    on top key by key, then the environment overrides are applied.
    """
    data = load_yaml_file(DEFAULT_CONFIG_PATH)
    if path is not None:
        data.update(load_yaml_file(Path(path)))

    if os.environ.get(ENV_DATABASE_URL):
        data["database_url"] = os.environ[ENV_DATABASE_URL]
    if os.environ.get(ENV_LOG_LEVEL):
        data["log_level"] = os.environ[ENV_LOG_LEVEL]

    return EngineConfig.from_dict(data)

"""
Runtime settings (``saldo_kernel.config``).

Responsibility
--------------
Single place that reads configuration: a YAML settings file parsed with
PyYAML into a frozen ``SaldoSettings``.  Services receive the settings object
by injection and never read files or environment variables themselves.

Resolution order
----------------
1. Explicit ``path`` argument to ``load_settings``.
2. ``SALDO_CONFIG`` environment variable.
3. The packaged ``settings.yaml`` next to this module.

``DATABASE_URL`` in the environment overrides ``database_url`` from the file.

Failure modes
-------------
* Missing file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Out-of-range value -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from saldo_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "settings.yaml"


@dataclass(frozen=True)
class SaldoSettings:
    """Frozen runtime settings."""

    database_url: str = "sqlite:///saldo.db"
    review_lease_expiry_seconds: int = 10
    ledger_max_retries: int = 3
    history_default_limit: int = 50
    history_max_limit: int = 100
    reverse_funded_advance_on_delete: bool = True

    def __post_init__(self) -> None:
        if self.review_lease_expiry_seconds <= 0:
            raise ValueError("review_lease.expiry_seconds must be positive")
        if self.ledger_max_retries < 1:
            raise ValueError("ledger.max_retries must be at least 1")
        if not 1 <= self.history_default_limit <= self.history_max_limit:
            raise ValueError(
                "ledger.history_default_limit must be between 1 and history_max_limit"
            )


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_settings(data: dict[str, Any]) -> SaldoSettings:
    """Build ``SaldoSettings`` from the nested YAML layout."""
    defaults = SaldoSettings()
    lease = data.get("review_lease", {}) or {}
    ledger = data.get("ledger", {}) or {}
    advances = data.get("advances", {}) or {}
    return SaldoSettings(
        database_url=data.get("database_url", defaults.database_url),
        review_lease_expiry_seconds=int(
            lease.get("expiry_seconds", defaults.review_lease_expiry_seconds)
        ),
        ledger_max_retries=int(ledger.get("max_retries", defaults.ledger_max_retries)),
        history_default_limit=int(
            ledger.get("history_default_limit", defaults.history_default_limit)
        ),
        history_max_limit=int(ledger.get("history_max_limit", defaults.history_max_limit)),
        reverse_funded_advance_on_delete=bool(
            advances.get(
                "reverse_funded_advance_on_delete",
                defaults.reverse_funded_advance_on_delete,
            )
        ),
    )


def load_settings(path: Path | str | None = None) -> SaldoSettings:
    """Load settings from YAML, applying the ``DATABASE_URL`` override."""
    if path is None:
        path = os.environ.get("SALDO_CONFIG") or _DEFAULT_SETTINGS_FILE
    path = Path(path)

    settings = parse_settings(load_yaml_file(path))

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        settings = SaldoSettings(
            database_url=database_url,
            review_lease_expiry_seconds=settings.review_lease_expiry_seconds,
            ledger_max_retries=settings.ledger_max_retries,
            history_default_limit=settings.history_default_limit,
            history_max_limit=settings.history_max_limit,
            reverse_funded_advance_on_delete=settings.reverse_funded_advance_on_delete,
        )

    logger.info(
        "settings_loaded",
        extra={
            "settings_file": str(path),
            "review_lease_expiry_seconds": settings.review_lease_expiry_seconds,
            "ledger_max_retries": settings.ledger_max_retries,
            "reverse_funded_advance_on_delete": settings.reverse_funded_advance_on_delete,
        },
    )
    return settings

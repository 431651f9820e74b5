"""
ledger_config -- single public entrypoint for allocation configuration.

Responsibility:
    Provides the ONLY way to obtain allocation settings at runtime through
    ``get_allocation_settings()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and below
    ``ledger_allocation``.  The kernel MUST NEVER import from
    ``ledger_config``.

Failure modes:
    - ``FileNotFoundError`` -- an explicit or env-provided path does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ledger_config.loader import load_allocation_settings
from ledger_config.schema import (
    STATUS_MARK_POLICIES,
    UNMATCHED_ACCOUNT_POLICIES,
    AllocationSettings,
    RetrySettings,
)

_logger = logging.getLogger("ledger_kernel.config")

CONFIG_ENV_VAR = "LEDGER_ALLOCATION_CONFIG"


def get_allocation_settings(path: Path | str | None = None) -> AllocationSettings:
    """Return the active allocation settings.

    Resolution order: explicit ``path``, then the ``LEDGER_ALLOCATION_CONFIG``
    environment variable, then built-in defaults.
    """
    source = path if path is not None else os.environ.get(CONFIG_ENV_VAR)
    if not source:
        return AllocationSettings()

    settings = load_allocation_settings(Path(source))
    _logger.info(
        "allocation_settings_loaded",
        extra={
            "config_path": str(source),
            "page_size": settings.page_size,
            "unmatched_account_policy": settings.unmatched_account_policy,
            "status_mark_policy": settings.status_mark_policy,
        },
    )
    return settings


__all__ = [
    "AllocationSettings",
    "RetrySettings",
    "STATUS_MARK_POLICIES",
    "UNMATCHED_ACCOUNT_POLICIES",
    "CONFIG_ENV_VAR",
    "get_allocation_settings",
]

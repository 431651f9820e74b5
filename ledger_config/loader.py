"""
Allocation settings loader (``ledger_config.loader``).

Responsibility
--------------
Reads the ``allocation:`` section of a YAML file and turns it into a
validated, frozen ``AllocationSettings``.  Keys that are absent keep their
defaults.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Called only through
``ledger_config.get_allocation_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type, or out-of-range value  -> ``ValueError`` naming
  the offending key.
"""

from __future__ import annotations

from dataclasses import fields, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    STATUS_MARK_POLICIES,
    UNMATCHED_ACCOUNT_POLICIES,
    AllocationSettings,
    RetrySettings,
)

SECTION_KEY = "allocation"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict (empty if blank)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


def _non_negative_number(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"{key} must be a non-negative number, got {value!r}")
    return float(value)


def _choice(key: str, value: Any, allowed: tuple[str, ...]) -> str:
    if value not in allowed:
        raise ValueError(f"{key} must be one of {', '.join(allowed)}; got {value!r}")
    return value


def _decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key} must be a number, got {value!r}") from None
    if not result.is_finite() or result < 0:
        raise ValueError(f"{key} must be a non-negative number, got {value!r}")
    return result


def _flag(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _check_keys(section: str, data: dict[str, Any], known: set[str]) -> None:
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown {section} setting(s): {', '.join(unknown)}")


def parse_retry(data: Any) -> RetrySettings:
    """Parse the nested ``retry`` mapping."""
    if not isinstance(data, dict):
        raise ValueError(f"allocation.retry must be a mapping, got {data!r}")
    _check_keys("allocation.retry", data, {f.name for f in fields(RetrySettings)})

    settings = RetrySettings()
    if "max_attempts" in data:
        settings = replace(
            settings,
            max_attempts=_positive_int("retry.max_attempts", data["max_attempts"]),
        )
    if "base_delay_seconds" in data:
        settings = replace(
            settings,
            base_delay_seconds=_non_negative_number(
                "retry.base_delay_seconds", data["base_delay_seconds"],
            ),
        )
    if "backoff_multiplier" in data:
        multiplier = _non_negative_number(
            "retry.backoff_multiplier", data["backoff_multiplier"],
        )
        if multiplier < 1:
            raise ValueError(
                f"retry.backoff_multiplier must be >= 1, got {multiplier!r}"
            )
        settings = replace(settings, backoff_multiplier=multiplier)
    return settings


_VALIDATORS = {
    "page_size": _positive_int,
    "update_chunk_size": _positive_int,
    "status_chunk_size": _positive_int,
    "max_execution_seconds": _non_negative_number,
    "circuit_breaker_threshold": _positive_int,
    "resume_delay_seconds": _non_negative_number,
    "max_resume_attempts": _positive_int,
    "unmatched_account_policy": lambda k, v: _choice(k, v, UNMATCHED_ACCOUNT_POLICIES),
    "status_mark_policy": lambda k, v: _choice(k, v, STATUS_MARK_POLICIES),
    "default_agent_target": _decimal,
    "record_payment_history": _flag,
    "record_agent_performance": _flag,
    "max_reported_errors": _positive_int,
    "lock_stale_after_seconds": _non_negative_number,
}


def parse_allocation_settings(data: dict[str, Any]) -> AllocationSettings:
    """Parse the ``allocation:`` mapping into ``AllocationSettings``.

    Raises:
        ValueError: on unknown keys or invalid values.
    """
    if not isinstance(data, dict):
        raise ValueError(f"{SECTION_KEY} must be a mapping, got {data!r}")
    _check_keys(SECTION_KEY, data, set(_VALIDATORS) | {"retry"})

    overrides: dict[str, Any] = {
        key: _VALIDATORS[key](key, value)
        for key, value in data.items()
        if key != "retry"
    }
    if "retry" in data:
        overrides["retry"] = parse_retry(data["retry"])

    return replace(AllocationSettings(), **overrides)


def load_allocation_settings(path: Path) -> AllocationSettings:
    """Load settings from a YAML file with a top-level ``allocation:`` key."""
    document = load_yaml_file(path)
    _check_keys("top-level", document, {SECTION_KEY})
    return parse_allocation_settings(document.get(SECTION_KEY) or {})

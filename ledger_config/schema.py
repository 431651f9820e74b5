"""
Configuration schema for payment allocation (``ledger_config.schema``).

Responsibility
--------------
Frozen dataclasses describing every tunable of an allocation run.  Defaults
reproduce the production constants, so an absent configuration file yields
the standard behaviour.

Architecture position
---------------------
**Config layer** -- pure data, zero I/O.  Imported by the loader and by
``ledger_allocation``; imports nothing from the engine.

Invariants enforced
-------------------
* All instances are immutable; overrides produce new instances.
* Policy fields only accept the values listed in ``UNMATCHED_ACCOUNT_POLICIES``
  and ``STATUS_MARK_POLICIES`` (checked by the loader).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

UNMATCHED_ACCOUNT_POLICIES = ("reject-unmatched", "create-with-defaults")
STATUS_MARK_POLICIES = ("mark-all-attempted", "mark-successful-only")


@dataclass(frozen=True)
class RetrySettings:
    """Exponential backoff for transient database errors.

    The delay before retry ``n`` (1-based) is
    ``base_delay_seconds * backoff_multiplier ** (n - 1)``.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass(frozen=True)
class AllocationSettings:
    """Tunables for one allocation run."""

    page_size: int = 1000
    update_chunk_size: int = 50
    status_chunk_size: int = 50
    retry: RetrySettings = field(default_factory=RetrySettings)

    # Runner
    max_execution_seconds: float = 1800.0
    circuit_breaker_threshold: int = 3

    # Resumer
    resume_delay_seconds: float = 5.0
    max_resume_attempts: int = 10

    # Policies
    unmatched_account_policy: str = "reject-unmatched"
    status_mark_policy: str = "mark-all-attempted"

    # Side channels
    default_agent_target: Decimal = Decimal("1200000")
    record_payment_history: bool = True
    record_agent_performance: bool = True

    # Reporting and locking
    max_reported_errors: int = 1000
    lock_stale_after_seconds: float = 7200.0

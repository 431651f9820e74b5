"""
Pytest fixtures for the ledger allocation test suite.

Provides:
- In-memory SQLite engine with SAVEPOINT support and a fresh schema per test
- Deterministic clock, recording sleep, captured JSON logs
- Builders for payment files, payment records and debtor accounts

Every builder commits so that the engine's own commits and rollbacks never
discard fixture data.
"""

import itertools
import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from typing import Any, Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import ledger_kernel.models  # noqa: F401
from ledger_config.schema import AllocationSettings
from ledger_kernel.db.base import Base
from ledger_kernel.db.engine import enable_sqlite_savepoints
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.logging_config import LogContext, StructuredFormatter
from ledger_kernel.models.debtor import DebtorAccountModel
from ledger_kernel.models.payment_file import PaymentFileModel
from ledger_kernel.models.payment_record import PaymentRecordModel

from ledger_allocation.orchestrator import AllocationOrchestrator

# Wednesday of ISO week 6; week starts Monday 2026-02-02.
FIXED_TIME = datetime(2026, 2, 4, 12, 0, 0, tzinfo=timezone.utc)
RECORD_EPOCH = datetime(2026, 2, 1, 8, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    sess = Session(bind=engine)
    yield sess
    sess.close()


# =============================================================================
# Time, sleep, logs
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(fixed_time=FIXED_TIME)


class RecordingSleep:
    """Sleep stand-in that records requested delays instead of blocking."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "allocation_run_finished" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)
    LogContext.clear()


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def make_payment_file(session: Session):
    def _make(file_name: str = "payments-2026-02.xlsx", **kwargs: Any) -> PaymentFileModel:
        payment_file = PaymentFileModel(file_name=file_name, **kwargs)
        session.add(payment_file)
        session.commit()
        return payment_file

    return _make


@pytest.fixture
def make_debtor(session: Session):
    def _make(
        account_number: str,
        outstanding_balance: Decimal = Decimal("1000.00"),
        assigned_agent_id: UUID | None = None,
        **kwargs: Any,
    ) -> DebtorAccountModel:
        debtor = DebtorAccountModel(
            account_number=account_number,
            outstanding_balance=outstanding_balance,
            assigned_agent_id=assigned_agent_id,
            **kwargs,
        )
        session.add(debtor)
        session.commit()
        return debtor

    return _make


@pytest.fixture
def make_record(session: Session):
    """Create payment records with strictly increasing ``created_at``."""
    counter = itertools.count()

    def _make(
        payment_file: PaymentFileModel,
        account_number: str | None,
        amount: Decimal | str | None = Decimal("100.00"),
        outstanding_balance_total: Decimal | str | None = Decimal("900.00"),
        raw_data: dict | None = None,
        created_at: datetime | None = None,
        processing_status: str = "pending",
    ) -> PaymentRecordModel:
        if created_at is None:
            created_at = RECORD_EPOCH + timedelta(seconds=next(counter))
        record = PaymentRecordModel(
            payment_file_id=payment_file.id,
            account_number=account_number,
            amount=Decimal(amount) if isinstance(amount, str) else amount,
            outstanding_balance_total=(
                Decimal(outstanding_balance_total)
                if isinstance(outstanding_balance_total, str)
                else outstanding_balance_total
            ),
            raw_data=raw_data,
            created_at=created_at,
            processing_status=processing_status,
        )
        session.add(record)
        session.commit()
        return record

    return _make


# =============================================================================
# Orchestrator
# =============================================================================


@pytest.fixture
def actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_orchestrator(session, clock, recording_sleep, actor_id):
    def _make(
        settings: AllocationSettings | None = None,
        actor_resolver=None,
    ) -> AllocationOrchestrator:
        return AllocationOrchestrator.from_session(
            session,
            settings=settings or AllocationSettings(),
            clock=clock,
            actor_resolver=actor_resolver or (lambda: actor_id),
            sleep=recording_sleep,
        )

    return _make

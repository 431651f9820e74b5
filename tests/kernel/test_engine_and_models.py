"""
Tests for ledger_kernel.db.engine and the ORM model DTO conversions.

Uses SQLite (no PostgreSQL required).
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, text

from ledger_kernel.db import engine as engine_module
from ledger_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.db.types import ZERO, round_money, to_money
from ledger_kernel.domain.dtos import ProcessingStatus
from ledger_kernel.models.debtor import DebtorAccountModel
from ledger_kernel.models.payment_file import PaymentFileModel


@pytest.fixture
def sqlite_engine(tmp_path):
    init_engine_from_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_tables()
    yield get_engine()
    reset_engine()


class TestEngineLifecycle:

    def test_get_engine_before_init_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_session()

    def test_session_scope_commits(self, sqlite_engine):
        with session_scope() as session:
            session.add(PaymentFileModel(file_name="a.xlsx"))

        with session_scope() as session:
            names = session.execute(select(PaymentFileModel.file_name)).scalars().all()
        assert names == ["a.xlsx"]

    def test_session_scope_rolls_back_on_error(self, sqlite_engine):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(PaymentFileModel(file_name="b.xlsx"))
                session.flush()
                raise ValueError("boom")

        with session_scope() as session:
            count = session.execute(text("SELECT COUNT(*) FROM payment_files")).scalar_one()
        assert count == 0

    def test_savepoint_rollback_keeps_outer_work(self, sqlite_engine):
        with session_scope() as session:
            session.add(PaymentFileModel(file_name="outer.xlsx"))
            session.flush()
            with pytest.raises(RuntimeError):
                with session.begin_nested():
                    session.add(PaymentFileModel(file_name="inner.xlsx"))
                    session.flush()
                    raise RuntimeError("inner failure")

        with session_scope() as session:
            names = session.execute(select(PaymentFileModel.file_name)).scalars().all()
        assert names == ["outer.xlsx"]

    def test_reset_engine_clears_module_state(self, tmp_path):
        init_engine_from_url(f"sqlite:///{tmp_path / 'x.db'}")
        reset_engine()
        assert engine_module._engine is None
        assert engine_module._SessionFactory is None


class TestMoneyHelpers:

    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, ZERO),
            ("12.50", Decimal("12.50")),
            (7, Decimal("7")),
            (Decimal("3.1"), Decimal("3.1")),
            ("not a number", ZERO),
        ],
    )
    def test_to_money(self, value, expected):
        assert to_money(value) == expected

    def test_round_money(self):
        assert round_money(Decimal("10.005")) == Decimal("10.01")


class TestModelDtos:

    def test_payment_record_to_dto(self, make_payment_file, make_record):
        payment_file = make_payment_file()
        record = make_record(
            payment_file,
            " A1 ",
            amount=None,
            outstanding_balance_total="250.00",
            raw_data={"LAST_PAYMENT_DATE": "20250315", "ACCOUNT_HOLDER_NAME": "J Smith"},
        )

        dto = record.to_dto()
        assert dto.id == record.id
        assert dto.payment_file_id == payment_file.id
        assert dto.account_number == "A1"
        assert dto.amount == ZERO
        assert dto.outstanding_balance_total == Decimal("250.00")
        assert dto.payload.last_payment_date == date(2025, 3, 15)
        assert dto.payload.account_holder_name == "J Smith"
        assert dto.processing_status == ProcessingStatus.PENDING

    def test_blank_account_number_becomes_none(self, make_payment_file, make_record):
        record = make_record(make_payment_file(), "   ")
        assert record.to_dto().account_number is None

    def test_debtor_to_dto(self, make_debtor):
        agent_id = uuid4()
        debtor = make_debtor(
            "A1",
            outstanding_balance=Decimal("500.00"),
            assigned_agent_id=agent_id,
        )

        dto = debtor.to_dto()
        assert dto.id == debtor.id
        assert dto.account_number == "A1"
        assert dto.outstanding_balance == Decimal("500.00")
        assert dto.last_payment_amount is None
        assert dto.last_payment_date is None
        assert dto.assigned_agent_id == agent_id

    def test_debtor_account_number_is_unique(self, session, make_debtor):
        from sqlalchemy.exc import IntegrityError

        make_debtor("A1")
        session.add(DebtorAccountModel(account_number="A1", outstanding_balance=ZERO))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

"""
Tests for LedgerUpdater: debtor overwrites, unmatched-account policies,
date safety and per-chunk failure isolation.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from ledger_kernel.models.debtor import DebtorAccountModel

from ledger_allocation.domain.types import UnmatchedAccountPolicy
from ledger_allocation.services.debtor_matcher import DebtorMatcher
from ledger_allocation.services.ledger_updater import LedgerUpdater
from ledger_allocation.services.retry import Retrier, RetryPolicy


@pytest.fixture
def retrier(recording_sleep):
    return Retrier(RetryPolicy(3, 1.0, 2.0), sleep=recording_sleep)


@pytest.fixture
def make_updater(session, retrier, clock):
    def _make(chunk_size=50, policy=UnmatchedAccountPolicy.REJECT_UNMATCHED):
        return LedgerUpdater(
            session,
            retrier,
            clock=clock,
            chunk_size=chunk_size,
            unmatched_policy=policy,
        )

    return _make


def _debtor(session, account_number):
    session.expire_all()
    return session.execute(
        select(DebtorAccountModel).where(DebtorAccountModel.account_number == account_number)
    ).scalar_one_or_none()


def _apply(session, retrier, updater, records):
    dtos = [r.to_dto() for r in records]
    debtors = DebtorMatcher(session, retrier).match(d.account_number for d in dtos)
    return updater.apply(dtos, debtors)


class TestMatchedAccounts:

    def test_overwrites_balance_amount_and_date(
        self, session, retrier, make_updater, make_payment_file, make_record, make_debtor,
    ):
        make_debtor("A1", outstanding_balance=Decimal("1000.00"))
        payment_file = make_payment_file()
        record = make_record(
            payment_file,
            "A1",
            amount="150.00",
            outstanding_balance_total="850.00",
            raw_data={"LAST_PAYMENT_DATE": "20250315"},
        )

        result = _apply(session, retrier, make_updater(), [record])

        assert result.tally.accounts_updated == 1
        assert result.tally.failed_allocations == 0
        assert result.failed_accounts == frozenset()
        debtor = _debtor(session, "A1")
        assert debtor.outstanding_balance == Decimal("850.00")
        assert debtor.last_payment_amount == Decimal("150.00")
        assert debtor.last_payment_date == date(2025, 3, 15)

    @pytest.mark.parametrize("raw_date", ["N/A", "20251345", "2025-03-15", None])
    def test_malformed_date_leaves_stored_date_untouched(
        self, raw_date, session, retrier, make_updater,
        make_payment_file, make_record, make_debtor,
    ):
        make_debtor("A1", last_payment_date=date(2024, 12, 1))
        record = make_record(
            make_payment_file(),
            "A1",
            amount="20.00",
            outstanding_balance_total="980.00",
            raw_data={"LAST_PAYMENT_DATE": raw_date},
        )

        result = _apply(session, retrier, make_updater(), [record])

        assert result.tally.accounts_updated == 1
        debtor = _debtor(session, "A1")
        assert debtor.last_payment_date == date(2024, 12, 1)
        assert debtor.outstanding_balance == Decimal("980.00")

    def test_mixed_date_rows_in_one_chunk(
        self, session, retrier, make_updater, make_payment_file, make_record, make_debtor,
    ):
        make_debtor("A1")
        make_debtor("B2", last_payment_date=date(2024, 1, 1))
        payment_file = make_payment_file()
        records = [
            make_record(payment_file, "A1", raw_data={"LAST_PAYMENT_DATE": "20250101"}),
            make_record(payment_file, "B2", raw_data={"LAST_PAYMENT_DATE": "bad"}),
        ]

        result = _apply(session, retrier, make_updater(), records)

        assert result.tally.accounts_updated == 2
        assert _debtor(session, "A1").last_payment_date == date(2025, 1, 1)
        assert _debtor(session, "B2").last_payment_date == date(2024, 1, 1)


class TestUnmatchedAccounts:

    def test_reject_unmatched_reports_missing_account(
        self, session, retrier, make_updater, make_payment_file, make_record,
    ):
        record = make_record(make_payment_file(), "Z9")

        result = _apply(session, retrier, make_updater(), [record])

        assert result.tally.failed_allocations == 1
        assert result.tally.accounts_updated == 0
        assert result.failed_accounts == frozenset({"Z9"})
        (entry,) = result.tally.errors
        assert entry.account_number == "Z9"
        assert entry.error == "no matching account"
        assert entry.code == "MISSING_ACCOUNT"
        assert result.failure_reasons() == {"Z9": "no matching account"}
        assert _debtor(session, "Z9") is None

    def test_create_with_defaults_inserts_debtor(
        self, session, retrier, make_updater, make_payment_file, make_record,
    ):
        record = make_record(
            make_payment_file(),
            "N1",
            amount="75.00",
            outstanding_balance_total="425.00",
            raw_data={"LAST_PAYMENT_DATE": "20250601", "ACCOUNT_HOLDER_NAME": "New Holder"},
        )
        updater = make_updater(policy=UnmatchedAccountPolicy.CREATE_WITH_DEFAULTS)

        result = _apply(session, retrier, updater, [record])

        assert result.tally.accounts_created == 1
        assert result.tally.failed_allocations == 0
        (created,) = result.created_accounts
        assert created.account_number == "N1"

        debtor = _debtor(session, "N1")
        assert debtor.id == created.id
        assert debtor.account_holder_name == "New Holder"
        assert debtor.outstanding_balance == Decimal("425.00")
        assert debtor.last_payment_amount == Decimal("75.00")
        assert debtor.last_payment_date == date(2025, 6, 1)
        assert debtor.assigned_agent_id is None


class TestChunkIsolation:

    def test_failed_chunk_does_not_affect_siblings(
        self, session, retrier, make_updater, make_payment_file, make_record,
        make_debtor, monkeypatch, recording_sleep,
    ):
        bad = make_debtor("B2", outstanding_balance=Decimal("1000.00"))
        make_debtor("A1", outstanding_balance=Decimal("1000.00"))
        make_debtor("C3", outstanding_balance=Decimal("1000.00"))
        payment_file = make_payment_file()
        records = [
            make_record(payment_file, account, outstanding_balance_total="1.00")
            for account in ("A1", "B2", "C3")
        ]
        updater = make_updater(chunk_size=1)
        real_update = updater._update_once

        def failing_for_b2(rows):
            if any(row["id"] == bad.id for row in rows):
                raise OperationalError("UPDATE", {}, Exception("lock timeout"))
            real_update(rows)

        monkeypatch.setattr(updater, "_update_once", failing_for_b2)

        result = _apply(session, retrier, updater, records)

        assert result.tally.accounts_updated == 2
        assert result.tally.failed_allocations == 1
        assert result.failed_accounts == frozenset({"B2"})
        (entry,) = result.tally.errors
        assert entry.account_number == "B2"
        assert entry.error == "ledger update failed"
        assert entry.code == "BULK_WRITE_FAILED"
        assert recording_sleep.calls == [1.0, 2.0]

        assert _debtor(session, "A1").outstanding_balance == Decimal("1.00")
        assert _debtor(session, "B2").outstanding_balance == Decimal("1000.00")
        assert _debtor(session, "C3").outstanding_balance == Decimal("1.00")

    def test_failed_insert_chunk_reports_creation_failure(
        self, session, retrier, make_updater, make_payment_file, make_record, monkeypatch,
    ):
        record = make_record(make_payment_file(), "N1")
        updater = make_updater(policy=UnmatchedAccountPolicy.CREATE_WITH_DEFAULTS)

        def failing(rows):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(updater, "_insert_once", failing)
        result = _apply(session, retrier, updater, [record])

        assert result.tally.accounts_created == 0
        assert result.created_accounts == ()
        assert result.failed_accounts == frozenset({"N1"})
        assert result.tally.errors[0].error == "account creation failed"
        assert _debtor(session, "N1") is None

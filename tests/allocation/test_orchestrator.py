"""
End-to-end tests through AllocationOrchestrator: guarded resumable runs,
policies, side channels, failed-record reset and the read-only selectors.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_config.schema import AllocationSettings
from ledger_kernel.domain.dtos import ProcessingStatus
from ledger_kernel.exceptions import (
    AllocationAlreadyRunningError,
    PaymentFileNotFoundError,
)
from ledger_kernel.models.agent_performance import AgentPerformanceModel
from ledger_kernel.models.debtor import DebtorAccountModel
from ledger_kernel.models.payment_file import PaymentFileModel
from ledger_kernel.models.payment_history import (
    PaymentHistoryEntryModel,
    PaymentUploadBatchModel,
)
from ledger_kernel.models.payment_record import PaymentRecordModel

from ledger_allocation.domain.types import AllocationStatus
from ledger_allocation.services.file_guard import AllocationGuard


@pytest.fixture
def duplicate_and_unmatched(make_payment_file, make_record, make_debtor):
    """A1 paid twice (the later line wins) and Z9 with no debtor row."""
    agent = uuid4()
    make_debtor("A1", outstanding_balance=Decimal("1000.00"), assigned_agent_id=agent)
    payment_file = make_payment_file()
    make_record(
        payment_file,
        "A1",
        amount="100.00",
        outstanding_balance_total="900.00",
        raw_data={"LAST_PAYMENT_DATE": "20250301"},
    )
    make_record(
        payment_file,
        "A1",
        amount="250.00",
        outstanding_balance_total="750.00",
        raw_data={"LAST_PAYMENT_DATE": "20250315", "ACCOUNT_HOLDER_NAME": "J Smith"},
    )
    make_record(payment_file, "Z9", amount="40.00", outstanding_balance_total="60.00")
    return payment_file, agent


def _records(session, payment_file):
    session.expire_all()
    return session.execute(
        select(PaymentRecordModel)
        .where(PaymentRecordModel.payment_file_id == payment_file.id)
        .order_by(PaymentRecordModel.created_at)
    ).scalars().all()


def _file_row(session, payment_file):
    session.expire_all()
    return session.get(PaymentFileModel, payment_file.id)


class TestProcessLargePaymentFile:

    def test_latest_record_wins_and_unmatched_is_reported(
        self, session, make_orchestrator, duplicate_and_unmatched,
    ):
        payment_file, _ = duplicate_and_unmatched

        progress = make_orchestrator().process_large_payment_file(payment_file.id)

        assert progress.status == AllocationStatus.COMPLETE
        assert progress.is_complete
        assert progress.total_processed == 3
        assert progress.accounts_updated == 1
        assert progress.failed_allocations == 1
        (entry,) = progress.errors
        assert (entry.account_number, entry.error) == ("Z9", "no matching account")

        session.expire_all()
        debtor = session.execute(
            select(DebtorAccountModel).where(DebtorAccountModel.account_number == "A1")
        ).scalar_one()
        assert debtor.outstanding_balance == Decimal("750.00")
        assert debtor.last_payment_amount == Decimal("250.00")
        assert debtor.last_payment_date == date(2025, 3, 15)

        assert {r.processing_status for r in _records(session, payment_file)} == {"processed"}
        row = _file_row(session, payment_file)
        assert row.allocation_status == "allocated"
        assert row.allocation_offset == 0

    def test_side_channels_use_deduplicated_records(
        self, session, actor_id, make_orchestrator, duplicate_and_unmatched,
    ):
        payment_file, agent = duplicate_and_unmatched

        make_orchestrator().process_large_payment_file(payment_file.id)

        session.expire_all()
        performance = session.execute(select(AgentPerformanceModel)).scalar_one()
        assert performance.agent_id == agent
        assert performance.collected_amount == Decimal("250.00")
        assert performance.month_year == date(2026, 2, 1)

        batch = session.execute(select(PaymentUploadBatchModel)).scalar_one()
        assert batch.uploaded_by == actor_id
        assert batch.file_name == "payment-file-week-2026-02-02"
        (entry,) = session.execute(select(PaymentHistoryEntryModel)).scalars().all()
        assert entry.account_no == "A1"
        assert entry.account_holder_name == "J Smith"
        assert entry.last_payment_amount == Decimal("250.00")

    def test_missing_actor_skips_history_but_allocates(
        self, session, make_orchestrator, duplicate_and_unmatched, captured_logs,
    ):
        payment_file, _ = duplicate_and_unmatched

        progress = make_orchestrator(actor_resolver=lambda: None).process_large_payment_file(
            payment_file.id
        )

        assert progress.is_complete
        assert progress.accounts_updated == 1
        session.expire_all()
        assert session.execute(select(PaymentUploadBatchModel)).scalars().all() == []
        assert session.execute(select(AgentPerformanceModel)).scalars().all() != []
        assert any(r["message"] == "payment_history_failed" for r in captured_logs())

    def test_side_channels_can_be_disabled(
        self, session, make_orchestrator, duplicate_and_unmatched,
    ):
        payment_file, _ = duplicate_and_unmatched
        settings = AllocationSettings(record_payment_history=False, record_agent_performance=False)

        assert make_orchestrator(settings).process_large_payment_file(payment_file.id).is_complete

        session.expire_all()
        assert session.execute(select(AgentPerformanceModel)).scalars().all() == []
        assert session.execute(select(PaymentUploadBatchModel)).scalars().all() == []

    def test_mark_successful_only_fails_unmatched_records(
        self, session, make_orchestrator, duplicate_and_unmatched,
    ):
        payment_file, _ = duplicate_and_unmatched
        settings = AllocationSettings(status_mark_policy="mark-successful-only")

        progress = make_orchestrator(settings).process_large_payment_file(payment_file.id)

        assert progress.failed_allocations == 1
        by_account = {}
        for record in _records(session, payment_file):
            by_account.setdefault(record.account_number, set()).add(record.processing_status)
        assert by_account == {"A1": {"processed"}, "Z9": {"failed"}}
        z9 = [r for r in _records(session, payment_file) if r.account_number == "Z9"][0]
        assert z9.processing_error == "no matching account"

    def test_create_with_defaults_policy(
        self, session, make_orchestrator, duplicate_and_unmatched,
    ):
        payment_file, _ = duplicate_and_unmatched
        settings = AllocationSettings(unmatched_account_policy="create-with-defaults")

        progress = make_orchestrator(settings).process_large_payment_file(payment_file.id)

        assert progress.accounts_updated == 1
        assert progress.accounts_created == 1
        assert progress.failed_allocations == 0
        session.expire_all()
        created = session.execute(
            select(DebtorAccountModel).where(DebtorAccountModel.account_number == "Z9")
        ).scalar_one()
        assert created.outstanding_balance == Decimal("60.00")
        accounts = {e.account_no for e in session.execute(select(PaymentHistoryEntryModel)).scalars()}
        assert accounts == {"A1", "Z9"}

    def test_second_run_is_a_no_op(self, session, make_orchestrator, duplicate_and_unmatched):
        payment_file, _ = duplicate_and_unmatched
        orchestrator = make_orchestrator()
        orchestrator.process_large_payment_file(payment_file.id)

        again = orchestrator.process_large_payment_file(payment_file.id)

        assert again.is_complete
        assert again.total_processed == 0
        assert again.accounts_updated == 0

    def test_paused_run_resumes_from_checkpoint(
        self, session, clock, make_orchestrator, make_payment_file, make_record, make_debtor,
    ):
        payment_file = make_payment_file()
        for n in range(5):
            make_debtor(f"A{n}")
            make_record(payment_file, f"A{n}")
        settings = AllocationSettings(page_size=2, max_execution_seconds=60.0)
        orchestrator = make_orchestrator(settings)

        def burn(snapshot):
            clock.advance(60)

        paused = orchestrator.process_large_payment_file(
            payment_file.id, on_progress=burn, max_attempts=1,
        )
        assert paused.status == AllocationStatus.PAUSED
        row = _file_row(session, payment_file)
        assert row.allocation_status == "paused"
        assert row.allocation_offset == 2

        resumed = orchestrator.process_large_payment_file(
            payment_file.id, resume_from_checkpoint=True,
        )
        assert resumed.is_complete
        assert resumed.total_processed == 3
        assert _file_row(session, payment_file).allocation_status == "allocated"

    def test_long_resumed_run_keeps_its_hold(
        self, session, clock, recording_sleep, make_orchestrator,
        make_payment_file, make_record, make_debtor,
    ):
        payment_file = make_payment_file()
        for n in range(10):
            make_debtor(f"A{n}")
            make_record(payment_file, f"A{n}")
        settings = AllocationSettings(
            page_size=1,
            record_payment_history=False,
            record_agent_performance=False,
        )
        rival = AllocationGuard(
            session, clock, stale_after_seconds=settings.lock_stale_after_seconds,
        )
        snapshots = []
        rejected = []

        def slow_pages_with_rival(snapshot):
            snapshots.append(snapshot)
            clock.advance(1000)
            try:
                rival.acquire(payment_file.id)
            except AllocationAlreadyRunningError:
                rejected.append(snapshot.total_processed)

        progress = make_orchestrator(settings).process_large_payment_file(
            payment_file.id, on_progress=slow_pages_with_rival,
        )

        assert progress.status == AllocationStatus.COMPLETE
        assert progress.attempts == 5
        assert progress.total_processed == 10
        assert len(recording_sleep.calls) == 4
        assert len(rejected) == len(snapshots)
        assert _file_row(session, payment_file).allocation_status == "allocated"

    def test_record_without_account_number_fails_under_mark_successful_only(
        self, session, make_orchestrator, make_payment_file, make_record, make_debtor,
    ):
        payment_file = make_payment_file()
        make_debtor("A1")
        make_record(payment_file, "A1")
        make_record(payment_file, None)
        settings = AllocationSettings(status_mark_policy="mark-successful-only")

        progress = make_orchestrator(settings).process_large_payment_file(payment_file.id)

        assert progress.is_complete
        assert progress.failed_allocations == 1
        (entry,) = progress.errors
        assert (entry.account_number, entry.error) == (None, "missing account number")
        statuses = {
            r.account_number: (r.processing_status, r.processing_error)
            for r in _records(session, payment_file)
        }
        assert statuses == {
            "A1": ("processed", None),
            None: ("failed", "missing account number"),
        }

    def test_concurrent_run_is_rejected(
        self, make_orchestrator, make_payment_file, make_record, clock,
    ):
        payment_file = make_payment_file(
            allocation_status="allocating",
            allocation_token="other-run",
            allocation_started_at=clock.now(),
        )
        make_record(payment_file, "A1")

        with pytest.raises(AllocationAlreadyRunningError):
            make_orchestrator().process_large_payment_file(payment_file.id)

    def test_unknown_file(self, make_orchestrator):
        with pytest.raises(PaymentFileNotFoundError):
            make_orchestrator().process_large_payment_file(uuid4())

    def test_guard_released_when_run_raises(
        self, session, make_orchestrator, duplicate_and_unmatched, monkeypatch,
    ):
        payment_file, _ = duplicate_and_unmatched
        orchestrator = make_orchestrator()

        def crash(*args, **kwargs):
            raise RuntimeError("worker lost")

        monkeypatch.setattr(orchestrator.runner, "run", crash)
        with pytest.raises(RuntimeError):
            orchestrator.process_large_payment_file(payment_file.id)

        row = _file_row(session, payment_file)
        assert row.allocation_status == "paused"
        assert row.allocation_token is None

    def test_allocate_single_pass(self, make_orchestrator, duplicate_and_unmatched):
        payment_file, _ = duplicate_and_unmatched
        progress = make_orchestrator().allocate(payment_file.id)
        assert progress.is_complete
        assert progress.attempts == 1


class TestResetFailedRecords:

    def test_requeues_failed_records_and_clears_checkpoint(
        self, session, make_orchestrator, duplicate_and_unmatched,
    ):
        payment_file, _ = duplicate_and_unmatched
        orchestrator = make_orchestrator(
            AllocationSettings(status_mark_policy="mark-successful-only")
        )
        orchestrator.process_large_payment_file(payment_file.id)

        assert orchestrator.reset_failed_records(payment_file.id) == 1

        z9 = [r for r in _records(session, payment_file) if r.account_number == "Z9"][0]
        assert z9.processing_status == "pending"
        assert z9.processing_error is None
        assert z9.processed_at is None
        assert orchestrator.can_allocate(payment_file.id)

    def test_nothing_to_reset(self, make_orchestrator, duplicate_and_unmatched):
        payment_file, _ = duplicate_and_unmatched
        assert make_orchestrator().reset_failed_records(payment_file.id) == 0


class TestSelectors:

    def test_stats_before_and_after(self, make_orchestrator, duplicate_and_unmatched):
        payment_file, _ = duplicate_and_unmatched
        orchestrator = make_orchestrator()

        before = orchestrator.allocation_stats(payment_file.id)
        assert before.total_records == 3
        assert before.pending.count == 3
        assert before.pending.amount == Decimal("390.00")
        assert before.allocation_percentage == 0.0
        assert before.allocation_status == "pending"

        orchestrator.process_large_payment_file(payment_file.id)

        after = orchestrator.allocation_stats(payment_file.id)
        assert after.processed.count == 3
        assert after.pending.count == 0
        assert after.allocation_percentage == 100.0
        assert after.allocation_status == "allocated"

    def test_stats_unknown_file(self, make_orchestrator):
        with pytest.raises(PaymentFileNotFoundError):
            make_orchestrator().allocation_stats(uuid4())

    def test_can_allocate(
        self, session, clock, make_orchestrator, make_payment_file, make_record,
    ):
        orchestrator = make_orchestrator()
        empty = make_payment_file("empty.xlsx")
        assert not orchestrator.can_allocate(empty.id)
        assert not orchestrator.can_allocate(uuid4())

        pending = make_payment_file("pending.xlsx")
        make_record(pending, "A1")
        assert orchestrator.can_allocate(pending.id)

        held = make_payment_file(
            "held.xlsx",
            allocation_status="allocating",
            allocation_started_at=clock.now(),
        )
        make_record(held, "A1")
        assert not orchestrator.can_allocate(held.id)

    def test_details_newest_first_with_filters(
        self, make_orchestrator, make_payment_file, make_record,
    ):
        payment_file = make_payment_file()
        make_record(payment_file, "A1", raw_data={"ACCOUNT_HOLDER_NAME": "First"})
        make_record(payment_file, "B2", processing_status="failed")
        make_record(payment_file, "C3")
        orchestrator = make_orchestrator()

        details = orchestrator.allocation_details(payment_file.id)
        assert [d.account_number for d in details] == ["C3", "B2", "A1"]
        assert details[-1].account_holder_name == "First"

        failed = orchestrator.allocation_details(payment_file.id, status=ProcessingStatus.FAILED)
        assert [d.account_number for d in failed] == ["B2"]

        limited = orchestrator.allocation_details(payment_file.id, limit=1)
        assert [d.account_number for d in limited] == ["C3"]

        data = details[0].to_dict()
        assert Decimal(data["amount"]) == Decimal("100.00")
        assert data["processed_at"] is None

"""ORM models for the debtor ledger and payment allocation."""

from ledger_kernel.models.agent_performance import (
    DEFAULT_AGENT_TARGET,
    AgentPerformanceModel,
)
from ledger_kernel.models.debtor import DebtorAccountModel
from ledger_kernel.models.payment_file import PaymentFileModel
from ledger_kernel.models.payment_history import (
    PaymentHistoryEntryModel,
    PaymentUploadBatchModel,
)
from ledger_kernel.models.payment_record import PaymentRecordModel

__all__ = [
    "AgentPerformanceModel",
    "DEFAULT_AGENT_TARGET",
    "DebtorAccountModel",
    "PaymentFileModel",
    "PaymentRecordModel",
    "PaymentUploadBatchModel",
    "PaymentHistoryEntryModel",
]

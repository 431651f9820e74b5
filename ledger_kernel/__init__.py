"""
Ledger Kernel -- persistence, logging, and pure helpers for debtor ledgers.

Provides:
- SQLAlchemy declarative base, engine and session handling
- ORM models for payment files, payment records, debtor accounts,
  agent performance, and weekly payment history
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with context propagation
- Injectable clock and pure date/payload normalisation

Nothing in ledger_kernel imports from ledger_config or ledger_allocation.
"""

__version__ = "0.1.0"

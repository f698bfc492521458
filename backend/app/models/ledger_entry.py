"""
Ledger Entry database model.

Immutable double-entry lines belonging to a journal entry.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import LedgerEntryType


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Immutable record of financial movement on one account.
    Double-entry principle: every journal entry has matching debit and credit totals.
    NO updates or deletions allowed.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Linkage
    journal_entry_id = Column(Integer, ForeignKey('journal_entries.id'), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey('financial_accounts.id'), nullable=False, index=True)

    # Entry details
    entry_type = Column(Enum(LedgerEntryType), nullable=False)  # DEBIT or CREDIT
    amount = Column(Numeric(14, 2), nullable=False)

    # Balance of the account right after this line
    balance_after = Column(Numeric(14, 2), nullable=False)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount})>"

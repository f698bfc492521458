"""
Journal Entry database model.

Header of a balanced money movement. Each entry owns two or more
ledger entries whose debits and credits sum to the same amount.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import JournalEntryType


class JournalEntry(Base):
    """
    Journal Entry model.

    Immutable. Reversals are new entries (e.g. ESCROW_REFUND reverses
    ESCROW_FUND), never updates.
    """
    __tablename__ = "journal_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    entry_type = Column(Enum(JournalEntryType), nullable=False, index=True)
    load_id = Column(Integer, ForeignKey('loads.id'), nullable=True, index=True)

    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<JournalEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount})>"

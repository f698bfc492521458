"""
Financial Account database model.

Wallets for shipper and carrier organizations plus platform-owned
escrow, service-fee reserve and revenue accounts.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import AccountType


class FinancialAccount(Base):
    """
    Financial Account model.

    balance only changes through journal postings; see domain.billing.ledger.
    Platform accounts have no organization.
    """
    __tablename__ = "financial_accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    organization_id = Column(Integer, ForeignKey('organizations.id'), nullable=True, index=True)
    account_type = Column(Enum(AccountType), nullable=False, index=True)

    balance = Column(Numeric(14, 2), default=0, nullable=False)
    currency = Column(String(3), default="ETB", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<FinancialAccount(id={self.id}, type='{self.account_type.value}', balance={self.balance})>"

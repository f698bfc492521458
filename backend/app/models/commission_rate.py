"""
Commission Rate database model.

Effective-dated platform commission percentages charged on the fare.
"""

from sqlalchemy import Column, Integer, DateTime, Boolean, ForeignKey, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base


class CommissionRate(Base):
    """
    Commission Rate model.

    The latest active rate whose window covers "now" wins. Rates are
    percentages (5.00 means 5%).
    """
    __tablename__ = "commission_rates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    shipper_rate = Column(Numeric(5, 2), nullable=False)
    carrier_rate = Column(Numeric(5, 2), nullable=False)

    # Validity
    effective_from = Column(DateTime(timezone=True), nullable=False)
    effective_to = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Audit
    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<CommissionRate(id={self.id}, shipper={self.shipper_rate}, carrier={self.carrier_rate})>"

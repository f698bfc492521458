"""
Load Event database model.

Append-only history of everything that happened to a load. Success
events for escrow and service fees double as idempotency markers.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from backend.app.db.session import Base


class LoadEvent(Base):
    """
    Load event model.

    Events logged:
    - ASSIGNED / UNASSIGNED / STATUS_CHANGED
    - *_APPROVED / *_REJECTED for offers
    - ESCROW_FUNDED / ESCROW_REFUNDED / ESCROW_RELEASED (markers)
    - SERVICE_FEE_RESERVED / SERVICE_FEE_REFUNDED (markers)
    - *_FAILED warnings for side effects that need manual remediation
    """
    __tablename__ = "load_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    load_id = Column(Integer, ForeignKey('loads.id'), nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Who triggered it (None for system sweeps)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    meta_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<LoadEvent(id={self.id}, load_id={self.load_id}, type='{self.event_type}')>"

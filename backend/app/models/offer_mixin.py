"""
Columns shared by the three offer tables.

LoadRequest, TruckRequest and MatchProposal are directional, expiring
proposals to put one truck on one load.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, Numeric
from sqlalchemy.orm import declared_attr
from sqlalchemy.sql import func
from backend.app.models.offer_enums import RequestStatus


class OfferMixin:

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    @declared_attr
    def load_id(cls):
        return Column(Integer, ForeignKey('loads.id'), nullable=False, index=True)

    @declared_attr
    def truck_id(cls):
        return Column(Integer, ForeignKey('trucks.id'), nullable=False, index=True)

    @declared_attr
    def requested_by_id(cls):
        return Column(Integer, ForeignKey('users.id'), nullable=False)

    @declared_attr
    def responded_by_id(cls):
        return Column(Integer, ForeignKey('users.id'), nullable=True)

    status = Column(Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False, index=True)

    notes = Column(Text, nullable=True)
    proposed_rate = Column(Numeric(14, 2), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    response_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Readable label used in messages and events
    kind_label = "Request"

    def __repr__(self):
        return f"<{type(self).__name__}(id={self.id}, load={self.load_id}, truck={self.truck_id}, status='{self.status.value}')>"

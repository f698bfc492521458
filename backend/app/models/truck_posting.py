"""
Truck Posting database model.

A carrier's advertisement that a truck is available on a lane.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.load_enums import PostingStatus


class TruckPosting(Base):
    """
    Truck Posting model.

    At most one ACTIVE posting per truck (enforced by the posting workflow).
    The assignment coordinator flips the ACTIVE posting to MATCHED.
    """
    __tablename__ = "truck_postings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    truck_id = Column(Integer, ForeignKey('trucks.id'), nullable=False, index=True)
    carrier_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)

    # Lane
    origin_city = Column(String(100), nullable=False)
    origin_lat = Column(Float, nullable=True)
    origin_lng = Column(Float, nullable=True)
    destination_city = Column(String(100), nullable=True)  # None means flexible

    # Window
    available_from = Column(DateTime(timezone=True), nullable=True)
    available_to = Column(DateTime(timezone=True), nullable=True)

    # Capacity offered on this posting (falls back to the truck's capacity)
    max_weight_kg = Column(Float, nullable=True)

    # Deadhead preferences (informational, see within_dh_limits)
    preferred_dh_to_origin_km = Column(Float, nullable=True)
    preferred_dh_after_delivery_km = Column(Float, nullable=True)

    status = Column(Enum(PostingStatus), default=PostingStatus.ACTIVE, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<TruckPosting(id={self.id}, truck_id={self.truck_id}, status='{self.status.value}')>"

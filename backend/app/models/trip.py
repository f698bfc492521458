"""
Trip database model.

Trips are created atomically with a load assignment and carry a snapshot
of the load's pickup and delivery details taken at commit time.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.trip_enums import TripStatus


class Trip(Base):
    """
    Trip model.

    At most one non-cancelled trip exists per load. Unassignment cancels the
    trip instead of deleting it; a later assignment creates a new one.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    load_id = Column(Integer, ForeignKey('loads.id'), nullable=False, index=True)
    truck_id = Column(Integer, ForeignKey('trucks.id'), nullable=False, index=True)
    carrier_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)
    shipper_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)

    status = Column(Enum(TripStatus), default=TripStatus.ASSIGNED, nullable=False, index=True)

    # Snapshot of the load at assignment time
    pickup_city = Column(String(100), nullable=True)
    pickup_address = Column(String(255), nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    delivery_city = Column(String(100), nullable=True)
    delivery_address = Column(String(255), nullable=True)
    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)
    estimated_distance_km = Column(Float, nullable=True)

    # Tracking
    tracking_url = Column(String(100), unique=True, nullable=False)
    tracking_enabled = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Trip(id={self.id}, load_id={self.load_id}, status='{self.status.value}')>"

"""
Truck database model.

Trucks belong to a carrier organization.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.load_enums import TruckType


class Truck(Base):
    """
    Truck model.

    is_available is cleared when the truck is bound to a load and set again
    when that load completes, is cancelled or is unassigned.
    """
    __tablename__ = "trucks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership - Truck belongs to a carrier organization
    carrier_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)

    license_plate = Column(String(20), unique=True, nullable=False, index=True)
    truck_type = Column(Enum(TruckType), nullable=False)
    capacity_kg = Column(Float, nullable=False)

    is_available = Column(Boolean, default=True, nullable=False, index=True)
    current_city = Column(String(100), nullable=True)

    # GPS device (tracking is only enabled for verified devices)
    gps_device_id = Column(String(50), nullable=True)
    gps_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Truck(id={self.id}, plate='{self.license_plate}', type='{self.truck_type.value}')>"

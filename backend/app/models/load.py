"""
Load database model.

A load is a shippable unit posted by a shipper organization.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Enum, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.load_enums import LoadStatus, TruckType
from backend.app.models.billing_enums import SettlementStatus, ServiceFeeStatus


class Load(Base):
    """
    Load model.

    assigned_truck_id is unique: the database rejects a second load bound to
    the same truck even if two assignments slip past the application check.
    While set, status is one of ASSIGNED, PICKUP_PENDING, IN_TRANSIT,
    DELIVERED, COMPLETED or EXCEPTION.
    """
    __tablename__ = "loads"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    shipper_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    # Lifecycle
    status = Column(Enum(LoadStatus), default=LoadStatus.DRAFT, nullable=False, index=True)

    # Assignment (at most one load per truck)
    assigned_truck_id = Column(Integer, ForeignKey('trucks.id'), nullable=True, unique=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)

    # Pickup
    pickup_city = Column(String(100), nullable=False)
    pickup_address = Column(String(255), nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    pickup_date = Column(DateTime(timezone=True), nullable=True)

    # Delivery
    delivery_city = Column(String(100), nullable=False)
    delivery_address = Column(String(255), nullable=True)
    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)

    # Cargo
    truck_type = Column(Enum(TruckType), nullable=False)
    weight_kg = Column(Float, nullable=True)
    cargo_description = Column(String(255), nullable=True)
    estimated_trip_km = Column(Float, nullable=True)

    # Pricing
    rate = Column(Numeric(14, 2), nullable=True)
    total_fare = Column(Numeric(14, 2), nullable=True)

    # Tracking
    tracking_enabled = Column(Boolean, default=False, nullable=False)
    tracking_url = Column(String(255), nullable=True)

    # Proof of delivery
    pod_submitted = Column(Boolean, default=False, nullable=False)
    pod_submitted_at = Column(DateTime(timezone=True), nullable=True)
    pod_url = Column(String(500), nullable=True)
    pod_verified = Column(Boolean, default=False, nullable=False)
    pod_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Escrow
    escrow_funded = Column(Boolean, default=False, nullable=False)
    escrow_amount = Column(Numeric(14, 2), nullable=True)
    shipper_commission = Column(Numeric(14, 2), nullable=True)
    carrier_commission = Column(Numeric(14, 2), nullable=True)

    # Service fee
    corridor_id = Column(Integer, ForeignKey('corridors.id'), nullable=True)
    service_fee_amount = Column(Numeric(14, 2), nullable=True)
    service_fee_status = Column(Enum(ServiceFeeStatus), default=ServiceFeeStatus.PENDING, nullable=False)

    # Settlement
    settlement_status = Column(Enum(SettlementStatus), default=SettlementStatus.PENDING, nullable=False, index=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def fare(self):
        """Agreed fare: total fare when set, otherwise the posted rate."""
        return self.total_fare if self.total_fare is not None else self.rate

    def __repr__(self):
        return f"<Load(id={self.id}, status='{self.status.value}', truck={self.assigned_truck_id})>"

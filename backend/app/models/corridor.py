"""
Corridor database model.

A priced lane between two regions used to compute the platform service fee.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Corridor(Base):
    """
    Corridor model.

    Fee per party is distance x price_per_km, less promo_discount_pct when
    promo_enabled. Bidirectional corridors also match the reverse lane.
    """
    __tablename__ = "corridors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(100), nullable=False)
    origin_region = Column(String(100), nullable=False, index=True)
    destination_region = Column(String(100), nullable=False, index=True)
    distance_km = Column(Float, nullable=False)
    bidirectional = Column(Boolean, default=True, nullable=False)

    shipper_price_per_km = Column(Numeric(10, 4), nullable=False)
    carrier_price_per_km = Column(Numeric(10, 4), nullable=False)

    promo_enabled = Column(Boolean, default=False, nullable=False)
    promo_discount_pct = Column(Float, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Corridor(id={self.id}, {self.origin_region} -> {self.destination_region})>"

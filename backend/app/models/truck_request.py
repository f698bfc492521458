"""
Truck Request database model.

A shipper asks for a specific truck to carry one of its loads.
Resolved by the carrier that owns the truck.
"""

from sqlalchemy import Column, Integer, ForeignKey
from backend.app.db.session import Base
from backend.app.models.offer_mixin import OfferMixin


class TruckRequest(OfferMixin, Base):
    __tablename__ = "truck_requests"

    # Requesting shipper organization
    shipper_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)

    kind_label = "Truck request"

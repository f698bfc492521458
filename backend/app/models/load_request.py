"""
Load Request database model.

A carrier asks for a specific load with one of its trucks.
Resolved by the shipper that owns the load.
"""

from sqlalchemy import Column, Integer, ForeignKey
from backend.app.db.session import Base
from backend.app.models.offer_mixin import OfferMixin


class LoadRequest(OfferMixin, Base):
    __tablename__ = "load_requests"

    # Requesting carrier organization
    carrier_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)

    kind_label = "Load request"

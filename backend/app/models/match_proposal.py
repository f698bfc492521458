"""
Match Proposal database model.

A dispatcher suggests a truck for a load. Approval authority stays with
the carrier that owns the truck.
"""

from sqlalchemy import Column, Integer, ForeignKey
from backend.app.db.session import Base
from backend.app.models.offer_mixin import OfferMixin


class MatchProposal(OfferMixin, Base):
    __tablename__ = "match_proposals"

    # Carrier organization that must answer
    carrier_id = Column(Integer, ForeignKey('organizations.id'), nullable=False, index=True)

    kind_label = "Match proposal"

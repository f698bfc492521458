"""
Notification Database Model.

In-app notifications written by the notification collaborator.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
import enum


class NotificationType(str, enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    LOAD_ASSIGNED = "LOAD_ASSIGNED"
    LOAD_UNASSIGNED = "LOAD_UNASSIGNED"
    LOAD_STATUS_CHANGED = "LOAD_STATUS_CHANGED"
    LOAD_REQUEST_RECEIVED = "LOAD_REQUEST_RECEIVED"
    LOAD_REQUEST_APPROVED = "LOAD_REQUEST_APPROVED"
    LOAD_REQUEST_REJECTED = "LOAD_REQUEST_REJECTED"
    TRUCK_REQUEST_RECEIVED = "TRUCK_REQUEST_RECEIVED"
    TRUCK_REQUEST_APPROVED = "TRUCK_REQUEST_APPROVED"
    TRUCK_REQUEST_REJECTED = "TRUCK_REQUEST_REJECTED"
    MATCH_PROPOSAL_RECEIVED = "MATCH_PROPOSAL_RECEIVED"
    MATCH_PROPOSAL_ACCEPTED = "MATCH_PROPOSAL_ACCEPTED"
    MATCH_PROPOSAL_REJECTED = "MATCH_PROPOSAL_REJECTED"
    POD_SUBMITTED = "POD_SUBMITTED"
    POD_VERIFIED = "POD_VERIFIED"
    SETTLEMENT_COMPLETE = "SETTLEMENT_COMPLETE"


class Notification(Base):
    """
    In-App Notification.
    Stores messages for users.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Recipient
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Content
    type = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    metadata_payload = Column(JSON, nullable=True)

    # State
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, type='{self.type.value}')>"

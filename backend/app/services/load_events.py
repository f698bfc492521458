"""
Load event ledger.

Records what happened to a load and answers idempotency questions for
side effects ("was escrow already funded for this load?").
"""

from typing import Optional, Dict, Any, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.load_event import LoadEvent
from backend.app.schemas.load_event import EVENT_METADATA_MODELS


# Load event constants
class LoadEventType:
    """Standardized load event types."""
    CREATED = "CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"

    # Assignment
    ASSIGNED = "ASSIGNED"
    UNASSIGNED = "UNASSIGNED"
    TRACKING_ENABLED = "TRACKING_ENABLED"

    # Offers
    LOAD_REQUEST_CREATED = "LOAD_REQUEST_CREATED"
    LOAD_REQUEST_APPROVED = "LOAD_REQUEST_APPROVED"
    LOAD_REQUEST_REJECTED = "LOAD_REQUEST_REJECTED"
    TRUCK_REQUEST_CREATED = "TRUCK_REQUEST_CREATED"
    TRUCK_REQUEST_APPROVED = "TRUCK_REQUEST_APPROVED"
    TRUCK_REQUEST_REJECTED = "TRUCK_REQUEST_REJECTED"
    MATCH_PROPOSAL_CREATED = "MATCH_PROPOSAL_CREATED"
    MATCH_PROPOSAL_ACCEPTED = "MATCH_PROPOSAL_ACCEPTED"
    MATCH_PROPOSAL_REJECTED = "MATCH_PROPOSAL_REJECTED"

    # Money (success events double as idempotency markers)
    ESCROW_FUNDED = "ESCROW_FUNDED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    SERVICE_FEE_RESERVED = "SERVICE_FEE_RESERVED"
    SERVICE_FEE_REFUNDED = "SERVICE_FEE_REFUNDED"
    SERVICE_FEE_DEDUCTED = "SERVICE_FEE_DEDUCTED"

    # Side-effect warnings
    ESCROW_HOLD_FAILED = "ESCROW_HOLD_FAILED"
    ESCROW_REFUND_FAILED = "ESCROW_REFUND_FAILED"
    SERVICE_FEE_FAILED = "SERVICE_FEE_FAILED"
    SERVICE_FEE_REFUND_FAILED = "SERVICE_FEE_REFUND_FAILED"
    TRACKING_FAILED = "TRACKING_FAILED"

    # Delivery and settlement
    POD_SUBMITTED = "POD_SUBMITTED"
    POD_VERIFIED = "POD_VERIFIED"
    SETTLEMENT_PROCESSED = "SETTLEMENT_PROCESSED"


def _validated_metadata(event_type: str, metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if metadata is None:
        return None
    model = EVENT_METADATA_MODELS.get(event_type)
    if model is None:
        return metadata
    return model.model_validate(metadata).model_dump(mode="json", exclude_none=True)


async def record_load_event(
    db: AsyncSession,
    load_id: int,
    event_type: str,
    description: Optional[str] = None,
    user_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> LoadEvent:
    """
    Append an event to a load's history.

    Does not commit: the event belongs to the caller's transaction so it is
    written, or discarded, together with the change it describes.

    Args:
        db: Database session
        load_id: Load the event belongs to
        event_type: Event type (use LoadEventType constants)
        description: Human-readable summary
        user_id: Acting user, None for system sweeps
        metadata: Event payload, validated against the event type's model

    Returns:
        The pending LoadEvent

    Raises:
        pydantic.ValidationError: If metadata does not fit the event type
    """
    event = LoadEvent(
        load_id=load_id,
        event_type=event_type,
        description=description,
        user_id=user_id,
        meta_data=_validated_metadata(event_type, metadata),
    )
    db.add(event)
    await db.flush()
    return event


async def latest_event_of(
    db: AsyncSession,
    load_id: int,
    event_types: Sequence[str],
) -> Optional[LoadEvent]:
    """Most recent event of any of the given types for a load."""
    result = await db.execute(
        select(LoadEvent)
        .where(LoadEvent.load_id == load_id, LoadEvent.event_type.in_(list(event_types)))
        .order_by(desc(LoadEvent.id))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_load_history(
    db: AsyncSession,
    load_id: int,
    limit: int = 100
) -> list[LoadEvent]:
    """
    Events for a load, oldest first.

    Args:
        db: Database session
        load_id: Load to get history for
        limit: Maximum number of records

    Returns:
        List of LoadEvent rows
    """
    result = await db.execute(
        select(LoadEvent)
        .where(LoadEvent.load_id == load_id)
        .order_by(LoadEvent.id)
        .limit(limit)
    )
    return list(result.scalars().all())

"""
Post-commit side effects.

Escrow, service fee and tracking run after an assignment (or unassignment,
or cancellation) has committed. Each one gets its own transaction; a
failure is rolled back, logged, written to the dead letter queue and
recorded as a warning LoadEvent, and never propagates to the caller.

Dead letter items are replayed with retry_dead_letter(). Handlers are
idempotent through LoadEvent markers, so a replay never moves money twice.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import CircuitOpenError
from backend.app.db.locking import lock_row
from backend.app.domain.billing.escrow_service import EscrowService
from backend.app.domain.billing.service_fee_service import ServiceFeeService
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.load import Load
from backend.app.models.notification import NotificationType
from backend.app.services.load_events import LoadEventType, record_load_event
from backend.app.services.notification_service import NotificationService
from backend.app.services.tracking import TrackingService, TrackingUnavailableError

logger = logging.getLogger(__name__)

MAX_DLQ_RETRIES = 5


class SideEffect:
    """Task names, stored in DeadLetterQueue.task_name."""
    ESCROW_HOLD = "escrow_hold"
    ESCROW_REFUND = "escrow_refund"
    SERVICE_FEE_RESERVE = "service_fee_reserve"
    SERVICE_FEE_REFUND = "service_fee_refund"
    TRACKING = "tracking"


FAILURE_EVENTS = {
    SideEffect.ESCROW_HOLD: LoadEventType.ESCROW_HOLD_FAILED,
    SideEffect.ESCROW_REFUND: LoadEventType.ESCROW_REFUND_FAILED,
    SideEffect.SERVICE_FEE_RESERVE: LoadEventType.SERVICE_FEE_FAILED,
    SideEffect.SERVICE_FEE_REFUND: LoadEventType.SERVICE_FEE_REFUND_FAILED,
    SideEffect.TRACKING: LoadEventType.TRACKING_FAILED,
}


async def _enable_tracking(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
    load = await db.get(Load, load_id)
    if load is None:
        return {"success": False, "error": "Load not found"}
    if load.assigned_truck_id is None:
        return {"success": True, "skipped": True, "reason": "Load has no truck"}
    if load.tracking_enabled:
        return {"success": True, "idempotent": True, "tracking_url": load.tracking_url}

    truck_id = load.assigned_truck_id
    try:
        url = await TrackingService.enable_tracking(db, load_id, truck_id)
    except TrackingUnavailableError as exc:
        # Trucks without a verified device are simply not tracked
        return {"success": True, "skipped": True, "reason": str(exc)}
    except CircuitOpenError:
        return {"success": False, "error": "Tracking provider unavailable (circuit open)"}

    if url is None:
        return {"success": True, "skipped": True, "reason": "Load has no active trip"}

    await record_load_event(
        db,
        load_id,
        LoadEventType.TRACKING_ENABLED,
        description="GPS tracking enabled",
        user_id=user_id,
        metadata={"truck_id": truck_id, "tracking_url": url},
    )
    return {"success": True, "tracking_url": url}


Handler = Callable[[AsyncSession, int, Optional[int]], Awaitable[Dict[str, Any]]]

SIDE_EFFECT_HANDLERS: Dict[str, Handler] = {
    SideEffect.ESCROW_HOLD: EscrowService.hold,
    SideEffect.ESCROW_REFUND: EscrowService.refund,
    SideEffect.SERVICE_FEE_RESERVE: ServiceFeeService.reserve,
    SideEffect.SERVICE_FEE_REFUND: ServiceFeeService.refund,
    SideEffect.TRACKING: _enable_tracking,
}


async def _record_failure(
    db: AsyncSession,
    name: str,
    load_id: int,
    error: str,
    user_id: Optional[int],
) -> Optional[int]:
    """Dead letter row plus warning event. Returns the DLQ id."""
    try:
        item = DeadLetterQueue(
            task_name=name,
            load_id=load_id,
            error_message=error,
            payload={"load_id": load_id, "user_id": user_id},
            status=DLQStatus.FAILED,
        )
        db.add(item)
        await db.flush()

        await record_load_event(
            db,
            load_id,
            FAILURE_EVENTS[name],
            description=f"{name} failed: {error}",
            user_id=user_id,
            metadata={"side_effect": name, "error": error, "dlq_id": item.id},
        )
        await db.commit()
        return item.id
    except Exception:
        await db.rollback()
        logger.error("Could not record failed side effect %s for load %s", name, load_id, exc_info=True)
        return None


async def _attempt(db: AsyncSession, name: str, load_id: int, user_id: Optional[int]) -> Dict[str, Any]:
    """Run one handler in its own transaction. Commits on success, rolls back otherwise."""
    handler = SIDE_EFFECT_HANDLERS[name]
    try:
        result = await handler(db, load_id, user_id)
    except Exception as exc:
        await db.rollback()
        logger.warning("Side effect %s raised for load %s", name, load_id, exc_info=True)
        return {"success": False, "error": str(exc) or type(exc).__name__}

    if result.get("success"):
        await db.commit()
    else:
        await db.rollback()
    return result


async def run_side_effect(
    db: AsyncSession,
    name: str,
    load_id: int,
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Attempt a side effect once; record a failure instead of raising.

    Returns:
        The handler's result dict. Failures carry "error" and, when the
        dead letter row was written, "dlq_id".
    """
    result = await _attempt(db, name, load_id, user_id)
    if result.get("success"):
        return result

    logger.warning("Side effect %s failed for load %s: %s", name, load_id, result.get("error"))
    dlq_id = await _record_failure(db, name, load_id, result.get("error", "unknown error"), user_id)
    if dlq_id is not None:
        result["dlq_id"] = dlq_id
    return result


async def run_side_effects(
    db: AsyncSession,
    names: Iterable[str],
    load_id: int,
    user_id: Optional[int] = None,
) -> Dict[str, Dict[str, Any]]:
    """Run several side effects in order, each independently."""
    return {name: await run_side_effect(db, name, load_id, user_id) for name in names}


@dataclass
class Notice:
    """A notification to send after commit, to one user or a whole organization."""
    type: NotificationType
    title: str
    message: str
    user_id: Optional[int] = None
    organization_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


async def send_notices(db: AsyncSession, notices: Iterable[Notice], actor_id: Optional[int] = None) -> bool:
    """
    Deliver notifications in one transaction. Best effort: returns False on failure.

    The acting user is not notified about their own action.
    """
    try:
        for notice in notices:
            if notice.user_id is not None:
                if notice.user_id != actor_id:
                    await NotificationService.notify(
                        db, notice.user_id, notice.type, notice.title, notice.message, notice.metadata
                    )
            else:
                await NotificationService.notify_organization(
                    db,
                    notice.organization_id,
                    notice.type,
                    notice.title,
                    notice.message,
                    notice.metadata,
                    exclude_user_ids=[actor_id] if actor_id is not None else (),
                )
        await db.commit()
        return True
    except Exception:
        await db.rollback()
        logger.warning("Notification delivery failed", exc_info=True)
        return False


async def retry_dead_letter(db: AsyncSession, dlq_id: int) -> Optional[DeadLetterQueue]:
    """
    Replay a dead letter item.

    Success marks it PROCESSED. Failure bumps retry_count; after
    MAX_DLQ_RETRIES the item is ARCHIVED for manual handling. A replay
    failure does not create another dead letter row.

    Returns:
        The updated item, or None if it does not exist
    """
    item = await lock_row(db, DeadLetterQueue, dlq_id)
    if item is None:
        return None
    if item.status in (DLQStatus.PROCESSED, DLQStatus.ARCHIVED):
        return item

    name, load_id = item.task_name, item.load_id
    user_id = (item.payload or {}).get("user_id")

    if name not in SIDE_EFFECT_HANDLERS or load_id is None:
        item.status = DLQStatus.ARCHIVED
        item.last_retry_at = datetime.utcnow()
        await db.commit()
        logger.warning("Archived dead letter %s: no handler for %s", dlq_id, name)
        return item

    result = await _attempt(db, name, load_id, user_id)

    # _attempt committed or rolled back; re-read before updating
    item = await lock_row(db, DeadLetterQueue, dlq_id)
    item.retry_count += 1
    item.last_retry_at = datetime.utcnow()
    if result.get("success"):
        item.status = DLQStatus.PROCESSED
    else:
        item.error_message = result.get("error", item.error_message)
        item.status = DLQStatus.ARCHIVED if item.retry_count >= MAX_DLQ_RETRIES else DLQStatus.FAILED
    await db.commit()

    logger.info("Dead letter %s (%s) retried: %s", dlq_id, name, item.status.value)
    return item

"""
Settlement Service (Domain Logic).

Closes the money loop for delivered loads:
1. Auto-verify PODs the shipper left unanswered past the grace window
2. Settle DELIVERED, POD-verified, PENDING loads: release escrow, deduct the
   reserved service fee, mark PAID

Each load settles in its own transaction. A failure leaves that load
PENDING for the next sweep and does not stop the others.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select

from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidStateError, ResourceNotFoundError
from backend.app.db.locking import lock_row
from backend.app.domain.billing.escrow_service import EscrowService
from backend.app.domain.billing.ledger import to_money
from backend.app.domain.billing.service_fee_service import ServiceFeeService
from backend.app.models.billing_enums import SettlementStatus
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus
from backend.app.services.cache import CacheService
from backend.app.services.load_events import LoadEventType, record_load_event

logger = logging.getLogger(__name__)


class SettlementAction:
    AUTO_VERIFY = "auto-verify"
    PROCESS_SETTLEMENTS = "process-settlements"
    FULL = "full"

    ALL = (AUTO_VERIFY, PROCESS_SETTLEMENTS, FULL)


class SettlementError(Exception):
    """A load could not be settled; message is the reason."""


@dataclass
class SettlementOutcome:
    load_id: int
    settlement_status: SettlementStatus
    settled_at: Optional[datetime]
    carrier_payout: str
    platform_revenue: str
    service_fee: str


def _ready_filter():
    return (
        Load.status == LoadStatus.DELIVERED,
        Load.pod_verified == True,
        Load.settlement_status == SettlementStatus.PENDING,
    )


async def _settle(db: AsyncSession, load_id: int, user_id: Optional[int], manual: bool) -> SettlementOutcome:
    """
    Release escrow and deduct the service fee in one transaction.

    Raises:
        SettlementError: Escrow release or fee deduction failed (rolled back)
    """
    try:
        released = await EscrowService.release(db, load_id, user_id)
        if not released.get("success"):
            raise SettlementError(released.get("error", "Escrow release failed"))

        fee = await ServiceFeeService.deduct(db, load_id, user_id)
        if not fee.get("success"):
            raise SettlementError(fee.get("error", "Service fee deduction failed"))

        await record_load_event(
            db,
            load_id,
            LoadEventType.SETTLEMENT_PROCESSED,
            description="Settlement approved" if manual else "Settlement processed automatically",
            user_id=user_id,
            metadata={
                "carrier_payout": released.get("carrier_payout"),
                "platform_revenue": released.get("platform_revenue"),
                "service_fee": fee.get("amount"),
                "manual": manual,
            },
        )

        load = await db.get(Load, load_id)
        outcome = SettlementOutcome(
            load_id=load_id,
            settlement_status=load.settlement_status,
            settled_at=load.settled_at,
            carrier_payout=released.get("carrier_payout"),
            platform_revenue=released.get("platform_revenue"),
            service_fee=fee.get("amount", "0.00"),
        )
        shipper_id = load.shipper_id
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await CacheService.invalidate_load(load_id, shipper_id)
    logger.info("Load %s settled: carrier %s, platform %s", load_id, outcome.carrier_payout, outcome.platform_revenue)
    return outcome


class SettlementService:

    @staticmethod
    async def auto_verify_expired_pods(db: AsyncSession, timeout_hours: Optional[int] = None) -> int:
        """
        Verify PODs the shipper did not answer within the grace window.

        Returns:
            Number of loads auto-verified
        """
        hours = timeout_hours or settings.auto_verify_pod_timeout_hours
        if not 1 <= hours <= 168:
            raise InvalidStateError("timeout_hours must be between 1 and 168", details={"timeoutHours": hours})
        cutoff = datetime.utcnow() - timedelta(hours=hours)

        result = await db.execute(
            select(Load).where(
                Load.status == LoadStatus.DELIVERED,
                Load.pod_submitted == True,
                Load.pod_verified == False,
                Load.pod_submitted_at.is_not(None),
                Load.pod_submitted_at < cutoff,
            ).with_for_update()
        )
        loads = result.scalars().all()

        now = datetime.utcnow()
        for load in loads:
            load.pod_verified = True
            load.pod_verified_at = now
            await record_load_event(
                db,
                load.id,
                LoadEventType.POD_VERIFIED,
                description=f"POD auto-verified after {hours}h without shipper response",
                metadata={"pod_url": load.pod_url, "auto_verified": True},
            )
        await db.commit()

        if loads:
            logger.info("Auto-verified %d PODs older than %sh", len(loads), hours)
        return len(loads)

    @staticmethod
    async def process_ready_settlements(db: AsyncSession) -> int:
        """
        Settle every load that is ready.

        Returns:
            Number of loads settled
        """
        result = await db.execute(select(Load.id).where(*_ready_filter()).order_by(Load.id))
        load_ids = list(result.scalars().all())

        settled = 0
        for load_id in load_ids:
            try:
                await _settle(db, load_id, None, manual=False)
                settled += 1
            except SettlementError as exc:
                logger.warning("Settlement of load %s skipped: %s", load_id, exc)
            except Exception:
                logger.error("Settlement of load %s failed", load_id, exc_info=True)

        if load_ids:
            logger.info("Settlement sweep: %d of %d ready loads settled", settled, len(load_ids))
        return settled

    @staticmethod
    async def run_settlement_automation(
        db: AsyncSession,
        action: str = SettlementAction.FULL,
        timeout_hours: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Run one automation action. `full` auto-verifies first, then settles."""
        if action not in SettlementAction.ALL:
            raise InvalidStateError(
                f"Unknown action: {action}",
                details={"validActions": list(SettlementAction.ALL)},
            )

        summary: Dict[str, Any] = {"action": action}
        if action in (SettlementAction.AUTO_VERIFY, SettlementAction.FULL):
            summary["auto_verified_count"] = await SettlementService.auto_verify_expired_pods(db, timeout_hours)
        if action in (SettlementAction.PROCESS_SETTLEMENTS, SettlementAction.FULL):
            summary["settled_count"] = await SettlementService.process_ready_settlements(db)
        return summary

    @staticmethod
    async def get_settlement_stats(db: AsyncSession) -> Dict[str, Any]:
        """Counts of delivered loads by POD and settlement stage."""
        delivered = Load.status == LoadStatus.DELIVERED

        async def count(*conditions) -> int:
            result = await db.execute(select(func.count(Load.id)).where(*conditions))
            return result.scalar() or 0

        pending_value = await db.execute(
            select(func.coalesce(func.sum(Load.escrow_amount), 0)).where(*_ready_filter())
        )
        paid_value = await db.execute(
            select(func.coalesce(func.sum(Load.escrow_amount), 0)).where(
                Load.settlement_status == SettlementStatus.PAID
            )
        )

        return {
            "awaiting_pod": await count(delivered, Load.pod_submitted == False),
            "awaiting_verification": await count(delivered, Load.pod_submitted == True, Load.pod_verified == False),
            "ready_for_settlement": await count(*_ready_filter()),
            "paid_settlements": await count(Load.settlement_status == SettlementStatus.PAID),
            "refunded_settlements": await count(Load.settlement_status == SettlementStatus.REFUNDED),
            "disputed_settlements": await count(Load.settlement_status == SettlementStatus.DISPUTED),
            "pending_value": str(to_money(pending_value.scalar())),
            "paid_value": str(to_money(paid_value.scalar())),
            "currency": settings.currency,
        }

    @staticmethod
    async def list_settlements(
        db: AsyncSession,
        status: Optional[str] = SettlementStatus.PENDING.value,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Loads for settlement review.

        status PENDING (default) lists loads ready to settle; "all" lists
        every delivered or settled load; any other SettlementStatus filters
        on it.
        """
        if status is None or status == SettlementStatus.PENDING.value:
            conditions = _ready_filter()
        elif status == "all":
            conditions = (
                (Load.status == LoadStatus.DELIVERED) | (Load.settlement_status != SettlementStatus.PENDING),
            )
        else:
            try:
                conditions = (Load.settlement_status == SettlementStatus(status),)
            except ValueError:
                raise InvalidStateError(f"Unknown settlement status: {status}")

        total = await db.execute(select(func.count(Load.id)).where(*conditions))
        total_count = total.scalar() or 0

        result = await db.execute(
            select(Load).where(*conditions).order_by(Load.id.desc()).offset(offset).limit(limit)
        )
        loads: List[Load] = list(result.scalars().all())
        return {
            "loads": loads,
            "total_count": total_count,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(loads) < total_count,
        }

    @staticmethod
    async def approve_settlement(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> SettlementOutcome:
        """
        Admin settles a single load now.

        Raises:
            ResourceNotFoundError: Load missing
            InvalidStateError: Not DELIVERED, already PAID, POD unverified,
                or escrow/fee movement failed
        """
        load = await lock_row(db, Load, load_id)
        if load is None:
            raise ResourceNotFoundError("Load", load_id)

        load_status, settlement_status, pod_verified = load.status, load.settlement_status, load.pod_verified
        if load_status != LoadStatus.DELIVERED:
            await db.rollback()
            raise InvalidStateError(
                f"Load must be DELIVERED to settle (status: {load_status.value})",
                details={"currentStatus": load_status.value},
            )
        if settlement_status == SettlementStatus.PAID:
            await db.rollback()
            raise InvalidStateError("Load is already settled", details={"settlementStatus": settlement_status.value})
        if not pod_verified:
            await db.rollback()
            raise InvalidStateError("POD not verified - cannot settle")

        try:
            return await _settle(db, load_id, user_id, manual=True)
        except SettlementError as exc:
            raise InvalidStateError(str(exc), details={"loadId": load_id})

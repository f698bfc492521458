"""
Proof of delivery.

The carrier that hauled a DELIVERED load submits its POD; the shipper that
owns the load (or an admin) verifies it. A verified POD makes the load
ready for settlement. Unanswered PODs are verified by the settlement sweep.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateError,
    ResourceNotFoundError,
)
from backend.app.core.guards import is_admin
from backend.app.db.locking import lock_row
from backend.app.domain.assignment.side_effects import Notice, send_notices
from backend.app.models.enums import UserRole
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus
from backend.app.models.notification import NotificationType
from backend.app.services.cache import CacheService
from backend.app.services.load_events import LoadEventType, record_load_event
from backend.app.services.truck_binding import get_latest_trip

logger = logging.getLogger(__name__)


@dataclass
class PodResult:
    load_id: int
    pod_url: Optional[str]
    pod_submitted: bool
    pod_submitted_at: Optional[datetime]
    pod_verified: bool
    pod_verified_at: Optional[datetime]
    idempotent: bool = False


def _result(load: Load, idempotent: bool = False) -> PodResult:
    return PodResult(
        load_id=load.id,
        pod_url=load.pod_url,
        pod_submitted=load.pod_submitted,
        pod_submitted_at=load.pod_submitted_at,
        pod_verified=load.pod_verified,
        pod_verified_at=load.pod_verified_at,
        idempotent=idempotent,
    )


class PodService:

    @staticmethod
    async def submit(db: AsyncSession, load_id: int, pod_url: str, actor: dict) -> PodResult:
        """
        Carrier submits proof of delivery.

        Raises:
            ResourceNotFoundError, InsufficientPermissionsError, InvalidStateError
        """
        try:
            load = await lock_row(db, Load, load_id)
            if load is None:
                raise ResourceNotFoundError("Load", load_id)

            # The binding may already be cleared; the trip remembers the carrier
            trip = await get_latest_trip(db, load.id)
            carrier_id = trip.carrier_id if trip is not None else None
            if not is_admin(actor) and not (
                actor.get("role") == UserRole.CARRIER.value
                and carrier_id is not None
                and actor.get("organization_id") == carrier_id
            ):
                raise InsufficientPermissionsError("Only the assigned carrier can submit POD")

            if load.status != LoadStatus.DELIVERED:
                raise InvalidStateError(
                    "POD can only be submitted for delivered loads",
                    details={"currentStatus": load.status.value},
                )
            if load.pod_submitted:
                raise InvalidStateError("POD has already been submitted")

            load.pod_submitted = True
            load.pod_submitted_at = datetime.utcnow()
            load.pod_url = pod_url
            await record_load_event(
                db,
                load.id,
                LoadEventType.POD_SUBMITTED,
                description="Proof of delivery submitted",
                user_id=actor.get("user_id"),
                metadata={"pod_url": pod_url},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        result = _result(load)
        logger.info("POD submitted for load %s", load_id)

        await CacheService.invalidate_load(load_id, load.shipper_id, carrier_id)
        await send_notices(
            db,
            [Notice(
                type=NotificationType.POD_SUBMITTED,
                title="Proof of delivery submitted",
                message=f"POD for load {load_id} ({load.pickup_city} → {load.delivery_city}) is ready for review",
                organization_id=load.shipper_id,
                metadata={"load_id": load_id},
            )],
            actor_id=actor.get("user_id"),
        )
        return result

    @staticmethod
    async def verify(db: AsyncSession, load_id: int, actor: dict) -> PodResult:
        """
        Shipper verifies the POD. Verifying twice is an idempotent success.

        Raises:
            ResourceNotFoundError, InsufficientPermissionsError, InvalidStateError
        """
        try:
            load = await lock_row(db, Load, load_id)
            if load is None:
                raise ResourceNotFoundError("Load", load_id)

            if not is_admin(actor) and not (
                actor.get("role") == UserRole.SHIPPER.value
                and actor.get("organization_id") == load.shipper_id
            ):
                raise InsufficientPermissionsError("Only the shipper who owns the load can verify POD")

            if not load.pod_submitted:
                raise InvalidStateError("POD has not been submitted")
            if load.pod_verified:
                result = _result(load, idempotent=True)
                await db.rollback()
                return result

            load.pod_verified = True
            load.pod_verified_at = datetime.utcnow()
            await record_load_event(
                db,
                load.id,
                LoadEventType.POD_VERIFIED,
                description="Proof of delivery verified",
                user_id=actor.get("user_id"),
                metadata={"pod_url": load.pod_url, "auto_verified": False},
            )
            trip = await get_latest_trip(db, load.id)
            carrier_id = trip.carrier_id if trip is not None else None
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        result = _result(load)
        logger.info("POD verified for load %s", load_id)

        await CacheService.invalidate_load(load_id, load.shipper_id, carrier_id)
        if carrier_id is not None:
            await send_notices(
                db,
                [Notice(
                    type=NotificationType.POD_VERIFIED,
                    title="Proof of delivery verified",
                    message=f"POD for load {load_id} was verified; settlement will follow",
                    organization_id=carrier_id,
                    metadata={"load_id": load_id},
                )],
                actor_id=actor.get("user_id"),
            )
        return result

"""
GPS tracking service.

Registers an assigned load with the tracking provider and stores the
public tracking link on the load and its trip. Provider calls go through
the tracking circuit breaker so a provider outage fails fast.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.reliability import tracking_circuit_breaker
from backend.app.models.load import Load
from backend.app.models.truck import Truck
from backend.app.services.truck_binding import get_current_trip

logger = logging.getLogger(__name__)


class TrackingUnavailableError(Exception):
    """The truck cannot be tracked (no verified GPS device)."""


class TrackingService:

    @staticmethod
    async def register_with_provider(load_id: int, truck_id: int, gps_device_id: str, slug: str) -> str:
        """
        Provider registration. Returns the public tracking URL.

        The provider integration is out of process; this builds the link
        the provider serves for the slug.
        """
        return f"{settings.tracking_base_url.rstrip('/')}/{slug}"

    @staticmethod
    async def enable_tracking(db: AsyncSession, load_id: int, truck_id: int) -> Optional[str]:
        """
        Enable GPS tracking for an assigned load.

        Flushes; the caller commits.

        Returns:
            Tracking URL, or None when the load has no current trip

        Raises:
            TrackingUnavailableError: Truck has no verified GPS device
            CircuitOpenError: Provider circuit is open
        """
        load = await db.get(Load, load_id)
        truck = await db.get(Truck, truck_id)
        if load is None or truck is None:
            return None

        if not truck.gps_device_id or truck.gps_verified_at is None:
            raise TrackingUnavailableError(f"Truck {truck.license_plate} has no verified GPS device")

        trip = await get_current_trip(db, load_id)
        if trip is None:
            return None

        url = await tracking_circuit_breaker.call(
            TrackingService.register_with_provider,
            load_id, truck_id, truck.gps_device_id, trip.tracking_url,
        )

        load.tracking_enabled = True
        load.tracking_url = url
        trip.tracking_enabled = True
        await db.flush()

        logger.info("Tracking enabled for load %s on truck %s", load_id, truck_id)
        return url

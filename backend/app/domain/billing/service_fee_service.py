"""
Service Fee Service (Domain Logic).

The platform charges the shipper a per-kilometre service fee priced by
corridor. The fee is reserved at assignment, deducted into platform
revenue at settlement, and refunded if the load is unassigned or cancelled.
Loads on lanes without a corridor have their fee waived.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.db.locking import lock_row
from backend.app.core.exceptions import InsufficientFundsError
from backend.app.domain.billing.ledger import (
    get_account,
    get_or_create_platform_account,
    post_journal,
    to_money,
)
from backend.app.domain.matching.distances import normalize_city
from backend.app.models.billing_enums import (
    AccountType,
    JournalEntryType,
    LedgerEntryType,
    ServiceFeeStatus,
)
from backend.app.models.corridor import Corridor
from backend.app.models.load import Load
from backend.app.services.load_events import LoadEventType, latest_event_of, record_load_event

logger = logging.getLogger(__name__)

_FEE_MARKERS = (
    LoadEventType.SERVICE_FEE_RESERVED,
    LoadEventType.SERVICE_FEE_REFUNDED,
    LoadEventType.SERVICE_FEE_DEDUCTED,
)


@dataclass(frozen=True)
class PartyFee:
    base_fee: Decimal
    discount: Decimal
    final_fee: Decimal


ZERO_FEE = PartyFee(Decimal("0.00"), Decimal("0.00"), Decimal("0.00"))


def _usable(value) -> bool:
    if value is None:
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number > 0


def calculate_party_fee(
    distance_km,
    price_per_km,
    promo_enabled: bool = False,
    promo_discount_pct=None,
) -> PartyFee:
    """
    Fee for one party on a corridor.

    base = distance x price per km, rounded to cents. With a promo the
    discount is base x pct / 100, also rounded. Non-finite or non-positive
    distance or price gives a zero fee; an unusable promo gives no discount.
    """
    if not _usable(distance_km) or not _usable(price_per_km):
        return ZERO_FEE

    base_fee = to_money(Decimal(str(distance_km)) * Decimal(str(price_per_km)))

    discount = Decimal("0.00")
    if promo_enabled and _usable(promo_discount_pct):
        pct = min(Decimal(str(promo_discount_pct)), Decimal("100"))
        discount = to_money(base_fee * pct / 100)

    return PartyFee(base_fee=base_fee, discount=discount, final_fee=base_fee - discount)


async def find_corridor(db: AsyncSession, pickup_city: str, delivery_city: str) -> Optional[Corridor]:
    """
    Active corridor for a lane.

    Region names compare after city normalization. A bidirectional corridor
    also serves the reverse lane; an exact-direction corridor wins.
    """
    origin, destination = normalize_city(pickup_city), normalize_city(delivery_city)
    if not origin or not destination:
        return None

    result = await db.execute(
        select(Corridor).where(Corridor.is_active == True).order_by(Corridor.id)
    )
    reverse_match = None
    for corridor in result.scalars().all():
        corridor_origin = normalize_city(corridor.origin_region)
        corridor_destination = normalize_city(corridor.destination_region)
        if corridor_origin == origin and corridor_destination == destination:
            return corridor
        if (
            reverse_match is None
            and corridor.bidirectional
            and corridor_origin == destination
            and corridor_destination == origin
        ):
            reverse_match = corridor
    return reverse_match


def shipper_fee_for(load: Load, corridor: Corridor) -> PartyFee:
    distance = load.estimated_trip_km or corridor.distance_km
    return calculate_party_fee(
        distance,
        corridor.shipper_price_per_km,
        corridor.promo_enabled,
        corridor.promo_discount_pct,
    )


def _failure(error: str, amount=None) -> Dict[str, Any]:
    return {"success": False, "amount": str(to_money(amount)), "error": error}


async def _fee_state(db: AsyncSession, load_id: int) -> Optional[str]:
    latest = await latest_event_of(db, load_id, _FEE_MARKERS)
    return latest.event_type if latest else None


class ServiceFeeService:

    @staticmethod
    async def reserve(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Reserve the shipper's service fee.

        Returns:
            {"success", "amount", "status", "transaction_id"}; failures carry "error".
        """
        load = await lock_row(db, Load, load_id)
        if load is None:
            return _failure("Load not found")

        state = await _fee_state(db, load.id)
        if state == LoadEventType.SERVICE_FEE_RESERVED:
            return {
                "success": True,
                "idempotent": True,
                "amount": str(to_money(load.service_fee_amount)),
                "status": load.service_fee_status.value,
            }
        if state == LoadEventType.SERVICE_FEE_DEDUCTED:
            return _failure("Service fee already deducted")

        # 1. Corridor
        corridor = await find_corridor(db, load.pickup_city, load.delivery_city)
        if corridor is None:
            load.corridor_id = None
            load.service_fee_amount = Decimal("0.00")
            load.service_fee_status = ServiceFeeStatus.WAIVED
            await db.flush()
            return {"success": True, "amount": "0.00", "status": ServiceFeeStatus.WAIVED.value}

        fee = shipper_fee_for(load, corridor)
        load.corridor_id = corridor.id
        if fee.final_fee <= 0:
            load.service_fee_amount = Decimal("0.00")
            load.service_fee_status = ServiceFeeStatus.WAIVED
            await db.flush()
            return {"success": True, "amount": "0.00", "status": ServiceFeeStatus.WAIVED.value}

        # 2. Accounts
        wallet = await get_account(db, AccountType.SHIPPER_WALLET, load.shipper_id)
        if wallet is None:
            return _failure("Shipper wallet not found", fee.final_fee)
        reserve = await get_or_create_platform_account(db, AccountType.SERVICE_FEE_RESERVE)

        # 3. Journal
        try:
            journal = await post_journal(
                db,
                JournalEntryType.SERVICE_FEE_RESERVE,
                [
                    (wallet, LedgerEntryType.DEBIT, fee.final_fee),
                    (reserve, LedgerEntryType.CREDIT, fee.final_fee),
                ],
                load_id=load.id,
                description=f"Service fee reserve for load {load.id} ({corridor.name})",
            )
        except InsufficientFundsError as exc:
            return _failure(exc.message, fee.final_fee)

        load.service_fee_amount = fee.final_fee
        load.service_fee_status = ServiceFeeStatus.RESERVED

        await record_load_event(
            db,
            load.id,
            LoadEventType.SERVICE_FEE_RESERVED,
            description=f"Service fee reserved: {fee.final_fee}",
            user_id=user_id,
            metadata={"amount": str(fee.final_fee), "transaction_id": journal.id, "corridor_id": corridor.id},
        )

        logger.info("Service fee %s reserved for load %s on corridor %s", fee.final_fee, load.id, corridor.id)
        return {
            "success": True,
            "amount": str(fee.final_fee),
            "status": ServiceFeeStatus.RESERVED.value,
            "transaction_id": journal.id,
        }

    @staticmethod
    async def refund(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Return a reserved fee to the shipper. Nothing reserved is a no-op."""
        load = await lock_row(db, Load, load_id)
        if load is None:
            return _failure("Load not found")

        state = await _fee_state(db, load.id)
        if state == LoadEventType.SERVICE_FEE_DEDUCTED:
            return _failure("Service fee already deducted")
        if state != LoadEventType.SERVICE_FEE_RESERVED:
            return {"success": True, "skipped": True, "amount": "0.00"}

        amount = to_money(load.service_fee_amount)
        wallet = await get_account(db, AccountType.SHIPPER_WALLET, load.shipper_id)
        if wallet is None:
            return _failure("Shipper wallet not found", amount)
        reserve = await get_or_create_platform_account(db, AccountType.SERVICE_FEE_RESERVE)

        try:
            journal = await post_journal(
                db,
                JournalEntryType.SERVICE_FEE_REFUND,
                [
                    (reserve, LedgerEntryType.DEBIT, amount),
                    (wallet, LedgerEntryType.CREDIT, amount),
                ],
                load_id=load.id,
                description=f"Service fee refund for load {load.id}",
            )
        except InsufficientFundsError as exc:
            return _failure(exc.message, amount)

        load.service_fee_status = ServiceFeeStatus.REFUNDED

        await record_load_event(
            db,
            load.id,
            LoadEventType.SERVICE_FEE_REFUNDED,
            description=f"Service fee refunded: {amount}",
            user_id=user_id,
            metadata={"amount": str(amount), "transaction_id": journal.id},
        )
        return {
            "success": True,
            "amount": str(amount),
            "status": ServiceFeeStatus.REFUNDED.value,
            "transaction_id": journal.id,
        }

    @staticmethod
    async def deduct(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Move a reserved fee into platform revenue. Waived or unreserved fees are skipped."""
        load = await lock_row(db, Load, load_id)
        if load is None:
            return _failure("Load not found")

        state = await _fee_state(db, load.id)
        if state == LoadEventType.SERVICE_FEE_DEDUCTED:
            return {"success": True, "idempotent": True, "amount": str(to_money(load.service_fee_amount))}
        if state != LoadEventType.SERVICE_FEE_RESERVED:
            return {"success": True, "skipped": True, "amount": "0.00"}

        amount = to_money(load.service_fee_amount)
        reserve = await get_or_create_platform_account(db, AccountType.SERVICE_FEE_RESERVE)
        revenue = await get_or_create_platform_account(db, AccountType.PLATFORM_REVENUE)

        try:
            journal = await post_journal(
                db,
                JournalEntryType.SERVICE_FEE_DEDUCT,
                [
                    (reserve, LedgerEntryType.DEBIT, amount),
                    (revenue, LedgerEntryType.CREDIT, amount),
                ],
                load_id=load.id,
                description=f"Service fee deducted for load {load.id}",
            )
        except InsufficientFundsError as exc:
            return _failure(exc.message, amount)

        load.service_fee_status = ServiceFeeStatus.DEDUCTED

        await record_load_event(
            db,
            load.id,
            LoadEventType.SERVICE_FEE_DEDUCTED,
            description=f"Service fee deducted: {amount}",
            user_id=user_id,
            metadata={"amount": str(amount), "transaction_id": journal.id},
        )
        return {
            "success": True,
            "amount": str(amount),
            "status": ServiceFeeStatus.DEDUCTED.value,
            "transaction_id": journal.id,
        }

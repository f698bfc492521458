"""
Escrow Service (Domain Logic).

Holds the shipper's money while a load is on the road:
- hold: fare plus shipper commission moves from the shipper wallet to escrow
- refund: the hold goes back to the shipper
- release: the carrier gets fare minus carrier commission, the platform both commissions

Idempotent per load through LoadEvent markers. Operations flush and return
a result dict; the caller commits on success and rolls back otherwise.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.locking import lock_row
from backend.app.core.exceptions import InsufficientFundsError
from backend.app.domain.billing.commission_resolver import CommissionResolver
from backend.app.domain.billing.ledger import (
    get_account,
    get_or_create_platform_account,
    post_journal,
    to_money,
)
from backend.app.models.billing_enums import (
    AccountType,
    JournalEntryType,
    LedgerEntryType,
    SettlementStatus,
)
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus
from backend.app.models.truck import Truck
from backend.app.services.load_events import LoadEventType, latest_event_of, record_load_event
from backend.app.services.truck_binding import get_latest_trip

logger = logging.getLogger(__name__)

_ESCROW_MARKERS = (
    LoadEventType.ESCROW_FUNDED,
    LoadEventType.ESCROW_REFUNDED,
    LoadEventType.ESCROW_RELEASED,
)


def _failure(error: str, amount=None) -> Dict[str, Any]:
    return {"success": False, "amount": str(to_money(amount)), "error": error}


async def _escrow_state(db: AsyncSession, load_id: int) -> Optional[str]:
    """Latest escrow marker for the load, None if escrow was never touched."""
    latest = await latest_event_of(db, load_id, _ESCROW_MARKERS)
    return latest.event_type if latest else None


async def carrier_org_for_load(db: AsyncSession, load: Load) -> Optional[int]:
    """Carrier organization that hauled the load: its trip, else the bound truck."""
    trip = await get_latest_trip(db, load.id)
    if trip is not None:
        return trip.carrier_id
    if load.assigned_truck_id is not None:
        truck = await db.get(Truck, load.assigned_truck_id)
        return truck.carrier_id if truck else None
    return None


class EscrowService:

    @staticmethod
    async def hold(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Hold fare plus shipper commission in escrow.

        Returns:
            {"success", "amount", "transaction_id"} or {"success": False, "error"}.
            A hold that already happened returns success with "idempotent": True.
        """
        # 1. Lock the load
        load = await lock_row(db, Load, load_id)
        if load is None:
            return _failure("Load not found")

        # 2. Idempotency
        state = await _escrow_state(db, load.id)
        if state == LoadEventType.ESCROW_FUNDED:
            return {"success": True, "idempotent": True, "amount": str(to_money(load.escrow_amount))}
        if state == LoadEventType.ESCROW_RELEASED:
            return _failure("Load already settled")

        if load.fare is None:
            return _failure("Load has no agreed fare")

        # 3. Amounts
        breakdown = await CommissionResolver.breakdown(db, load.fare)
        amount = breakdown.escrow_amount

        # 4. Accounts
        wallet = await get_account(db, AccountType.SHIPPER_WALLET, load.shipper_id)
        if wallet is None:
            return _failure("Shipper wallet not found", amount)
        escrow = await get_or_create_platform_account(db, AccountType.ESCROW)

        # 5. Journal
        try:
            journal = await post_journal(
                db,
                JournalEntryType.ESCROW_FUND,
                [
                    (wallet, LedgerEntryType.DEBIT, amount),
                    (escrow, LedgerEntryType.CREDIT, amount),
                ],
                load_id=load.id,
                description=f"Escrow hold for load {load.id}",
            )
        except InsufficientFundsError as exc:
            return _failure(exc.message, amount)

        # 6. Load and marker
        load.escrow_funded = True
        load.escrow_amount = amount
        load.shipper_commission = breakdown.shipper_commission
        load.carrier_commission = breakdown.carrier_commission

        await record_load_event(
            db,
            load.id,
            LoadEventType.ESCROW_FUNDED,
            description=f"Escrow funded: {amount}",
            user_id=user_id,
            metadata={
                "amount": str(amount),
                "transaction_id": journal.id,
                "shipper_commission": str(breakdown.shipper_commission),
                "carrier_commission": str(breakdown.carrier_commission),
            },
        )

        logger.info("Escrow hold of %s for load %s (journal %s)", amount, load.id, journal.id)
        return {"success": True, "amount": str(amount), "transaction_id": journal.id}

    @staticmethod
    async def refund(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Return an escrow hold to the shipper wallet.

        Nothing held is a successful no-op ("skipped": True).
        """
        load = await lock_row(db, Load, load_id)
        if load is None:
            return _failure("Load not found")

        state = await _escrow_state(db, load.id)
        if state == LoadEventType.ESCROW_RELEASED:
            return _failure("Load already settled")
        if state != LoadEventType.ESCROW_FUNDED:
            return {"success": True, "skipped": True, "amount": "0.00"}

        amount = to_money(load.escrow_amount)
        wallet = await get_account(db, AccountType.SHIPPER_WALLET, load.shipper_id)
        if wallet is None:
            return _failure("Shipper wallet not found", amount)
        escrow = await get_or_create_platform_account(db, AccountType.ESCROW)

        try:
            journal = await post_journal(
                db,
                JournalEntryType.ESCROW_REFUND,
                [
                    (escrow, LedgerEntryType.DEBIT, amount),
                    (wallet, LedgerEntryType.CREDIT, amount),
                ],
                load_id=load.id,
                description=f"Escrow refund for load {load.id}",
            )
        except InsufficientFundsError as exc:
            return _failure(exc.message, amount)

        load.escrow_funded = False
        if load.status in (LoadStatus.CANCELLED, LoadStatus.EXPIRED):
            load.settlement_status = SettlementStatus.REFUNDED

        await record_load_event(
            db,
            load.id,
            LoadEventType.ESCROW_REFUNDED,
            description=f"Escrow refunded: {amount}",
            user_id=user_id,
            metadata={"amount": str(amount), "transaction_id": journal.id},
        )

        logger.info("Escrow refund of %s for load %s (journal %s)", amount, load.id, journal.id)
        return {"success": True, "amount": str(amount), "transaction_id": journal.id}

    @staticmethod
    async def release(db: AsyncSession, load_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Pay the carrier and the platform out of escrow.

        Requires a funded, POD-verified, unsettled load. Marks the load PAID.
        """
        load = await lock_row(db, Load, load_id)
        if load is None:
            return _failure("Load not found")

        state = await _escrow_state(db, load.id)
        if state == LoadEventType.ESCROW_RELEASED or load.settlement_status == SettlementStatus.PAID:
            return _failure("Load already settled")
        if state != LoadEventType.ESCROW_FUNDED:
            return _failure("Load not funded in escrow")
        if not load.pod_verified:
            return _failure("POD not verified - cannot release funds")

        carrier_org_id = await carrier_org_for_load(db, load)
        if carrier_org_id is None:
            return _failure("No carrier assigned")

        escrow_amount = to_money(load.escrow_amount)
        shipper_commission = to_money(load.shipper_commission)
        carrier_commission = to_money(load.carrier_commission)
        platform_revenue = shipper_commission + carrier_commission
        carrier_payout = escrow_amount - platform_revenue

        carrier_wallet = await get_account(db, AccountType.CARRIER_WALLET, carrier_org_id)
        if carrier_wallet is None:
            return _failure("Carrier wallet not found", escrow_amount)
        escrow = await get_or_create_platform_account(db, AccountType.ESCROW)
        revenue = await get_or_create_platform_account(db, AccountType.PLATFORM_REVENUE)

        try:
            journal = await post_journal(
                db,
                JournalEntryType.ESCROW_RELEASE,
                [
                    (escrow, LedgerEntryType.DEBIT, escrow_amount),
                    (carrier_wallet, LedgerEntryType.CREDIT, carrier_payout),
                    (revenue, LedgerEntryType.CREDIT, platform_revenue),
                ],
                load_id=load.id,
                description=f"Escrow release for load {load.id}",
            )
        except InsufficientFundsError as exc:
            return _failure(exc.message, escrow_amount)

        load.escrow_funded = False
        load.settlement_status = SettlementStatus.PAID
        load.settled_at = datetime.utcnow()

        await record_load_event(
            db,
            load.id,
            LoadEventType.ESCROW_RELEASED,
            description=f"Escrow released: {carrier_payout} to carrier",
            user_id=user_id,
            metadata={
                "amount": str(escrow_amount),
                "transaction_id": journal.id,
                "carrier_payout": str(carrier_payout),
                "platform_revenue": str(platform_revenue),
            },
        )

        logger.info(
            "Escrow release for load %s: carrier %s, platform %s (journal %s)",
            load.id, carrier_payout, platform_revenue, journal.id,
        )
        return {
            "success": True,
            "amount": str(escrow_amount),
            "carrier_payout": str(carrier_payout),
            "platform_revenue": str(platform_revenue),
            "transaction_id": journal.id,
        }

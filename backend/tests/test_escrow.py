"""
Escrow and ledger tests.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from backend.app.core.exceptions import InsufficientFundsError
from backend.app.domain.billing.commission_resolver import CommissionResolver
from backend.app.domain.billing.escrow_service import EscrowService
from backend.app.domain.billing.ledger import get_or_create_platform_account, post_journal, to_money
from backend.app.models.billing_enums import AccountType, JournalEntryType, LedgerEntryType, SettlementStatus
from backend.app.models.commission_rate import CommissionRate
from backend.app.models.financial_account import FinancialAccount
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus


def test_to_money_rounds_half_up():
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(None) == Decimal("0.00")


async def test_journal_must_balance(db_session, wallets):
    wallet = await db_session.get(FinancialAccount, wallets["shipper"])
    escrow = await get_or_create_platform_account(db_session, AccountType.ESCROW)
    with pytest.raises(ValueError):
        await post_journal(
            db_session,
            JournalEntryType.ESCROW_FUND,
            [(wallet, LedgerEntryType.DEBIT, Decimal("10")), (escrow, LedgerEntryType.CREDIT, Decimal("9"))],
        )


async def test_journal_refuses_overdraft(db_session, wallets):
    wallet = await db_session.get(FinancialAccount, wallets["carrier"])
    escrow = await get_or_create_platform_account(db_session, AccountType.ESCROW)
    with pytest.raises(InsufficientFundsError):
        await post_journal(
            db_session,
            JournalEntryType.ESCROW_FUND,
            [(wallet, LedgerEntryType.DEBIT, Decimal("1")), (escrow, LedgerEntryType.CREDIT, Decimal("1"))],
        )
    assert wallet.balance == Decimal("0.00")


async def test_wallets_are_not_platform_accounts(db_session):
    with pytest.raises(ValueError):
        await get_or_create_platform_account(db_session, AccountType.SHIPPER_WALLET)


async def test_default_commission(db_session):
    breakdown = await CommissionResolver.breakdown(db_session, Decimal("10000"))
    assert breakdown.shipper_commission == Decimal("500.00")
    assert breakdown.carrier_commission == Decimal("500.00")
    assert breakdown.escrow_amount == Decimal("10500.00")
    assert breakdown.carrier_payout == Decimal("9500.00")
    assert breakdown.rate_id is None


async def test_active_commission_rate_wins(db_session):
    now = datetime.utcnow()
    db_session.add_all([
        CommissionRate(shipper_rate=Decimal("3"), carrier_rate=Decimal("2"), effective_from=now - timedelta(days=30)),
        CommissionRate(shipper_rate=Decimal("9"), carrier_rate=Decimal("9"), effective_from=now + timedelta(days=1)),
        CommissionRate(
            shipper_rate=Decimal("7"), carrier_rate=Decimal("7"),
            effective_from=now - timedelta(days=10), is_active=False,
        ),
    ])
    await db_session.commit()

    breakdown = await CommissionResolver.breakdown(db_session, Decimal("10000"))
    assert breakdown.shipper_commission == Decimal("300.00")
    assert breakdown.carrier_commission == Decimal("200.00")
    assert breakdown.platform_revenue == Decimal("500.00")


async def test_hold_is_idempotent(db_session, load, wallets):
    first = await EscrowService.hold(db_session, load.id)
    await db_session.commit()
    second = await EscrowService.hold(db_session, load.id)

    assert first["success"] and first["amount"] == "10500.00"
    assert second == {"success": True, "idempotent": True, "amount": "10500.00"}

    wallet = await db_session.get(FinancialAccount, wallets["shipper"])
    assert wallet.balance == Decimal("89500.00")


async def test_hold_requires_fare(db_session, load_factory, shipper_org, wallets):
    load = await load_factory(shipper_org.id, rate=None)
    result = await EscrowService.hold(db_session, load.id)
    assert result["success"] is False
    assert result["error"] == "Load has no agreed fare"


async def test_refund_without_hold_is_skipped(db_session, load, wallets):
    result = await EscrowService.refund(db_session, load.id)
    assert result == {"success": True, "skipped": True, "amount": "0.00"}


async def test_refund_of_cancelled_load_marks_refunded(db_session, load, wallets):
    await EscrowService.hold(db_session, load.id)
    row = await db_session.get(Load, load.id)
    row.status = LoadStatus.CANCELLED
    await db_session.commit()

    result = await EscrowService.refund(db_session, load.id)
    await db_session.commit()

    assert result["success"] and result["amount"] == "10500.00"
    assert row.settlement_status == SettlementStatus.REFUNDED
    assert row.escrow_funded is False
    wallet = await db_session.get(FinancialAccount, wallets["shipper"])
    assert wallet.balance == Decimal("100000.00")


async def test_release_pays_carrier_and_platform(db_session, load, truck, wallets):
    await EscrowService.hold(db_session, load.id)
    row = await db_session.get(Load, load.id)
    row.assigned_truck_id = truck.id
    row.status = LoadStatus.DELIVERED

    blocked = await EscrowService.release(db_session, load.id)
    assert blocked["error"] == "POD not verified - cannot release funds"

    row.pod_verified = True
    result = await EscrowService.release(db_session, load.id)
    await db_session.commit()

    assert result["carrier_payout"] == "9500.00"
    assert result["platform_revenue"] == "1000.00"
    assert row.settlement_status == SettlementStatus.PAID
    assert row.settled_at is not None

    carrier_wallet = await db_session.get(FinancialAccount, wallets["carrier"])
    assert carrier_wallet.balance == Decimal("9500.00")

    again = await EscrowService.release(db_session, load.id)
    assert again["error"] == "Load already settled"
    refund = await EscrowService.refund(db_session, load.id)
    assert refund["error"] == "Load already settled"


async def test_every_journal_is_balanced(db_session, load, truck, wallets):
    await EscrowService.hold(db_session, load.id)
    row = await db_session.get(Load, load.id)
    row.assigned_truck_id = truck.id
    row.pod_verified = True
    await EscrowService.release(db_session, load.id)
    await db_session.commit()

    rows = (await db_session.execute(
        select(LedgerEntry.journal_entry_id, LedgerEntry.entry_type, func.sum(LedgerEntry.amount))
        .group_by(LedgerEntry.journal_entry_id, LedgerEntry.entry_type)
    )).all()

    totals = {}
    for journal_id, side, amount in rows:
        totals.setdefault(journal_id, {})[side] = to_money(amount)
    assert len(totals) == 2
    for sides in totals.values():
        assert sides[LedgerEntryType.DEBIT] == sides[LedgerEntryType.CREDIT]

"""
Double-entry ledger.

Every money movement is one JournalEntry with two or more LedgerEntry
lines. Debits take money out of an account, credits put it in, and the
debit total always equals the credit total. Account balances are only
changed here.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.core.config import settings
from backend.app.core.exceptions import InsufficientFundsError
from backend.app.models.billing_enums import AccountType, JournalEntryType, LedgerEntryType
from backend.app.models.financial_account import FinancialAccount
from backend.app.models.journal_entry import JournalEntry
from backend.app.models.ledger_entry import LedgerEntry

CENT = Decimal("0.01")

# Accounts owned by the platform rather than an organization
PLATFORM_ACCOUNT_TYPES = frozenset({
    AccountType.ESCROW,
    AccountType.SERVICE_FEE_RESERVE,
    AccountType.PLATFORM_REVENUE,
})


def to_money(value) -> Decimal:
    """Decimal rounded half-up to cents. None counts as zero."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


async def get_account(
    db: AsyncSession,
    account_type: AccountType,
    organization_id: Optional[int] = None,
    for_update: bool = True,
) -> Optional[FinancialAccount]:
    """Active account of the given type, locked for the rest of the transaction."""
    query = select(FinancialAccount).where(
        FinancialAccount.account_type == account_type,
        FinancialAccount.is_active == True,
    )
    if organization_id is None:
        query = query.where(FinancialAccount.organization_id.is_(None))
    else:
        query = query.where(FinancialAccount.organization_id == organization_id)

    query = query.order_by(FinancialAccount.id).limit(1)
    if for_update:
        query = query.with_for_update()

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_or_create_platform_account(db: AsyncSession, account_type: AccountType) -> FinancialAccount:
    """Platform accounts are created on first use."""
    if account_type not in PLATFORM_ACCOUNT_TYPES:
        raise ValueError(f"{account_type.value} is not a platform account")

    account = await get_account(db, account_type)
    if account is None:
        account = FinancialAccount(
            account_type=account_type,
            organization_id=None,
            balance=Decimal("0.00"),
            currency=settings.currency,
            is_active=True,
        )
        db.add(account)
        await db.flush()
    return account


async def post_journal(
    db: AsyncSession,
    entry_type: JournalEntryType,
    lines: Sequence[Tuple[FinancialAccount, LedgerEntryType, Decimal]],
    load_id: Optional[int] = None,
    description: Optional[str] = None,
) -> JournalEntry:
    """
    Post a balanced journal entry and apply it to account balances.

    Zero-amount lines are skipped. Flushes; the caller commits.

    Args:
        db: Database session
        entry_type: Kind of movement
        lines: (account, DEBIT or CREDIT, amount) triples
        load_id: Load the movement belongs to
        description: Human-readable summary

    Returns:
        The journal entry

    Raises:
        ValueError: Debits and credits differ, or a line is negative
        InsufficientFundsError: A debit would take an account below zero
    """
    lines = [(account, side, to_money(amount)) for account, side, amount in lines]
    if any(amount < 0 for _, _, amount in lines):
        raise ValueError("Ledger amounts must not be negative")
    lines = [line for line in lines if line[2] > 0]

    debits = sum((amount for _, side, amount in lines if side == LedgerEntryType.DEBIT), Decimal("0.00"))
    credits = sum((amount for _, side, amount in lines if side == LedgerEntryType.CREDIT), Decimal("0.00"))
    if debits != credits:
        raise ValueError(f"Unbalanced journal entry: debits {debits} != credits {credits}")

    # 1. Check every debit is covered before touching any balance
    for account, side, amount in lines:
        if side == LedgerEntryType.DEBIT and to_money(account.balance) < amount:
            raise InsufficientFundsError(
                required=amount,
                available=to_money(account.balance),
                currency=account.currency or settings.currency,
            )

    # 2. Journal header
    journal = JournalEntry(
        entry_type=entry_type,
        load_id=load_id,
        amount=debits,
        description=description,
    )
    db.add(journal)
    await db.flush()

    # 3. Lines and balances
    entries: List[LedgerEntry] = []
    for account, side, amount in lines:
        if side == LedgerEntryType.DEBIT:
            account.balance = to_money(account.balance) - amount
        else:
            account.balance = to_money(account.balance) + amount
        entries.append(LedgerEntry(
            journal_entry_id=journal.id,
            account_id=account.id,
            entry_type=side,
            amount=amount,
            balance_after=account.balance,
        ))

    db.add_all(entries)
    await db.flush()
    return journal

"""
Commission Rate Resolver.

Determines the platform commission percentages for a fare:
1. Latest active CommissionRate whose window covers now
2. Configured defaults
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.core.config import settings
from backend.app.domain.billing.ledger import to_money
from backend.app.models.commission_rate import CommissionRate


@dataclass(frozen=True)
class CommissionBreakdown:
    fare: Decimal
    shipper_commission: Decimal
    carrier_commission: Decimal
    rate_id: Optional[int] = None

    @property
    def platform_revenue(self) -> Decimal:
        return self.shipper_commission + self.carrier_commission

    @property
    def carrier_payout(self) -> Decimal:
        return self.fare - self.carrier_commission

    @property
    def escrow_amount(self) -> Decimal:
        # The shipper pays its commission up front with the fare
        return self.fare + self.shipper_commission


class CommissionResolver:

    @staticmethod
    async def resolve_active_rate(db: AsyncSession) -> Optional[CommissionRate]:
        """Currently effective commission rate, or None when only defaults apply."""
        now = datetime.utcnow()

        query = select(CommissionRate).where(
            CommissionRate.is_active == True,
            CommissionRate.effective_from <= now,
            (CommissionRate.effective_to.is_(None) | (CommissionRate.effective_to >= now))
        ).order_by(CommissionRate.effective_from.desc(), CommissionRate.id.desc()).limit(1)

        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def breakdown(db: AsyncSession, fare) -> CommissionBreakdown:
        """
        Split a fare into commissions.

        Rates are percentages: 5 means 5% of the fare.
        """
        rate = await CommissionResolver.resolve_active_rate(db)
        if rate is not None:
            shipper_pct = Decimal(str(rate.shipper_rate))
            carrier_pct = Decimal(str(rate.carrier_rate))
        else:
            shipper_pct = Decimal(str(settings.default_shipper_commission_pct))
            carrier_pct = Decimal(str(settings.default_carrier_commission_pct))

        fare = to_money(fare)
        return CommissionBreakdown(
            fare=fare,
            shipper_commission=to_money(fare * shipper_pct / 100),
            carrier_commission=to_money(fare * carrier_pct / 100),
            rate_id=rate.id if rate is not None else None,
        )

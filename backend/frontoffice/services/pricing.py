from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from frontoffice.config import settings
from frontoffice.models import AppointmentType, GeneralFees, ServiceCategory, ServicePrice


async def get_general_fees(db: AsyncSession) -> GeneralFees:
    """
    The fee schedule row, or an unsaved one holding the configured defaults
    when no administrator has set fees yet.
    """
    result = await db.execute(select(GeneralFees).order_by(GeneralFees.id))
    fees = result.scalars().first()
    if fees is None:
        fees = GeneralFees(
            consultation_fee=settings.CONSULTATION_FEE,
            checkup_fee=settings.CHECKUP_FEE
        )
    return fees


def appointment_fee(fees: GeneralFees, appointment_type: AppointmentType) -> Decimal:
    if appointment_type == AppointmentType.CHECK_UP:
        return fees.checkup_fee
    return fees.consultation_fee


async def find_catalog_price(
    db: AsyncSession,
    category: ServiceCategory,
    name: str
) -> Optional[ServicePrice]:
    """Active catalog entry matching name, ignoring case and surrounding spaces"""
    result = await db.execute(
        select(ServicePrice).where(
            ServicePrice.category == category,
            func.lower(ServicePrice.name) == name.strip().lower(),
            ServicePrice.is_active.is_(True)
        )
    )
    return result.scalars().first()


def nights_stayed(admitted_at: datetime, until: datetime) -> int:
    """Billable nights between admission and discharge; a same day stay is one night"""
    return max((until.date() - admitted_at.date()).days, 1)

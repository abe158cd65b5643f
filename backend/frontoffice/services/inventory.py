from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from frontoffice.models import Medication, StockStatus


def stock_status(stock: int, reorder_level: int) -> StockStatus:
    if stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if stock < reorder_level:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


async def decrement_stock(db: AsyncSession, medication_id: int, quantity: int) -> bool:
    """
    Take quantity units off a medication in a single conditional UPDATE.

    Returns False (and changes nothing) when the row does not hold enough stock,
    so concurrent dispenses cannot push stock below zero.
    """
    result = await db.execute(
        update(Medication)
        .where(Medication.id == medication_id, Medication.stock >= quantity)
        .values(stock=Medication.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def increment_stock(db: AsyncSession, medication_id: int, quantity: int) -> None:
    await db.execute(
        update(Medication)
        .where(Medication.id == medication_id)
        .values(stock=Medication.stock + quantity)
        .execution_options(synchronize_session=False)
    )

from datetime import date
from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from frontoffice.models import Invoice, LabOrder


class SequenceService:
    """
    Human readable record numbers backed by Redis counters.

    INCR is atomic, so two requests never receive the same number.
    Invoice numbers restart every year, lab order numbers every month.

    A counter missing from Redis (flushed, or a new Redis instance) is seeded
    from the highest number already stored in the database before it is
    incremented, so numbering carries on instead of restarting.
    """

    def __init__(self, redis: Redis, db: AsyncSession):
        self.redis = redis
        self.db = db

    def _get_counter_key(self, sequence: str, period: str) -> str:
        return f"seq:{sequence}:{period}"

    async def _highest_issued(self, column, prefix: str) -> int:
        # numbers are zero padded, so the string max is the numeric max
        result = await self.db.execute(select(func.max(column)).where(column.like(f"{prefix}%")))
        highest = result.scalar()
        return int(highest[len(prefix):]) if highest else 0

    async def _next_value(self, sequence: str, period: str, column, prefix: str) -> int:
        key = self._get_counter_key(sequence, period)
        if not await self.redis.exists(key):
            # NX: a concurrent request that seeded first wins, both then INCR past it
            await self.redis.set(key, await self._highest_issued(column, prefix), nx=True)
        return await self.redis.incr(key)

    async def next_invoice_number(self, on: date) -> str:
        prefix = f"INV{on.year}-"
        value = await self._next_value("invoice", f"{on.year}", Invoice.invoice_number, prefix)
        return f"{prefix}{value:05d}"

    async def next_lab_order_number(self, on: date) -> str:
        prefix = f"LAB{on.year}-{on.month:02d}-"
        value = await self._next_value("lab_order", f"{on.year}-{on.month:02d}", LabOrder.order_number, prefix)
        return f"{prefix}{value:05d}"

from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional
from frontoffice.config import settings

_mongo_client: Optional[AsyncIOMotorClient] = None
_mongo_db = None


async def get_mongo_client() -> AsyncIOMotorClient:
    global _mongo_client

    if _mongo_client is None:
        _mongo_client = AsyncIOMotorClient(settings.MONGO_URL)

    return _mongo_client


async def get_mongo_db():
    global _mongo_db

    if _mongo_db is None:
        client = await get_mongo_client()
        _mongo_db = client[settings.MONGO_DB_NAME]

    return _mongo_db


async def create_mongo_indexes(db):
    await db.activity_log.create_index([("timestamp", -1)])
    await db.activity_log.create_index([("actor.id", 1), ("timestamp", -1)])
    await db.activity_log.create_index([("target.type", 1), ("timestamp", -1)])

    await db.stock_movements.create_index([("medication.id", 1), ("timestamp", -1)])
    await db.stock_movements.create_index([("movement_type", 1), ("timestamp", -1)])

    await db.daily_summaries.create_index([("date", -1)], unique=True)


async def close_mongo():
    global _mongo_client, _mongo_db
    if _mongo_client:
        _mongo_client.close()
    _mongo_client = None
    _mongo_db = None

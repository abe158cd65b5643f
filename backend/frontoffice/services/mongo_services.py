from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime, date
from typing import List, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class ActivityLogService:

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.activity_log

    async def log_action(
        self,
        actor_id: Optional[int],
        actor_name: str,
        actor_role: str,
        action: str,
        description: str,
        target_type: Optional[str] = None,
        target_id: Optional[int] = None,
        details: Optional[Dict] = None,
        ip_address: Optional[str] = None
    ) -> str:
        entry = {
            "actor": {
                "id": actor_id,
                "name": actor_name,
                "role": actor_role
            },
            "action": action,
            "description": description,
            "target": {
                "type": target_type,
                "id": target_id
            },
            "details": details or {},
            "ip_address": ip_address,
            "timestamp": datetime.utcnow()
        }

        result = await self.collection.insert_one(entry)
        return str(result.inserted_id)

    async def get_logs(
        self,
        actor_id: Optional[int] = None,
        target_type: Optional[str] = None,
        action: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        skip: int = 0
    ) -> List[Dict]:
        query = {}

        if actor_id:
            query["actor.id"] = actor_id
        if target_type:
            query["target.type"] = target_type
        if action:
            query["action"] = action
        if start_date or end_date:
            query["timestamp"] = {}
            if start_date:
                query["timestamp"]["$gte"] = start_date
            if end_date:
                query["timestamp"]["$lte"] = end_date

        cursor = self.collection.find(query).sort(
            "timestamp", -1
        ).skip(skip).limit(limit)

        logs = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            logs.append(doc)

        return logs


async def record_activity(
    mongo_db,
    user,
    action: str,
    description: str,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    details: Optional[Dict] = None,
    ip_address: Optional[str] = None
) -> None:
    """Best-effort activity log write; the relational change has already been committed"""
    try:
        await ActivityLogService(mongo_db).log_action(
            actor_id=user.id,
            actor_name=user.full_name,
            actor_role=user.role.value,
            action=action,
            description=description,
            target_type=target_type,
            target_id=target_id,
            details=details,
            ip_address=ip_address
        )
    except Exception as e:
        logger.warning(f"Activity log write failed ({action} {target_type}:{target_id}): {e}")


class StockMovementService:

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.stock_movements

    async def log_stock_in(
        self,
        medication_id: int,
        medication_name: str,
        quantity: int,
        stock_after: int,
        reason: str,
        supplier: Optional[str],
        performed_by_id: int,
        performed_by_name: str
    ) -> str:
        movement = {
            "movement_type": "IN",
            "medication": {
                "id": medication_id,
                "name": medication_name
            },
            "quantity": quantity,
            "stock_after": stock_after,
            "reason": reason,
            "supplier": supplier,
            "performed_by": {
                "id": performed_by_id,
                "name": performed_by_name
            },
            "timestamp": datetime.utcnow()
        }

        result = await self.collection.insert_one(movement)
        return str(result.inserted_id)

    async def log_stock_out(
        self,
        medication_id: int,
        medication_name: str,
        quantity: int,
        stock_after: int,
        reason: str,
        reference_type: str,
        reference_id: int,
        performed_by_id: int,
        performed_by_name: str
    ) -> str:
        movement = {
            "movement_type": "OUT",
            "medication": {
                "id": medication_id,
                "name": medication_name
            },
            "quantity": quantity,
            "stock_after": stock_after,
            "reason": reason,
            "reference": {
                "type": reference_type,
                "id": reference_id
            },
            "performed_by": {
                "id": performed_by_id,
                "name": performed_by_name
            },
            "timestamp": datetime.utcnow()
        }

        result = await self.collection.insert_one(movement)
        return str(result.inserted_id)

    async def get_movements(
        self,
        medication_id: Optional[int] = None,
        movement_type: Optional[str] = None,
        limit: int = 100,
        skip: int = 0
    ) -> List[Dict]:
        query = {}

        if medication_id:
            query["medication.id"] = medication_id
        if movement_type:
            query["movement_type"] = movement_type

        cursor = self.collection.find(query).sort(
            "timestamp", -1
        ).skip(skip).limit(limit)

        movements = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            movements.append(doc)

        return movements


class DailySummaryService:
    """Report snapshots keyed by ISO date string (BSON has no plain date type)"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.daily_summaries

    async def save_summary(self, summary_date: date, summary: Dict) -> str:
        document = {
            **summary,
            "date": summary_date.isoformat(),
            "generated_at": datetime.utcnow()
        }

        result = await self.collection.update_one(
            {"date": summary_date.isoformat()},
            {"$set": document},
            upsert=True
        )

        return str(result.upserted_id) if result.upserted_id else "updated"

    async def get_summary(self, summary_date: date) -> Optional[Dict]:
        doc = await self.collection.find_one({"date": summary_date.isoformat()})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def get_summaries_range(self, start_date: date, end_date: date) -> List[Dict]:
        cursor = self.collection.find({
            "date": {
                "$gte": start_date.isoformat(),
                "$lte": end_date.isoformat()
            }
        }).sort("date", -1)

        summaries = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            summaries.append(doc)

        return summaries

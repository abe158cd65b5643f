from fastapi import APIRouter, Depends, Query, Request, status
from typing import Optional
from datetime import datetime
from frontoffice.config import settings
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import ActivityLogService
from frontoffice.models import User
from frontoffice.schemas import ActivityLogCreate
from frontoffice.auth import get_current_active_user

router = APIRouter(prefix="/activity-log", tags=["Activity Log"])


@router.get("")
async def get_activity_log(
    entity_type: Optional[str] = Query(None, description="patient, appointment, lab_order, invoice, ..."),
    actor_id: Optional[int] = None,
    action: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    skip: int = 0,
    limit: int = Query(settings.ACTIVITY_LOG_LIMIT, ge=1, le=1000),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Query the activity log, newest first

    Filters:
    - entity_type: type of record the action touched
    - actor_id: staff user who performed the action
    - action: CREATE, UPDATE, PAYMENT, DISPENSE, ...
    - start/end: timestamp range
    """
    logs = await ActivityLogService(mongo_db).get_logs(
        actor_id=actor_id,
        target_type=entity_type,
        action=action,
        start_date=start,
        end_date=end,
        skip=skip,
        limit=limit
    )
    return {
        "total": len(logs),
        "logs": logs
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_activity_entry(
    entry: ActivityLogCreate,
    request: Request,
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Manual entry stamped with the current user; unlike automatic entries a failed write is an error"""
    entry_id = await ActivityLogService(mongo_db).log_action(
        actor_id=current_user.id,
        actor_name=current_user.full_name,
        actor_role=current_user.role.value,
        action=entry.action,
        description=entry.description,
        target_type=entry.target_type,
        target_id=entry.target_id,
        details=entry.details,
        ip_address=request.client.host if request.client else None
    )
    return {
        "id": entry_id,
        "message": "Activity recorded"
    }

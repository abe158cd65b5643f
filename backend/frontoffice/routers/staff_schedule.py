from fastapi import APIRouter, Depends, HTTPException, status, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
from datetime import datetime, date
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.models import User, StaffRole, Shift, ShiftType, AttendanceStatus
from frontoffice.schemas import ShiftCreate, ShiftUpdate, ShiftResponse, AttendanceUpdate
from frontoffice.auth import get_current_active_user, require_roles

router = APIRouter(prefix="/staff-schedule", tags=["Staff Schedule"])

require_admin = require_roles(StaffRole.ADMINISTRATOR)


async def get_shift_or_404(db: AsyncSession, shift_id: int) -> Shift:
    result = await db.execute(select(Shift).where(Shift.id == shift_id))
    shift = result.scalars().first()

    if not shift:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Shift with ID {shift_id} not found"
        )
    return shift


async def _get_staff_member(db: AsyncSession, staff_id: int) -> User:
    result = await db.execute(select(User).where(User.id == staff_id))
    staff = result.scalars().first()

    if not staff:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Staff member with ID {staff_id} not found"
        )
    return staff


@router.post("", response_model=ShiftResponse, status_code=status.HTTP_201_CREATED)
async def create_shift(
    shift: ShiftCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    staff = await _get_staff_member(db, shift.staff_id)

    db_shift = Shift(
        staff_name=staff.full_name,
        attendance_status=AttendanceStatus.SCHEDULED,
        **shift.model_dump()
    )
    db.add(db_shift)
    await db.commit()
    await db.refresh(db_shift)

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Scheduled {db_shift.shift_type.value} shift for {staff.full_name} on {db_shift.shift_date}",
        target_type="shift",
        target_id=db_shift.id,
        details={"staff_id": staff.id}
    )
    return db_shift


@router.get("", response_model=List[ShiftResponse])
async def get_shifts(
    shift_date: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    staff_id: Optional[int] = None,
    exclude_day_off: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = select(Shift)
    if shift_date:
        query = query.where(Shift.shift_date == shift_date)
    if start_date:
        query = query.where(Shift.shift_date >= start_date)
    if end_date:
        query = query.where(Shift.shift_date <= end_date)
    if staff_id:
        query = query.where(Shift.staff_id == staff_id)
    if exclude_day_off:
        query = query.where(Shift.shift_type != ShiftType.DAY_OFF)

    result = await db.execute(query.order_by(Shift.shift_date, Shift.start_time, Shift.staff_name))
    return result.scalars().all()


@router.get("/{shift_id}", response_model=ShiftResponse)
async def get_shift(
    shift_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_shift_or_404(db, shift_id)


@router.put("/{shift_id}", response_model=ShiftResponse)
async def update_shift(
    shift_id: int,
    shift_update: ShiftUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    shift = await get_shift_or_404(db, shift_id)

    merged = {
        "staff_id": shift.staff_id,
        "shift_date": shift.shift_date,
        "shift_type": shift.shift_type,
        "start_time": shift.start_time,
        "end_time": shift.end_time,
        "notes": shift.notes,
        **shift_update.model_dump(exclude_unset=True)
    }
    try:
        validated = ShiftCreate(**merged)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    for field, value in validated.model_dump(exclude={"staff_id"}).items():
        setattr(shift, field, value)

    await db.commit()
    await db.refresh(shift)

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"Updated shift for {shift.staff_name} on {shift.shift_date}",
        target_type="shift",
        target_id=shift.id,
        details={"fields_updated": sorted(shift_update.model_dump(exclude_unset=True).keys())}
    )
    return shift


@router.delete("/{shift_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_shift(
    shift_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    shift = await get_shift_or_404(db, shift_id)
    description = f"Deleted shift for {shift.staff_name} on {shift.shift_date}"
    await db.delete(shift)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="DELETE",
        description=description,
        target_type="shift",
        target_id=shift_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{shift_id}/attendance", response_model=ShiftResponse)
async def update_attendance(
    shift_id: int,
    attendance: AttendanceUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Clock in/out against a shift.

    Clocked In and Late stamp the current time as the actual start when none is given,
    Clocked Out does the same for the actual end.
    """
    shift = await get_shift_or_404(db, shift_id)

    if shift.shift_type == ShiftType.DAY_OFF:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Attendance cannot be recorded on a day off"
        )
    if current_user.role != StaffRole.ADMINISTRATOR and current_user.id != shift.staff_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only record attendance on your own shifts"
        )

    now = datetime.now().strftime("%H:%M")
    shift.attendance_status = attendance.attendance_status

    if attendance.actual_start_time:
        shift.actual_start_time = attendance.actual_start_time
    elif attendance.attendance_status in (AttendanceStatus.CLOCKED_IN, AttendanceStatus.LATE):
        shift.actual_start_time = shift.actual_start_time or now

    if attendance.actual_end_time:
        shift.actual_end_time = attendance.actual_end_time
    elif attendance.attendance_status == AttendanceStatus.CLOCKED_OUT:
        shift.actual_end_time = now

    await db.commit()
    await db.refresh(shift)

    await record_activity(
        mongo_db, current_user,
        action="ATTENDANCE",
        description=f"{shift.staff_name} marked {shift.attendance_status.value} for {shift.shift_date}",
        target_type="shift",
        target_id=shift.id,
        details={
            "actual_start_time": shift.actual_start_time,
            "actual_end_time": shift.actual_end_time
        }
    )
    return shift

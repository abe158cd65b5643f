from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from typing import List, Optional
from datetime import date
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.models import User, Appointment, AppointmentStatus
from frontoffice.schemas import (
    AppointmentCreate,
    AppointmentUpdate,
    AppointmentStatusUpdate,
    AppointmentResponse
)
from frontoffice.auth import get_current_active_user
from frontoffice.routers.patients import get_patient_or_404

router = APIRouter(prefix="/appointments", tags=["Appointments"])

ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED, AppointmentStatus.ARRIVED, AppointmentStatus.CANCELLED
    },
    AppointmentStatus.CONFIRMED: {AppointmentStatus.ARRIVED, AppointmentStatus.CANCELLED},
    AppointmentStatus.ARRIVED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


async def get_appointment_or_404(db: AsyncSession, appointment_id: int) -> Appointment:
    result = await db.execute(select(Appointment).where(Appointment.id == appointment_id))
    appointment = result.scalars().first()

    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Appointment with ID {appointment_id} not found"
        )
    return appointment


async def _ensure_slot_free(
    db: AsyncSession,
    provider_name: str,
    appointment_date: date,
    appointment_time: str,
    exclude_id: Optional[int] = None
):
    query = select(Appointment).where(
        and_(
            Appointment.provider_name == provider_name,
            Appointment.appointment_date == appointment_date,
            Appointment.appointment_time == appointment_time,
            Appointment.status != AppointmentStatus.CANCELLED
        )
    )
    if exclude_id:
        query = query.where(Appointment.id != exclude_id)

    result = await db.execute(query)
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{provider_name} already has an appointment on {appointment_date} at {appointment_time}"
        )


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment: AppointmentCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    patient = await get_patient_or_404(db, appointment.patient_id)
    await _ensure_slot_free(
        db, appointment.provider_name, appointment.appointment_date, appointment.appointment_time
    )

    db_appointment = Appointment(
        **appointment.model_dump(),
        patient_name=patient.full_name,
        status=AppointmentStatus.SCHEDULED
    )
    db.add(db_appointment)
    await db.commit()
    await db.refresh(db_appointment)

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Booked {db_appointment.appointment_type.value} for {patient.full_name} "
                    f"with {db_appointment.provider_name}",
        target_type="appointment",
        target_id=db_appointment.id,
        details={
            "date": db_appointment.appointment_date.isoformat(),
            "time": db_appointment.appointment_time
        }
    )
    return db_appointment


@router.get("", response_model=List[AppointmentResponse])
async def get_appointments(
    appointment_date: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    patient_id: Optional[int] = None,
    provider_name: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = select(Appointment)

    if appointment_date:
        query = query.where(Appointment.appointment_date == appointment_date)
    if start_date:
        query = query.where(Appointment.appointment_date >= start_date)
    if end_date:
        query = query.where(Appointment.appointment_date <= end_date)
    if appointment_status:
        query = query.where(Appointment.status == appointment_status)
    if patient_id:
        query = query.where(Appointment.patient_id == patient_id)
    if provider_name:
        query = query.where(Appointment.provider_name.ilike(f"%{provider_name}%"))

    result = await db.execute(
        query.order_by(Appointment.appointment_date, Appointment.appointment_time)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_appointment_or_404(db, appointment_id)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    appointment_update: AppointmentUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Reschedule or edit an appointment that has not started"""
    appointment = await get_appointment_or_404(db, appointment_id)

    if appointment.status not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot edit an appointment that is {appointment.status.value}"
        )

    update_data = appointment_update.model_dump(exclude_unset=True)
    provider = update_data.get("provider_name", appointment.provider_name)
    on_date = update_data.get("appointment_date", appointment.appointment_date)
    at_time = update_data.get("appointment_time", appointment.appointment_time)
    await _ensure_slot_free(db, provider, on_date, at_time, exclude_id=appointment.id)

    for field, value in update_data.items():
        setattr(appointment, field, value)

    await db.commit()
    await db.refresh(appointment)

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"Updated appointment for {appointment.patient_name}",
        target_type="appointment",
        target_id=appointment.id,
        details={"fields_updated": sorted(update_data.keys())}
    )
    return appointment


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    status_update: AppointmentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    appointment = await get_appointment_or_404(db, appointment_id)
    previous = appointment.status

    if status_update.status not in ALLOWED_TRANSITIONS[previous]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot change appointment status from {previous.value} to {status_update.status.value}"
        )

    appointment.status = status_update.status
    if status_update.status == AppointmentStatus.CANCELLED:
        appointment.cancellation_reason = status_update.cancellation_reason

    await db.commit()
    await db.refresh(appointment)

    await record_activity(
        mongo_db, current_user,
        action="STATUS_CHANGE",
        description=f"Appointment for {appointment.patient_name} marked {appointment.status.value}",
        target_type="appointment",
        target_id=appointment.id,
        details={"from": previous.value, "to": appointment.status.value}
    )
    return appointment

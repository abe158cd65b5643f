from fastapi import APIRouter, Depends, HTTPException, status, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_, func
from typing import List, Optional
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.models import (
    Patient, User, StaffRole, PatientStatus, Appointment,
    LabOrder, Prescription, Invoice, Admission
)
from frontoffice.schemas import PatientCreate, PatientUpdate, PatientResponse, PatientHistoryResponse
from frontoffice.auth import get_current_active_user, require_roles

router = APIRouter(prefix="/patients", tags=["Patients"])


async def get_patient_or_404(db: AsyncSession, patient_id: int) -> Patient:
    result = await db.execute(select(Patient).where(Patient.id == patient_id))
    patient = result.scalars().first()

    if not patient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Patient with ID {patient_id} not found"
        )
    return patient


@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient: PatientCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Register a new patient with activity logging"""
    db_patient = Patient(**patient.model_dump())
    db.add(db_patient)
    await db.commit()
    await db.refresh(db_patient)

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Registered patient {db_patient.full_name}",
        target_type="patient",
        target_id=db_patient.id,
        details={
            "contact_number": db_patient.contact_number,
            "status": db_patient.status.value
        },
        ip_address=request.client.host if request.client else None
    )
    return db_patient


@router.get("", response_model=List[PatientResponse])
async def get_patients(
    skip: int = 0,
    limit: int = 100,
    search: Optional[str] = Query(None, description="Search by name, contact number, or patient ID"),
    patient_status: Optional[PatientStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """List/search patients with pagination"""
    query = select(Patient)

    if search:
        term = f"%{search.strip()}%"
        conditions = [
            Patient.first_name.ilike(term),
            Patient.last_name.ilike(term),
            Patient.contact_number.ilike(term)
        ]
        if search.strip().isdigit():
            conditions.append(Patient.id == int(search.strip()))
        query = query.where(or_(*conditions))

    if patient_status:
        query = query.where(Patient.status == patient_status)

    result = await db.execute(
        query.order_by(Patient.last_name, Patient.first_name).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_patient_or_404(db, patient_id)


@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: int,
    patient_update: PatientUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    patient = await get_patient_or_404(db, patient_id)

    update_data = patient_update.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        setattr(patient, field, value)

    await db.commit()
    await db.refresh(patient)

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"Updated patient {patient.full_name}",
        target_type="patient",
        target_id=patient.id,
        details={"fields_updated": sorted(update_data.keys())},
        ip_address=request.client.host if request.client else None
    )
    return patient


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_roles(StaffRole.ADMINISTRATOR))
):
    """Delete a patient that has no clinical or billing records"""
    patient = await get_patient_or_404(db, patient_id)

    for model in (Appointment, LabOrder, Prescription, Invoice, Admission):
        result = await db.execute(
            select(func.count(model.id)).where(model.patient_id == patient_id)
        )
        if result.scalar():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Patient has linked records; set status to Inactive instead"
            )

    name = patient.full_name
    await db.delete(patient)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="DELETE",
        description=f"Deleted patient {name}",
        target_type="patient",
        target_id=patient_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{patient_id}/history", response_model=PatientHistoryResponse)
async def get_patient_history(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Everything on file for a patient, newest first in each list"""
    patient = await get_patient_or_404(db, patient_id)

    appointments = await db.execute(
        select(Appointment)
        .where(Appointment.patient_id == patient_id)
        .order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc())
    )
    lab_orders = await db.execute(
        select(LabOrder).where(LabOrder.patient_id == patient_id).order_by(LabOrder.order_date.desc())
    )
    prescriptions = await db.execute(
        select(Prescription)
        .where(Prescription.patient_id == patient_id)
        .order_by(Prescription.prescription_date.desc())
    )
    invoices = await db.execute(
        select(Invoice).where(Invoice.patient_id == patient_id).order_by(Invoice.invoice_date.desc())
    )
    admissions = await db.execute(
        select(Admission).where(Admission.patient_id == patient_id).order_by(Admission.admission_date.desc())
    )

    return {
        "patient": patient,
        "appointments": appointments.scalars().all(),
        "lab_orders": lab_orders.scalars().all(),
        "prescriptions": prescriptions.scalars().all(),
        "invoices": invoices.scalars().all(),
        "admissions": admissions.scalars().all()
    }

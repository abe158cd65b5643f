from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.services.billing import active_invoice_number
from frontoffice.models import User, Prescription, PrescriptionStatus
from frontoffice.schemas import PrescriptionCreate, PrescriptionUpdate, PrescriptionResponse
from frontoffice.auth import get_current_active_user
from frontoffice.routers.patients import get_patient_or_404
from frontoffice.routers.inventory import get_medication_or_404

router = APIRouter(prefix="/pharmacy/prescriptions", tags=["Prescriptions"])


async def get_prescription_or_404(db: AsyncSession, prescription_id: int) -> Prescription:
    result = await db.execute(select(Prescription).where(Prescription.id == prescription_id))
    prescription = result.scalars().first()

    if not prescription:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Prescription with ID {prescription_id} not found"
        )
    return prescription


@router.post("", response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_prescription(
    prescription: PrescriptionCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    patient = await get_patient_or_404(db, prescription.patient_id)
    medication = await get_medication_or_404(db, prescription.medication_id)

    db_prescription = Prescription(
        patient_id=patient.id,
        patient_name=patient.full_name,
        medication_id=medication.id,
        medication_name=medication.name,
        dosage=prescription.dosage or medication.dosage,
        quantity=prescription.quantity,
        instructions=prescription.instructions,
        prescribed_by=prescription.prescribed_by or current_user.full_name,
        refillable=prescription.refillable,
        refills_remaining=prescription.refills_remaining if prescription.refillable else 0,
        linked_appointment_id=prescription.linked_appointment_id,
        status=PrescriptionStatus.PENDING
    )
    db.add(db_prescription)
    await db.commit()
    await db.refresh(db_prescription)

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Prescribed {medication.name} x{prescription.quantity} for {patient.full_name}",
        target_type="prescription",
        target_id=db_prescription.id
    )
    return db_prescription


@router.get("", response_model=List[PrescriptionResponse])
async def get_prescriptions(
    patient_id: Optional[int] = None,
    prescription_status: Optional[PrescriptionStatus] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = select(Prescription)
    if patient_id:
        query = query.where(Prescription.patient_id == patient_id)
    if prescription_status:
        query = query.where(Prescription.status == prescription_status)

    result = await db.execute(
        query.order_by(Prescription.prescription_date.desc(), Prescription.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{prescription_id}", response_model=PrescriptionResponse)
async def get_prescription(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_prescription_or_404(db, prescription_id)


@router.put("/{prescription_id}", response_model=PrescriptionResponse)
async def update_prescription(
    prescription_id: int,
    prescription_update: PrescriptionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    prescription = await get_prescription_or_404(db, prescription_id)

    if prescription.status != PrescriptionStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only pending prescriptions can be edited (this one is {prescription.status.value})"
        )
    if prescription.is_billed and prescription_update.quantity not in (None, prescription.quantity):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Quantity cannot change once the prescription has been billed"
        )

    for field, value in prescription_update.model_dump(exclude_unset=True).items():
        setattr(prescription, field, value)
    if not prescription.refillable:
        prescription.refills_remaining = 0

    await db.commit()
    await db.refresh(prescription)
    return prescription


@router.patch("/{prescription_id}/cancel", response_model=PrescriptionResponse)
async def cancel_prescription(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    prescription = await get_prescription_or_404(db, prescription_id)

    if prescription.status in (PrescriptionStatus.DISPENSED, PrescriptionStatus.CANCELLED):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel a prescription that is {prescription.status.value}"
        )
    invoice_number = await active_invoice_number(db, prescription.invoice_id)
    if invoice_number:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Prescription {prescription.id} is billed on invoice {invoice_number}; cancel the invoice first"
        )

    prescription.status = PrescriptionStatus.CANCELLED
    await db.commit()
    await db.refresh(prescription)

    await record_activity(
        mongo_db, current_user,
        action="CANCEL",
        description=f"Cancelled prescription of {prescription.medication_name} for {prescription.patient_name}",
        target_type="prescription",
        target_id=prescription.id
    )
    return prescription

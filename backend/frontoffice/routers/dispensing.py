from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import List
from datetime import datetime
import logging
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import StockMovementService, record_activity
from frontoffice.services.inventory import decrement_stock
from frontoffice.models import User, StaffRole, Prescription, PrescriptionStatus, PaymentStatus
from frontoffice.schemas import PrescriptionResponse, DispenseResponse
from frontoffice.auth import get_current_active_user, require_roles
from frontoffice.routers.prescriptions import get_prescription_or_404
from frontoffice.routers.inventory import get_medication_or_404

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pharmacy/dispensing", tags=["Dispensing"])


def _require_paid(prescription: Prescription):
    if prescription.payment_status != PaymentStatus.PAID:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Prescription payment is {prescription.payment_status.value}; it must be Paid"
        )


@router.get("/queue", response_model=List[PrescriptionResponse])
async def get_dispensing_queue(
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Prescriptions still waiting to be handed over, oldest first"""
    result = await db.execute(
        select(Prescription)
        .where(Prescription.status.in_([
            PrescriptionStatus.PENDING,
            PrescriptionStatus.FILLED,
            PrescriptionStatus.READY_FOR_PICKUP
        ]))
        .order_by(Prescription.prescription_date, Prescription.id)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.patch("/{prescription_id}/fill", response_model=PrescriptionResponse)
async def fill_prescription(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(StaffRole.PHARMACIST))
):
    """Mark a prescription as prepared; stock is only checked here, it is taken on dispense"""
    prescription = await get_prescription_or_404(db, prescription_id)

    if prescription.status != PrescriptionStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only pending prescriptions can be filled (this one is {prescription.status.value})"
        )

    medication = await get_medication_or_404(db, prescription.medication_id)
    if medication.stock < prescription.quantity:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient stock for {medication.name}. Need: {prescription.quantity}, Available: {medication.stock}"
        )

    prescription.status = PrescriptionStatus.FILLED
    await db.commit()
    await db.refresh(prescription)
    return prescription


@router.patch("/{prescription_id}/ready", response_model=PrescriptionResponse)
async def mark_ready_for_pickup(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(StaffRole.PHARMACIST))
):
    prescription = await get_prescription_or_404(db, prescription_id)

    if prescription.status not in (PrescriptionStatus.PENDING, PrescriptionStatus.FILLED):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot mark a {prescription.status.value} prescription as ready for pickup"
        )
    _require_paid(prescription)

    prescription.status = PrescriptionStatus.READY_FOR_PICKUP
    await db.commit()
    await db.refresh(prescription)
    return prescription


@router.post("/{prescription_id}/dispense", response_model=DispenseResponse)
async def dispense_prescription(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_roles(StaffRole.PHARMACIST))
):
    """
    Hand a paid prescription to the patient and take the quantity off inventory.

    The status change and the stock decrement are both conditional updates in one
    transaction: a second dispense of the same prescription matches no row, and
    a concurrent dispense of the same medication can never overdraw it.
    """
    prescription = await get_prescription_or_404(db, prescription_id)

    if prescription.status != PrescriptionStatus.READY_FOR_PICKUP:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Prescription must be Ready for Pickup to dispense (it is {prescription.status.value})"
        )
    _require_paid(prescription)

    medication = await get_medication_or_404(db, prescription.medication_id)

    result = await db.execute(
        update(Prescription)
        .where(
            Prescription.id == prescription.id,
            Prescription.status == PrescriptionStatus.READY_FOR_PICKUP
        )
        .values(
            status=PrescriptionStatus.DISPENSED,
            dispensed_by=current_user.full_name,
            dispensed_at=datetime.utcnow()
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Prescription {prescription_id} has already been dispensed"
        )

    quantity = prescription.quantity
    if not await decrement_stock(db, medication.id, quantity):
        await db.rollback()
        await db.refresh(medication)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient stock for {medication.name}. Need: {quantity}, Available: {medication.stock}"
        )

    refill = None
    if prescription.refillable and prescription.refills_remaining > 0:
        refill = Prescription(
            patient_id=prescription.patient_id,
            patient_name=prescription.patient_name,
            medication_id=prescription.medication_id,
            medication_name=prescription.medication_name,
            dosage=prescription.dosage,
            quantity=prescription.quantity,
            instructions=prescription.instructions,
            prescribed_by=prescription.prescribed_by,
            refillable=prescription.refills_remaining - 1 > 0,
            refills_remaining=prescription.refills_remaining - 1,
            linked_appointment_id=prescription.linked_appointment_id,
            status=PrescriptionStatus.PENDING,
            payment_status=PaymentStatus.PENDING_PAYMENT
        )
        db.add(refill)

    await db.commit()
    await db.refresh(prescription)
    await db.refresh(medication)

    try:
        await StockMovementService(mongo_db).log_stock_out(
            medication_id=medication.id,
            medication_name=medication.name,
            quantity=prescription.quantity,
            stock_after=medication.stock,
            reason="DISPENSED",
            reference_type="prescription",
            reference_id=prescription.id,
            performed_by_id=current_user.id,
            performed_by_name=current_user.full_name
        )
    except Exception as e:
        logger.warning(f"Stock movement log failed for prescription {prescription.id}: {e}")

    await record_activity(
        mongo_db, current_user,
        action="DISPENSE",
        description=f"Dispensed {prescription.medication_name} x{prescription.quantity} to {prescription.patient_name}",
        target_type="prescription",
        target_id=prescription.id,
        details={"stock_remaining": medication.stock}
    )

    return DispenseResponse(
        message="Prescription dispensed successfully",
        prescription=PrescriptionResponse.model_validate(prescription),
        stock_remaining=medication.stock,
        refill_prescription_id=refill.id if refill else None
    )

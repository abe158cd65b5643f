from fastapi import APIRouter, Depends, HTTPException, status, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from typing import List, Optional
import logging
from frontoffice.config import settings
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import StockMovementService, record_activity
from frontoffice.services.inventory import increment_stock
from frontoffice.models import User, StaffRole, Medication, Prescription, StockStatus
from frontoffice.schemas import MedicationCreate, MedicationUpdate, MedicationResponse, RestockRequest
from frontoffice.auth import get_current_active_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pharmacy/medications", tags=["Pharmacy Inventory"])

require_pharmacy_staff = require_roles(StaffRole.PHARMACIST)


async def get_medication_or_404(db: AsyncSession, medication_id: int) -> Medication:
    result = await db.execute(select(Medication).where(Medication.id == medication_id))
    medication = result.scalars().first()

    if not medication:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Medication with ID {medication_id} not found"
        )
    return medication


def _stock_status_filter(stock_status: StockStatus):
    if stock_status == StockStatus.OUT_OF_STOCK:
        return Medication.stock <= 0
    if stock_status == StockStatus.LOW_STOCK:
        return (Medication.stock > 0) & (Medication.stock < Medication.reorder_level)
    return (Medication.stock > 0) & (Medication.stock >= Medication.reorder_level)


@router.post("", response_model=MedicationResponse, status_code=status.HTTP_201_CREATED)
async def create_medication(
    medication: MedicationCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_pharmacy_staff)
):
    data = medication.model_dump()
    if data["reorder_level"] is None:
        data["reorder_level"] = settings.LOW_STOCK_THRESHOLD

    db_medication = Medication(**data)
    db.add(db_medication)
    await db.commit()
    await db.refresh(db_medication)

    if db_medication.stock > 0:
        try:
            await StockMovementService(mongo_db).log_stock_in(
                medication_id=db_medication.id,
                medication_name=db_medication.name,
                quantity=db_medication.stock,
                stock_after=db_medication.stock,
                reason="INITIAL_STOCK",
                supplier=db_medication.supplier,
                performed_by_id=current_user.id,
                performed_by_name=current_user.full_name
            )
        except Exception as e:
            logger.warning(f"Stock movement log failed for medication {db_medication.id}: {e}")

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Added {db_medication.name} {db_medication.dosage} to inventory",
        target_type="medication",
        target_id=db_medication.id
    )
    return db_medication


@router.get("", response_model=List[MedicationResponse])
async def get_medications(
    search: Optional[str] = Query(None, description="Search by name or category"),
    stock_status: Optional[StockStatus] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = select(Medication)
    if search:
        query = query.where(
            or_(
                Medication.name.ilike(f"%{search}%"),
                Medication.category.ilike(f"%{search}%")
            )
        )
    if stock_status:
        query = query.where(_stock_status_filter(stock_status))

    result = await db.execute(query.order_by(Medication.name).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/low-stock", response_model=List[MedicationResponse])
async def get_low_stock_medications(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Medications that are out of stock or below their reorder level"""
    result = await db.execute(
        select(Medication)
        .where(or_(Medication.stock <= 0, Medication.stock < Medication.reorder_level))
        .order_by(Medication.stock, Medication.name)
    )
    return result.scalars().all()


@router.get("/{medication_id}", response_model=MedicationResponse)
async def get_medication(
    medication_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_medication_or_404(db, medication_id)


@router.put("/{medication_id}", response_model=MedicationResponse)
async def update_medication(
    medication_id: int,
    medication_update: MedicationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_pharmacy_staff)
):
    medication = await get_medication_or_404(db, medication_id)

    for field, value in medication_update.model_dump(exclude_unset=True).items():
        setattr(medication, field, value)

    await db.commit()
    await db.refresh(medication)
    return medication


@router.delete("/{medication_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_medication(
    medication_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_pharmacy_staff)
):
    medication = await get_medication_or_404(db, medication_id)

    result = await db.execute(
        select(func.count(Prescription.id)).where(Prescription.medication_id == medication_id)
    )
    if result.scalar():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{medication.name} is referenced by prescriptions and cannot be deleted"
        )

    name = medication.name
    await db.delete(medication)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="DELETE",
        description=f"Removed {name} from inventory",
        target_type="medication",
        target_id=medication_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{medication_id}/restock", response_model=MedicationResponse)
async def restock_medication(
    medication_id: int,
    restock: RestockRequest,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_pharmacy_staff)
):
    medication = await get_medication_or_404(db, medication_id)

    await increment_stock(db, medication.id, restock.quantity)
    if restock.supplier:
        medication.supplier = restock.supplier
    if restock.expiry_date:
        medication.expiry_date = restock.expiry_date

    await db.commit()
    await db.refresh(medication)

    try:
        await StockMovementService(mongo_db).log_stock_in(
            medication_id=medication.id,
            medication_name=medication.name,
            quantity=restock.quantity,
            stock_after=medication.stock,
            reason="RESTOCK",
            supplier=restock.supplier or medication.supplier,
            performed_by_id=current_user.id,
            performed_by_name=current_user.full_name
        )
    except Exception as e:
        logger.warning(f"Stock movement log failed for medication {medication.id}: {e}")

    return medication


@router.get("/{medication_id}/movements")
async def get_stock_movements(
    medication_id: int,
    movement_type: Optional[str] = Query(None, pattern="^(IN|OUT)$"),
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Stock in/out history from the movement log"""
    medication = await get_medication_or_404(db, medication_id)
    movements = await StockMovementService(mongo_db).get_movements(
        medication_id=medication.id,
        movement_type=movement_type,
        skip=skip,
        limit=limit
    )
    return {
        "medication_id": medication.id,
        "medication_name": medication.name,
        "current_stock": medication.stock,
        "total": len(movements),
        "movements": movements
    }

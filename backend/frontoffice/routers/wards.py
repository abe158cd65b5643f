from fastapi import APIRouter, Depends, HTTPException, status, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from typing import List
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.models import User, StaffRole, Ward, Bed, BedStatus, Admission
from frontoffice.schemas import (
    WardCreate,
    WardUpdate,
    WardResponse,
    BedCreate,
    BedStatusUpdate,
    BedResponse
)
from frontoffice.auth import get_current_active_user, require_roles

router = APIRouter(prefix="/wards", tags=["Wards"])

require_admin = require_roles(StaffRole.ADMINISTRATOR)


async def get_ward_or_404(db: AsyncSession, ward_id: int) -> Ward:
    result = await db.execute(select(Ward).where(Ward.id == ward_id))
    ward = result.scalars().first()

    if not ward:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Ward with ID {ward_id} not found"
        )
    return ward


async def get_bed_or_404(db: AsyncSession, bed_id: int, ward_id: int = None) -> Bed:
    query = select(Bed).where(Bed.id == bed_id)
    if ward_id is not None:
        query = query.where(Bed.ward_id == ward_id)
    result = await db.execute(query)
    bed = result.scalars().first()

    if not bed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Bed with ID {bed_id} not found"
        )
    return bed


async def _detach_admissions(db: AsyncSession, bed_ids: List[int]):
    # past admissions keep the ward name and bed label they were given
    await db.execute(
        update(Admission)
        .where(Admission.bed_id.in_(bed_ids))
        .values(bed_id=None)
        .execution_options(synchronize_session=False)
    )


async def _check_unique_name(db: AsyncSession, name: str, exclude_id: int = None):
    query = select(Ward).where(func.lower(Ward.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.where(Ward.id != exclude_id)
    result = await db.execute(query)
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A ward named '{name.strip()}' already exists"
        )


@router.post("", response_model=WardResponse, status_code=status.HTTP_201_CREATED)
async def create_ward(
    ward: WardCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    """Create a ward, optionally with bed_count beds labelled Bed 1 .. Bed N"""
    await _check_unique_name(db, ward.name)

    db_ward = Ward(
        name=ward.name.strip(),
        description=ward.description,
        per_diem_rate=ward.per_diem_rate,
        beds=[Bed(label=f"Bed {n}", status=BedStatus.AVAILABLE) for n in range(1, ward.bed_count + 1)]
    )
    db.add(db_ward)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Created ward {db_ward.name} with {ward.bed_count} beds",
        target_type="ward",
        target_id=db_ward.id
    )
    return db_ward


@router.get("", response_model=List[WardResponse])
async def get_wards(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    result = await db.execute(select(Ward).order_by(Ward.name))
    return result.scalars().all()


@router.get("/available-beds", response_model=List[BedResponse])
async def get_available_beds(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Beds that can take an admission right now"""
    result = await db.execute(
        select(Bed).where(Bed.status == BedStatus.AVAILABLE).order_by(Bed.ward_id, Bed.id)
    )
    return result.scalars().all()


@router.get("/{ward_id}", response_model=WardResponse)
async def get_ward(
    ward_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_ward_or_404(db, ward_id)


@router.put("/{ward_id}", response_model=WardResponse)
async def update_ward(
    ward_id: int,
    ward_update: WardUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    ward = await get_ward_or_404(db, ward_id)
    update_data = ward_update.model_dump(exclude_unset=True)

    if update_data.get("name"):
        await _check_unique_name(db, update_data["name"], exclude_id=ward.id)
        update_data["name"] = update_data["name"].strip()

    for field, value in update_data.items():
        setattr(ward, field, value)

    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"Updated ward {ward.name}",
        target_type="ward",
        target_id=ward.id,
        details={"fields_updated": sorted(update_data.keys())}
    )
    return ward


@router.delete("/{ward_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ward(
    ward_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    ward = await get_ward_or_404(db, ward_id)

    occupied = [bed.label for bed in ward.beds if bed.status == BedStatus.OCCUPIED]
    if occupied:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Ward {ward.name} has occupied beds: {', '.join(occupied)}"
        )

    name = ward.name
    await _detach_admissions(db, [bed.id for bed in ward.beds])
    await db.delete(ward)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="DELETE",
        description=f"Deleted ward {name}",
        target_type="ward",
        target_id=ward_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{ward_id}/beds", response_model=BedResponse, status_code=status.HTTP_201_CREATED)
async def add_bed(
    ward_id: int,
    bed: BedCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    ward = await get_ward_or_404(db, ward_id)
    label = bed.label.strip()

    if any(existing.label.lower() == label.lower() for existing in ward.beds):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Ward {ward.name} already has a bed labelled '{label}'"
        )

    db_bed = Bed(ward_id=ward.id, label=label, status=BedStatus.AVAILABLE)
    db.add(db_bed)
    await db.commit()
    await db.refresh(db_bed)

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Added {label} to ward {ward.name}",
        target_type="bed",
        target_id=db_bed.id
    )
    return db_bed


@router.patch("/{ward_id}/beds/{bed_id}/status", response_model=BedResponse)
async def update_bed_status(
    ward_id: int,
    bed_id: int,
    status_update: BedStatusUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Housekeeping and maintenance changes; occupancy only changes through admit and discharge"""
    bed = await get_bed_or_404(db, bed_id, ward_id)

    if bed.status == BedStatus.OCCUPIED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{bed.label} is occupied; discharge the patient first"
        )

    previous = bed.status
    bed.status = status_update.status
    await db.commit()
    await db.refresh(bed)

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"{bed.label} changed from {previous.value} to {bed.status.value}",
        target_type="bed",
        target_id=bed.id
    )
    return bed


@router.delete("/{ward_id}/beds/{bed_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bed(
    ward_id: int,
    bed_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    bed = await get_bed_or_404(db, bed_id, ward_id)

    if bed.status == BedStatus.OCCUPIED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{bed.label} is occupied and cannot be removed"
        )

    label = bed.label
    await _detach_admissions(db, [bed.id])
    await db.delete(bed)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="DELETE",
        description=f"Removed {label} from ward {ward_id}",
        target_type="bed",
        target_id=bed_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)

from fastapi import APIRouter, Depends, HTTPException, status, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import List
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.services.pricing import get_general_fees
from frontoffice.models import User, StaffRole, ServicePrice, ServiceCategory
from frontoffice.schemas import (
    GeneralFeesUpdate,
    GeneralFeesResponse,
    ServicePriceCreate,
    ServicePriceUpdate,
    ServicePriceResponse
)
from frontoffice.auth import get_current_active_user, require_roles

router = APIRouter(prefix="/pricing", tags=["Pricing"])

require_admin = require_roles(StaffRole.ADMINISTRATOR)

# URL segment for each catalog
CATALOGS = {
    "lab-tests": ServiceCategory.LAB_TEST,
    "services": ServiceCategory.GENERAL_SERVICE,
}


def _catalog_or_404(catalog: str) -> ServiceCategory:
    if catalog not in CATALOGS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown price catalog '{catalog}'; use one of {sorted(CATALOGS)}"
        )
    return CATALOGS[catalog]


async def get_service_price_or_404(
    db: AsyncSession,
    price_id: int,
    category: ServiceCategory
) -> ServicePrice:
    result = await db.execute(
        select(ServicePrice).where(ServicePrice.id == price_id, ServicePrice.category == category)
    )
    entry = result.scalars().first()

    if not entry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{category.value} price with ID {price_id} not found"
        )
    return entry


async def _check_unique_name(db: AsyncSession, category: ServiceCategory, name: str, exclude_id: int = None):
    query = select(ServicePrice).where(
        ServicePrice.category == category,
        func.lower(ServicePrice.name) == name.strip().lower()
    )
    if exclude_id is not None:
        query = query.where(ServicePrice.id != exclude_id)
    result = await db.execute(query)
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{category.value} '{name.strip()}' is already priced"
        )


@router.get("/general-fees", response_model=GeneralFeesResponse)
async def get_fees(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_general_fees(db)


@router.put("/general-fees", response_model=GeneralFeesResponse)
async def update_fees(
    fees_update: GeneralFeesUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    """Set the consultation and check-up fees billed for appointments"""
    fees = await get_general_fees(db)
    update_data = fees_update.model_dump(exclude_unset=True, exclude_none=True)

    for field, value in update_data.items():
        setattr(fees, field, value)
    fees.updated_by = current_user.full_name

    if fees.id is None:
        db.add(fees)
    await db.commit()
    await db.refresh(fees)

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description="Updated general fees",
        target_type="pricing",
        target_id=fees.id,
        details={field: str(value) for field, value in update_data.items()}
    )
    return fees


@router.get("/{catalog}", response_model=List[ServicePriceResponse])
async def get_catalog(
    catalog: str,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    category = _catalog_or_404(catalog)

    query = select(ServicePrice).where(ServicePrice.category == category)
    if not include_inactive:
        query = query.where(ServicePrice.is_active.is_(True))

    result = await db.execute(query.order_by(ServicePrice.name))
    return result.scalars().all()


@router.post("/{catalog}", response_model=ServicePriceResponse, status_code=status.HTTP_201_CREATED)
async def add_catalog_price(
    catalog: str,
    entry: ServicePriceCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    category = _catalog_or_404(catalog)
    await _check_unique_name(db, category, entry.name)

    db_entry = ServicePrice(
        category=category,
        name=entry.name.strip(),
        price=entry.price,
        is_active=True
    )
    db.add(db_entry)
    await db.commit()
    await db.refresh(db_entry)

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Priced {category.value.lower()} {db_entry.name} at {db_entry.price}",
        target_type="pricing",
        target_id=db_entry.id
    )
    return db_entry


@router.put("/{catalog}/{price_id}", response_model=ServicePriceResponse)
async def update_catalog_price(
    catalog: str,
    price_id: int,
    entry_update: ServicePriceUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    """Price changes apply to new orders and invoices only; existing lines keep their price"""
    category = _catalog_or_404(catalog)
    entry = await get_service_price_or_404(db, price_id, category)
    update_data = entry_update.model_dump(exclude_unset=True, exclude_none=True)

    if "name" in update_data:
        await _check_unique_name(db, category, update_data["name"], exclude_id=entry.id)
        update_data["name"] = update_data["name"].strip()

    for field, value in update_data.items():
        setattr(entry, field, value)

    await db.commit()
    await db.refresh(entry)

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"Updated {category.value.lower()} price {entry.name}",
        target_type="pricing",
        target_id=entry.id,
        details={"fields_updated": sorted(update_data.keys())}
    )
    return entry


@router.delete("/{catalog}/{price_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_catalog_price(
    catalog: str,
    price_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_admin)
):
    """Billed lines keep their copied description and price, so entries can be removed outright"""
    category = _catalog_or_404(catalog)
    entry = await get_service_price_or_404(db, price_id, category)

    name = entry.name
    await db.delete(entry)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="DELETE",
        description=f"Removed {category.value.lower()} price {name}",
        target_type="pricing",
        target_id=price_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)

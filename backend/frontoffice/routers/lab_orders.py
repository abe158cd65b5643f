from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
from datetime import datetime
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.redis_client import get_redis
from frontoffice.services.mongo_services import record_activity
from frontoffice.services.sequences import SequenceService
from frontoffice.services.billing import active_invoice_number
from frontoffice.services.pricing import find_catalog_price
from frontoffice.models import (
    User, StaffRole, LabOrder, LabTest, LabOrderStatus, LabTestStatus, ServiceCategory
)
from frontoffice.schemas import (
    LabOrderCreate,
    LabOrderResponse,
    SampleCollection,
    LabResultsUpdate
)
from frontoffice.auth import get_current_active_user, require_roles
from frontoffice.routers.patients import get_patient_or_404
from frontoffice.routers.appointments import get_appointment_or_404

router = APIRouter(prefix="/lab/orders", tags=["Lab Orders"])


async def get_lab_order_or_404(db: AsyncSession, order_id: int) -> LabOrder:
    result = await db.execute(select(LabOrder).where(LabOrder.id == order_id))
    order = result.scalars().first()

    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Lab order with ID {order_id} not found"
        )
    return order


def _require_status(order: LabOrder, *allowed: LabOrderStatus):
    if order.status not in allowed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Lab order {order.order_number} is {order.status.value}; "
                   f"expected {' or '.join(s.value for s in allowed)}"
        )


@router.post("", response_model=LabOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_lab_order(
    order: LabOrderCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    redis = Depends(get_redis),
    current_user: User = Depends(get_current_active_user)
):
    patient = await get_patient_or_404(db, order.patient_id)
    if order.linked_appointment_id:
        appointment = await get_appointment_or_404(db, order.linked_appointment_id)
        if appointment.patient_id != patient.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Linked appointment belongs to a different patient"
            )

    tests = []
    for test in order.tests:
        values = test.model_dump()
        if values["price"] is None:
            entry = await find_catalog_price(db, ServiceCategory.LAB_TEST, test.name)
            if entry is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Lab test '{test.name}' has no catalog price; give a price or add it to the catalog"
                )
            values["name"] = entry.name
            values["price"] = entry.price
        tests.append(LabTest(**values))

    order_date = datetime.utcnow()
    order_number = await SequenceService(redis, db).next_lab_order_number(order_date.date())

    db_order = LabOrder(
        order_number=order_number,
        patient_id=patient.id,
        patient_name=patient.full_name,
        ordering_doctor=order.ordering_doctor,
        order_date=order_date,
        clinical_notes=order.clinical_notes,
        linked_appointment_id=order.linked_appointment_id,
        status=LabOrderStatus.PENDING_SAMPLE,
        tests=tests
    )
    db.add(db_order)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Lab order {order_number} placed for {patient.full_name}",
        target_type="lab_order",
        target_id=db_order.id,
        details={"tests": [test.name for test in tests]}
    )
    return db_order


@router.get("", response_model=List[LabOrderResponse])
async def get_lab_orders(
    patient_id: Optional[int] = None,
    order_status: Optional[LabOrderStatus] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = select(LabOrder)
    if patient_id:
        query = query.where(LabOrder.patient_id == patient_id)
    if order_status:
        query = query.where(LabOrder.status == order_status)

    result = await db.execute(
        query.order_by(LabOrder.order_date.desc(), LabOrder.id.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.get("/{order_id}", response_model=LabOrderResponse)
async def get_lab_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_lab_order_or_404(db, order_id)


@router.patch("/{order_id}/collect-sample", response_model=LabOrderResponse)
async def collect_sample(
    order_id: int,
    collection: SampleCollection,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    order = await get_lab_order_or_404(db, order_id)
    _require_status(order, LabOrderStatus.PENDING_SAMPLE)

    order.status = LabOrderStatus.SAMPLE_COLLECTED
    order.sample_collection_date = datetime.utcnow()
    order.sample_collector = collection.collector or current_user.full_name

    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="SAMPLE_COLLECTED",
        description=f"Sample collected for lab order {order.order_number}",
        target_type="lab_order",
        target_id=order.id
    )
    return order


@router.patch("/{order_id}/processing", response_model=LabOrderResponse)
async def start_processing(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    order = await get_lab_order_or_404(db, order_id)
    _require_status(order, LabOrderStatus.SAMPLE_COLLECTED)

    order.status = LabOrderStatus.PROCESSING
    await db.commit()
    return order


@router.put("/{order_id}/results", response_model=LabOrderResponse)
async def enter_results(
    order_id: int,
    results: LabResultsUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Record results for some or all tests.

    The order moves to Awaiting Verification once every active test has a result,
    otherwise it stays in Processing.
    """
    order = await get_lab_order_or_404(db, order_id)
    _require_status(order, LabOrderStatus.SAMPLE_COLLECTED, LabOrderStatus.PROCESSING)

    tests_by_id = {test.id: test for test in order.tests}
    for entry in results.results:
        test = tests_by_id.get(entry.test_id)
        if not test:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Test with ID {entry.test_id} is not part of lab order {order.order_number}"
            )
        if test.status == LabTestStatus.CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Test '{test.name}' has been cancelled"
            )

        test.result = entry.result
        test.status = LabTestStatus.RESULT_ENTERED
        for field in ("reference_range", "unit", "notes"):
            value = getattr(entry, field)
            if value is not None:
                setattr(test, field, value)

    active_tests = [t for t in order.tests if t.status != LabTestStatus.CANCELLED]
    if all(t.status == LabTestStatus.RESULT_ENTERED for t in active_tests):
        order.status = LabOrderStatus.AWAITING_VERIFICATION
    else:
        order.status = LabOrderStatus.PROCESSING

    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="RESULTS_ENTERED",
        description=f"Results entered for lab order {order.order_number}",
        target_type="lab_order",
        target_id=order.id,
        details={"test_ids": [entry.test_id for entry in results.results]}
    )
    return order


@router.patch("/{order_id}/verify", response_model=LabOrderResponse)
async def verify_results(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_roles(StaffRole.LAB_TECHNICIAN, StaffRole.DOCTOR))
):
    order = await get_lab_order_or_404(db, order_id)
    _require_status(order, LabOrderStatus.AWAITING_VERIFICATION)

    order.status = LabOrderStatus.RESULTS_READY
    order.verified_by = current_user.full_name
    order.verification_date = datetime.utcnow()

    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="VERIFY",
        description=f"Results verified for lab order {order.order_number}",
        target_type="lab_order",
        target_id=order.id
    )
    return order


@router.patch("/{order_id}/cancel", response_model=LabOrderResponse)
async def cancel_lab_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    order = await get_lab_order_or_404(db, order_id)
    if order.status in (LabOrderStatus.RESULTS_READY, LabOrderStatus.CANCELLED):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel a lab order that is {order.status.value}"
        )
    invoice_number = await active_invoice_number(db, order.invoice_id)
    if invoice_number:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Lab order {order.order_number} is billed on invoice {invoice_number}; cancel the invoice first"
        )

    order.status = LabOrderStatus.CANCELLED
    for test in order.tests:
        test.status = LabTestStatus.CANCELLED

    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="CANCEL",
        description=f"Lab order {order.order_number} cancelled",
        target_type="lab_order",
        target_id=order.id
    )
    return order

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import List, Optional
from datetime import datetime, date, timedelta
from decimal import Decimal
from frontoffice.config import settings
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.redis_client import get_redis
from frontoffice.services.mongo_services import record_activity
from frontoffice.services.pricing import appointment_fee, get_general_fees, nights_stayed
from frontoffice.services.sequences import SequenceService
from frontoffice.services.billing import (
    OPEN_STATUSES,
    EDITABLE_STATUSES,
    balance_due,
    compute_totals,
    derive_invoice_status,
    line_total,
    linked_payment_status,
    to_money
)
from frontoffice.models import (
    User, StaffRole, Invoice, InvoiceLineItem, InvoicePayment, InvoiceStatus,
    LineItemSource, PaymentStatus, Appointment, LabOrder, LabOrderStatus,
    LabTestStatus, Prescription, PrescriptionStatus, Admission, ServiceCategory
)
from frontoffice.schemas import InvoiceCreate, InvoiceUpdate, InvoiceResponse, PaymentCreate
from frontoffice.auth import get_current_active_user, require_roles
from frontoffice.routers.patients import get_patient_or_404
from frontoffice.routers.appointments import get_appointment_or_404
from frontoffice.routers.lab_orders import get_lab_order_or_404
from frontoffice.routers.prescriptions import get_prescription_or_404
from frontoffice.routers.inventory import get_medication_or_404
from frontoffice.routers.admissions import get_admission_or_404
from frontoffice.routers.wards import get_bed_or_404, get_ward_or_404
from frontoffice.routers.pricing import get_service_price_or_404

router = APIRouter(prefix="/billing/invoices", tags=["Billing"])


async def get_invoice_or_404(db: AsyncSession, invoice_id: int) -> Invoice:
    result = await db.execute(select(Invoice).where(Invoice.id == invoice_id))
    invoice = result.scalars().first()

    if not invoice:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Invoice with ID {invoice_id} not found"
        )
    return invoice


def _check_billable(record, label: str, patient_id: int):
    if record.patient_id != patient_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{label} belongs to a different patient"
        )
    if record.invoice_id is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{label} is already on invoice ID {record.invoice_id}"
        )


def _build_line_items(items: List[dict]) -> List[InvoiceLineItem]:
    return [
        InvoiceLineItem(
            description=item["description"],
            quantity=item["quantity"],
            unit_price=to_money(item["unit_price"]),
            total=line_total(item["quantity"], item["unit_price"]),
            source_type=item.get("source_type", LineItemSource.MANUAL),
            source_id=item.get("source_id")
        )
        for item in items
    ]


def _apply_totals(invoice: Invoice):
    totals = compute_totals(
        [(item.quantity, item.unit_price) for item in invoice.line_items],
        invoice.tax_rate
    )
    invoice.sub_total = totals.sub_total
    invoice.tax_amount = totals.tax_amount
    invoice.total_amount = totals.total_amount


async def _sync_linked_records(db: AsyncSession, invoice: Invoice):
    """Mirror the invoice payment state onto the lab orders, prescriptions and appointment it bills"""
    linked_status = linked_payment_status(invoice.status)
    if linked_status is None:
        return

    await db.execute(
        update(LabOrder)
        .where(LabOrder.invoice_id == invoice.id)
        .values(payment_status=linked_status)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Appointment)
        .where(Appointment.invoice_id == invoice.id)
        .values(payment_status=linked_status)
        .execution_options(synchronize_session=False)
    )
    # partial payment does not release medication
    if linked_status == PaymentStatus.PAID:
        await db.execute(
            update(Prescription)
            .where(Prescription.invoice_id == invoice.id)
            .values(payment_status=PaymentStatus.PAID)
            .execution_options(synchronize_session=False)
        )


async def _release_linked_records(db: AsyncSession, invoice: Invoice):
    await db.execute(
        update(LabOrder)
        .where(LabOrder.invoice_id == invoice.id)
        .values(invoice_id=None, payment_status=PaymentStatus.PENDING_PAYMENT)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Appointment)
        .where(Appointment.invoice_id == invoice.id)
        .values(invoice_id=None, payment_status=PaymentStatus.PENDING_PAYMENT)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Prescription)
        .where(Prescription.invoice_id == invoice.id)
        .values(invoice_id=None, is_billed=False, payment_status=PaymentStatus.PENDING_PAYMENT)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Admission)
        .where(Admission.invoice_id == invoice.id)
        .values(invoice_id=None)
        .execution_options(synchronize_session=False)
    )


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    redis = Depends(get_redis),
    current_user: User = Depends(get_current_active_user)
):
    """
    Create an invoice.

    AUTO items: appointment_id (consultation or check-up fee from the fee schedule),
    lab_order_ids (one line per test), prescription_ids (quantity x unit price),
    services (catalog price), admission_id (nights stayed x ward tariff).
    Each source may only be billed once.
    MANUAL items: line_items, added after the generated ones.
    """
    patient = await get_patient_or_404(db, invoice.patient_id)
    items = []

    appointment = None
    if invoice.appointment_id:
        appointment = await get_appointment_or_404(db, invoice.appointment_id)
        _check_billable(appointment, f"Appointment {appointment.id}", patient.id)
        if invoice.include_consultation_fee:
            fees = await get_general_fees(db)
            items.append({
                "description": f"{appointment.appointment_type.value} with {appointment.provider_name}",
                "quantity": 1,
                "unit_price": appointment_fee(fees, appointment.appointment_type),
                "source_type": LineItemSource.CONSULTATION,
                "source_id": appointment.id
            })

    lab_orders = []
    for order_id in dict.fromkeys(invoice.lab_order_ids):
        order = await get_lab_order_or_404(db, order_id)
        _check_billable(order, f"Lab order {order.order_number}", patient.id)
        if order.status == LabOrderStatus.CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Lab order {order.order_number} is cancelled"
            )
        lab_orders.append(order)
        for test in order.tests:
            if test.status == LabTestStatus.CANCELLED:
                continue
            items.append({
                "description": f"Lab test: {test.name} ({order.order_number})",
                "quantity": 1,
                "unit_price": test.price,
                "source_type": LineItemSource.LAB,
                "source_id": order.id
            })

    prescriptions = []
    for prescription_id in dict.fromkeys(invoice.prescription_ids):
        prescription = await get_prescription_or_404(db, prescription_id)
        _check_billable(prescription, f"Prescription {prescription.id}", patient.id)
        if prescription.status == PrescriptionStatus.CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Prescription {prescription.id} is cancelled"
            )
        medication = await get_medication_or_404(db, prescription.medication_id)
        prescriptions.append(prescription)
        items.append({
            "description": f"{medication.name} {prescription.dosage}",
            "quantity": prescription.quantity,
            "unit_price": medication.price_per_unit,
            "source_type": LineItemSource.PRESCRIPTION,
            "source_id": prescription.id
        })

    for charge in invoice.services:
        entry = await get_service_price_or_404(db, charge.service_id, ServiceCategory.GENERAL_SERVICE)
        if not entry.is_active:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Service {entry.name} is no longer offered"
            )
        items.append({
            "description": entry.name,
            "quantity": charge.quantity,
            "unit_price": entry.price,
            "source_type": LineItemSource.GENERAL_SERVICE,
            "source_id": entry.id
        })

    admission = None
    if invoice.admission_id:
        admission = await get_admission_or_404(db, invoice.admission_id)
        _check_billable(admission, f"Admission {admission.id}", patient.id)
        if admission.bed_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Admission {admission.id} has no bed in the ward registry to price the stay"
            )
        bed = await get_bed_or_404(db, admission.bed_id)
        ward = await get_ward_or_404(db, bed.ward_id)
        nights = nights_stayed(admission.admission_date, admission.discharge_date or datetime.utcnow())
        items.append({
            "description": f"Hospital stay: {ward.name} {bed.label}, {nights} night(s)",
            "quantity": nights,
            "unit_price": ward.per_diem_rate,
            "source_type": LineItemSource.HOSPITAL_STAY,
            "source_id": admission.id
        })

    items.extend(item.model_dump() for item in invoice.line_items)

    if not items:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An invoice needs at least one line item or billable source"
        )

    invoice_date = datetime.utcnow()
    due_date = invoice.due_date or invoice_date.date() + timedelta(days=settings.INVOICE_DUE_DAYS)
    if due_date < invoice_date.date():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="due_date cannot be before the invoice date"
        )

    invoice_number = await SequenceService(redis, db).next_invoice_number(invoice_date.date())
    db_invoice = Invoice(
        invoice_number=invoice_number,
        patient_id=patient.id,
        patient_name=patient.full_name,
        appointment_id=appointment.id if appointment else None,
        invoice_date=invoice_date,
        due_date=due_date,
        status=invoice.status,
        tax_rate=to_money(invoice.tax_rate),
        amount_paid=Decimal("0.00"),
        notes=invoice.notes,
        created_by=current_user.full_name,
        line_items=_build_line_items(items),
        payments=[]
    )
    _apply_totals(db_invoice)
    # a zero total is settled as soon as it is issued
    db_invoice.status = derive_invoice_status(
        db_invoice.status, db_invoice.total_amount, db_invoice.amount_paid, due_date
    )
    db.add(db_invoice)
    await db.flush()

    if appointment:
        appointment.invoice_id = db_invoice.id
        appointment.payment_status = PaymentStatus.BILLED
    for order in lab_orders:
        order.invoice_id = db_invoice.id
        order.payment_status = PaymentStatus.BILLED
    for prescription in prescriptions:
        prescription.invoice_id = db_invoice.id
        prescription.is_billed = True
    if admission:
        admission.invoice_id = db_invoice.id

    await db.flush()
    await _sync_linked_records(db, db_invoice)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="CREATE",
        description=f"Invoice {invoice_number} issued to {patient.full_name} for {db_invoice.total_amount}",
        target_type="invoice",
        target_id=db_invoice.id,
        details={"line_items": len(items), "status": db_invoice.status.value}
    )
    return db_invoice


@router.get("", response_model=List[InvoiceResponse])
async def get_invoices(
    patient_id: Optional[int] = None,
    invoice_status: Optional[InvoiceStatus] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = select(Invoice)
    if patient_id:
        query = query.where(Invoice.patient_id == patient_id)
    if invoice_status:
        query = query.where(Invoice.status == invoice_status)

    result = await db.execute(
        query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.post("/mark-overdue")
async def mark_overdue_invoices(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(StaffRole.RECEPTIONIST))
):
    """Re-derive every open invoice; unpaid ones past their due date become Overdue"""
    result = await db.execute(select(Invoice).where(Invoice.status.in_(OPEN_STATUSES)))
    invoices = result.scalars().all()

    today = date.today()
    marked = []
    for invoice in invoices:
        new_status = derive_invoice_status(
            invoice.status, invoice.total_amount, invoice.amount_paid, invoice.due_date, today
        )
        if new_status == InvoiceStatus.OVERDUE and invoice.status != InvoiceStatus.OVERDUE:
            marked.append(invoice.invoice_number)
        changed = new_status != invoice.status
        invoice.status = new_status
        if changed:
            await _sync_linked_records(db, invoice)

    await db.commit()
    return {"checked": len(invoices), "marked_overdue": len(marked), "invoice_numbers": marked}


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_invoice_or_404(db, invoice_id)


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: int,
    invoice_update: InvoiceUpdate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Edit an unpaid invoice and recompute its totals"""
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice.status not in EDITABLE_STATUSES or invoice.amount_paid > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invoice {invoice.invoice_number} is {invoice.status.value} and can no longer be edited"
        )

    if invoice_update.line_items is not None:
        invoice.line_items = _build_line_items(
            [item.model_dump() for item in invoice_update.line_items]
        )
    if invoice_update.tax_rate is not None:
        invoice.tax_rate = to_money(invoice_update.tax_rate)
    if invoice_update.due_date is not None:
        invoice.due_date = invoice_update.due_date
    if invoice_update.notes is not None:
        invoice.notes = invoice_update.notes

    _apply_totals(invoice)
    invoice.status = derive_invoice_status(
        invoice.status, invoice.total_amount, invoice.amount_paid, invoice.due_date
    )

    await _sync_linked_records(db, invoice)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="UPDATE",
        description=f"Invoice {invoice.invoice_number} updated, total now {invoice.total_amount}",
        target_type="invoice",
        target_id=invoice.id
    )
    return invoice


@router.patch("/{invoice_id}/issue", response_model=InvoiceResponse)
async def issue_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice.status != InvoiceStatus.DRAFT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only draft invoices can be issued (this one is {invoice.status.value})"
        )

    invoice.status = derive_invoice_status(
        InvoiceStatus.PENDING_PAYMENT, invoice.total_amount, invoice.amount_paid, invoice.due_date
    )
    await _sync_linked_records(db, invoice)
    await db.commit()
    return invoice


@router.post("/{invoice_id}/payments", response_model=InvoiceResponse)
async def record_payment(
    invoice_id: int,
    payment: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_roles(StaffRole.RECEPTIONIST))
):
    """
    Record a payment against an invoice.

    Full payment marks linked lab orders, prescriptions and the appointment Paid;
    a partial payment marks lab orders and the appointment Partially Paid.
    """
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED, InvoiceStatus.PAID):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot record a payment on a {invoice.status.value} invoice"
        )

    amount = to_money(payment.amount)
    outstanding = balance_due(invoice.total_amount, invoice.amount_paid)
    if amount > outstanding:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Payment of {amount} exceeds the balance due of {outstanding}"
        )

    invoice.payments.append(InvoicePayment(
        amount=amount,
        method=payment.method,
        reference=payment.reference,
        received_by=current_user.full_name,
        paid_at=datetime.utcnow()
    ))
    invoice.amount_paid = to_money(Decimal(str(invoice.amount_paid)) + amount)
    invoice.status = derive_invoice_status(
        invoice.status, invoice.total_amount, invoice.amount_paid, invoice.due_date
    )

    await _sync_linked_records(db, invoice)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="PAYMENT",
        description=f"Payment of {amount} recorded on invoice {invoice.invoice_number}",
        target_type="invoice",
        target_id=invoice.id,
        details={
            "method": payment.method,
            "amount_paid": str(invoice.amount_paid),
            "status": invoice.status.value
        }
    )
    return invoice


@router.patch("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Cancel an unpaid invoice and release its sources so they can be billed again"""
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice.status == InvoiceStatus.CANCELLED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invoice is already cancelled"
        )
    if invoice.amount_paid > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot cancel an invoice that has payments recorded"
        )

    invoice.status = InvoiceStatus.CANCELLED
    await _release_linked_records(db, invoice)
    await db.commit()

    await record_activity(
        mongo_db, current_user,
        action="CANCEL",
        description=f"Invoice {invoice.invoice_number} cancelled",
        target_type="invoice",
        target_id=invoice.id
    )
    return invoice

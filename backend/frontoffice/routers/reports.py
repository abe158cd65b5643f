from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_
from typing import Optional
from datetime import date, datetime, timedelta
import logging
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import DailySummaryService
from frontoffice.services.billing import OPEN_STATUSES, balance_due
from frontoffice.models import (
    User, Appointment, AppointmentStatus, LabOrder, LabOrderStatus, Medication,
    Prescription, PrescriptionStatus, Invoice, InvoicePayment, InvoiceStatus
)
from frontoffice.auth import get_current_active_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])

# invoices that never count towards billed revenue
UNBILLED_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED)


def _date_range(start_date: date, end_date: date):
    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be on or before end_date"
        )
    return (
        datetime.combine(start_date, datetime.min.time()),
        datetime.combine(end_date, datetime.max.time())
    )


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total > 0 else 0


async def _invoice_stats(db: AsyncSession, start_datetime: datetime, end_datetime: datetime) -> dict:
    in_range = and_(
        Invoice.invoice_date >= start_datetime,
        Invoice.invoice_date <= end_datetime
    )

    result = await db.execute(
        select(Invoice.status, func.count(Invoice.id)).where(in_range).group_by(Invoice.status)
    )
    by_status = {row[0].value: row[1] for row in result}

    result = await db.execute(
        select(
            func.sum(Invoice.total_amount).label('billed'),
            func.sum(Invoice.amount_paid).label('paid')
        )
        .where(and_(in_range, Invoice.status.notin_(UNBILLED_STATUSES)))
    )
    totals = result.first()
    billed = totals.billed or 0
    paid = totals.paid or 0

    result = await db.execute(
        select(func.sum(InvoicePayment.amount)).where(
            and_(
                InvoicePayment.paid_at >= start_datetime,
                InvoicePayment.paid_at <= end_datetime
            )
        )
    )
    collected = result.scalar() or 0

    return {
        "count": sum(by_status.values()),
        "total_billed": float(billed),
        "total_collected": float(collected),
        "outstanding": float(billed - paid),
        "by_status": by_status
    }


async def _appointment_stats(db: AsyncSession, start_date: date, end_date: date) -> dict:
    result = await db.execute(
        select(Appointment.status, func.count(Appointment.id))
        .where(
            and_(
                Appointment.appointment_date >= start_date,
                Appointment.appointment_date <= end_date
            )
        )
        .group_by(Appointment.status)
    )
    by_status = {row[0].value: row[1] for row in result}
    total = sum(by_status.values())

    return {
        "total": total,
        "by_status": by_status,
        "cancellation_rate": _rate(by_status.get(AppointmentStatus.CANCELLED.value, 0), total),
        "completion_rate": _rate(by_status.get(AppointmentStatus.COMPLETED.value, 0), total)
    }


async def _lab_stats(db: AsyncSession, start_datetime: datetime, end_datetime: datetime) -> dict:
    in_range = and_(
        LabOrder.order_date >= start_datetime,
        LabOrder.order_date <= end_datetime
    )

    result = await db.execute(
        select(LabOrder.status, func.count(LabOrder.id)).where(in_range).group_by(LabOrder.status)
    )
    by_status = {row[0].value: row[1] for row in result}

    # turnaround runs from sample collection to verification
    result = await db.execute(
        select(LabOrder.sample_collection_date, LabOrder.verification_date).where(
            and_(
                in_range,
                LabOrder.sample_collection_date.isnot(None),
                LabOrder.verification_date.isnot(None)
            )
        )
    )
    durations = [
        (row.verification_date - row.sample_collection_date).total_seconds() / 3600
        for row in result
    ]

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "verified_orders": len(durations),
        "average_turnaround_hours": round(sum(durations) / len(durations), 2) if durations else None
    }


async def _top_dispensed(db: AsyncSession, start_datetime: datetime, end_datetime: datetime, limit: int = 5):
    result = await db.execute(
        select(
            Prescription.medication_name,
            func.count(Prescription.id).label('times_dispensed'),
            func.sum(Prescription.quantity).label('units')
        )
        .where(
            and_(
                Prescription.status == PrescriptionStatus.DISPENSED,
                Prescription.dispensed_at >= start_datetime,
                Prescription.dispensed_at <= end_datetime
            )
        )
        .group_by(Prescription.medication_name)
        .order_by(func.sum(Prescription.quantity).desc())
        .limit(limit)
    )
    return [
        {
            "medication": row.medication_name,
            "times_dispensed": row.times_dispensed,
            "units": int(row.units or 0)
        }
        for row in result
    ]


async def _pharmacy_stats(db: AsyncSession, start_datetime: datetime, end_datetime: datetime) -> dict:
    result = await db.execute(
        select(Prescription.status, func.count(Prescription.id))
        .where(
            and_(
                Prescription.prescription_date >= start_datetime,
                Prescription.prescription_date <= end_datetime
            )
        )
        .group_by(Prescription.status)
    )
    by_status = {row[0].value: row[1] for row in result}

    result = await db.execute(
        select(func.sum(Prescription.quantity)).where(
            and_(
                Prescription.status == PrescriptionStatus.DISPENSED,
                Prescription.dispensed_at >= start_datetime,
                Prescription.dispensed_at <= end_datetime
            )
        )
    )
    dispensed_units = result.scalar() or 0

    return {
        "prescriptions_by_status": by_status,
        "dispensed_units": int(dispensed_units),
        "top_dispensed_medications": await _top_dispensed(db, start_datetime, end_datetime)
    }


def _low_stock_condition():
    return or_(Medication.stock <= 0, Medication.stock < Medication.reorder_level)


async def _low_stock_count(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(Medication.id)).where(_low_stock_condition()))
    return result.scalar()


async def build_summary(db: AsyncSession, start_date: date, end_date: date) -> dict:
    """Cross-department summary; dates come back as ISO strings so the result can be stored as-is"""
    start_datetime, end_datetime = _date_range(start_date, end_date)

    return {
        "date_range": {
            "start": start_date.isoformat(),
            "end": end_date.isoformat()
        },
        "invoices": await _invoice_stats(db, start_datetime, end_datetime),
        "appointments": await _appointment_stats(db, start_date, end_date),
        "lab_orders": await _lab_stats(db, start_datetime, end_datetime),
        "pharmacy": await _pharmacy_stats(db, start_datetime, end_datetime),
        "low_stock_count": await _low_stock_count(db)
    }


@router.get("/summary")
async def get_summary_report(
    start_date: date = Query(..., description="Start date"),
    end_date: date = Query(..., description="End date"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Invoices, appointments, lab and pharmacy activity for a date range"""
    return await build_summary(db, start_date, end_date)


@router.get("/revenue")
async def get_revenue_report(
    start_date: date = Query(..., description="Start date"),
    end_date: date = Query(..., description="End date"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Revenue report for date range: billed by invoice date, collected by payment date"""
    start_datetime, end_datetime = _date_range(start_date, end_date)
    invoices = await _invoice_stats(db, start_datetime, end_datetime)

    result = await db.execute(
        select(
            func.date(Invoice.invoice_date).label('date'),
            func.sum(Invoice.total_amount).label('billed')
        )
        .where(
            and_(
                Invoice.invoice_date >= start_datetime,
                Invoice.invoice_date <= end_datetime,
                Invoice.status.notin_(UNBILLED_STATUSES)
            )
        )
        .group_by(func.date(Invoice.invoice_date))
    )
    daily = {str(row.date): {"billed": float(row.billed or 0), "collected": 0.0} for row in result}

    result = await db.execute(
        select(
            func.date(InvoicePayment.paid_at).label('date'),
            func.sum(InvoicePayment.amount).label('collected')
        )
        .where(
            and_(
                InvoicePayment.paid_at >= start_datetime,
                InvoicePayment.paid_at <= end_datetime
            )
        )
        .group_by(func.date(InvoicePayment.paid_at))
    )
    for row in result:
        day = daily.setdefault(str(row.date), {"billed": 0.0, "collected": 0.0})
        day["collected"] = float(row.collected or 0)

    result = await db.execute(
        select(
            InvoicePayment.method,
            func.sum(InvoicePayment.amount).label('amount')
        )
        .where(
            and_(
                InvoicePayment.paid_at >= start_datetime,
                InvoicePayment.paid_at <= end_datetime
            )
        )
        .group_by(InvoicePayment.method)
    )
    by_payment_method = {row.method: float(row.amount) for row in result}

    return {
        "date_range": {
            "start": start_date,
            "end": end_date
        },
        "total_invoices": invoices["count"],
        "revenue": {
            "billed": invoices["total_billed"],
            "collected": invoices["total_collected"],
            "outstanding": invoices["outstanding"]
        },
        "by_payment_method": by_payment_method,
        "daily_breakdown": [{"date": day, **values} for day, values in sorted(daily.items())]
    }


@router.get("/appointments")
async def get_appointment_analytics(
    start_date: date = Query(..., description="Start date"),
    end_date: date = Query(..., description="End date"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Appointment analytics for date range"""
    _date_range(start_date, end_date)
    stats = await _appointment_stats(db, start_date, end_date)

    result = await db.execute(
        select(
            Appointment.appointment_date.label('date'),
            func.count(Appointment.id).label('count')
        )
        .where(
            and_(
                Appointment.appointment_date >= start_date,
                Appointment.appointment_date <= end_date
            )
        )
        .group_by(Appointment.appointment_date)
        .order_by(Appointment.appointment_date)
    )
    by_day = [{"date": str(row.date), "count": row.count} for row in result]

    return {
        "date_range": {
            "start": start_date,
            "end": end_date
        },
        "total_appointments": stats["total"],
        "by_status": stats["by_status"],
        "by_day": by_day,
        "metrics": {
            "cancellation_rate": stats["cancellation_rate"],
            "completion_rate": stats["completion_rate"]
        }
    }


@router.get("/lab")
async def get_lab_report(
    start_date: date = Query(..., description="Start date"),
    end_date: date = Query(..., description="End date"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    start_datetime, end_datetime = _date_range(start_date, end_date)
    stats = await _lab_stats(db, start_datetime, end_datetime)

    result = await db.execute(
        select(func.count(LabOrder.id)).where(
            LabOrder.status.notin_([LabOrderStatus.RESULTS_READY, LabOrderStatus.CANCELLED])
        )
    )

    return {
        "date_range": {
            "start": start_date,
            "end": end_date
        },
        **stats,
        "open_orders": result.scalar()
    }


@router.get("/pharmacy")
async def get_pharmacy_report(
    start_date: date = Query(..., description="Start date"),
    end_date: date = Query(..., description="End date"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Dispensing trend and current stock alerts"""
    start_datetime, end_datetime = _date_range(start_date, end_date)
    stats = await _pharmacy_stats(db, start_datetime, end_datetime)

    result = await db.execute(
        select(
            func.date(Prescription.dispensed_at).label('date'),
            func.count(Prescription.id).label('prescriptions'),
            func.sum(Prescription.quantity).label('units')
        )
        .where(
            and_(
                Prescription.status == PrescriptionStatus.DISPENSED,
                Prescription.dispensed_at >= start_datetime,
                Prescription.dispensed_at <= end_datetime
            )
        )
        .group_by(func.date(Prescription.dispensed_at))
        .order_by(func.date(Prescription.dispensed_at))
    )
    dispensing_trend = [
        {"date": str(row.date), "prescriptions": row.prescriptions, "units": int(row.units or 0)}
        for row in result
    ]

    result = await db.execute(
        select(Medication).where(_low_stock_condition()).order_by(Medication.stock, Medication.name)
    )
    low_stock = [
        {
            "id": medication.id,
            "name": medication.name,
            "dosage": medication.dosage,
            "stock": medication.stock,
            "reorder_level": medication.reorder_level,
            "stock_status": medication.stock_status.value
        }
        for medication in result.scalars().all()
    ]

    return {
        "date_range": {
            "start": start_date,
            "end": end_date
        },
        **stats,
        "dispensing_trend": dispensing_trend,
        "low_stock": low_stock
    }


@router.get("/outstanding-invoices")
async def get_outstanding_invoices(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Open invoices that still carry a balance, oldest due date first"""
    result = await db.execute(
        select(Invoice)
        .where(
            and_(
                Invoice.status.in_(OPEN_STATUSES),
                Invoice.total_amount > Invoice.amount_paid
            )
        )
        .order_by(Invoice.due_date, Invoice.id)
    )
    today = date.today()
    invoices = [
        {
            "id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "patient_id": invoice.patient_id,
            "patient_name": invoice.patient_name,
            "status": invoice.status.value,
            "due_date": invoice.due_date,
            "days_overdue": max((today - invoice.due_date).days, 0),
            "total_amount": float(invoice.total_amount),
            "balance_due": float(balance_due(invoice.total_amount, invoice.amount_paid))
        }
        for invoice in result.scalars().all()
    ]

    return {
        "total": len(invoices),
        "total_outstanding": round(sum(item["balance_due"] for item in invoices), 2),
        "invoices": invoices
    }


@router.post("/daily-summary")
async def generate_daily_summary(
    report_date: Optional[date] = Query(None, description="Date for report (default: today)"),
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Compute the one-day summary and store it as that day's snapshot"""
    if not report_date:
        report_date = date.today()

    summary = await build_summary(db, report_date, report_date)
    summary["generated_by"] = current_user.full_name

    await DailySummaryService(mongo_db).save_summary(report_date, summary)
    logger.info(f"Daily summary stored for {report_date}")

    return await DailySummaryService(mongo_db).get_summary(report_date)


@router.get("/daily-summaries")
async def get_daily_summaries(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    """Stored snapshots, newest first; defaults to the last 30 days"""
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=30)
    _date_range(start_date, end_date)

    summaries = await DailySummaryService(mongo_db).get_summaries_range(
        start_date=start_date,
        end_date=end_date
    )
    return {
        "start_date": start_date,
        "end_date": end_date,
        "total_days": len(summaries),
        "summaries": summaries
    }

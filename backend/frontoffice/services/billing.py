"""
Invoice arithmetic and payment status rules.

All money is handled as Decimal and rounded half-up to cents at every step
that produces a stored amount.
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from frontoffice.models import Invoice, InvoiceStatus, PaymentStatus

CENT = Decimal("0.01")

# statuses that accept payments and are swept for overdue
OPEN_STATUSES = (
    InvoiceStatus.PENDING_PAYMENT,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.OVERDUE,
    InvoiceStatus.AWAITING_PUSH_PAYMENT,
    InvoiceStatus.BILLED,
)

EDITABLE_STATUSES = (
    InvoiceStatus.DRAFT,
    InvoiceStatus.PENDING_PAYMENT,
    InvoiceStatus.AWAITING_PUSH_PAYMENT,
)


class InvoiceTotals(NamedTuple):
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: int, unit_price) -> Decimal:
    return to_money(Decimal(quantity) * Decimal(str(unit_price)))


def compute_totals(items: Iterable[Tuple[int, Decimal]], tax_rate) -> InvoiceTotals:
    """
    items: (quantity, unit_price) pairs
    tax_rate: percentage between 0 and 100
    """
    sub_total = to_money(sum((line_total(qty, price) for qty, price in items), Decimal("0")))
    tax_amount = to_money(sub_total * Decimal(str(tax_rate)) / Decimal("100"))
    return InvoiceTotals(sub_total, tax_amount, to_money(sub_total + tax_amount))


def balance_due(total_amount, amount_paid) -> Decimal:
    return to_money(max(Decimal(str(total_amount)) - Decimal(str(amount_paid)), Decimal("0")))


def derive_invoice_status(
    current: InvoiceStatus,
    total_amount,
    amount_paid,
    due_date: date,
    today: Optional[date] = None
) -> InvoiceStatus:
    if current in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
        return current

    today = today or date.today()
    paid = Decimal(str(amount_paid))

    if paid >= Decimal(str(total_amount)):
        return InvoiceStatus.PAID
    if paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    if due_date < today:
        return InvoiceStatus.OVERDUE
    if current in (InvoiceStatus.AWAITING_PUSH_PAYMENT, InvoiceStatus.BILLED):
        return current
    return InvoiceStatus.PENDING_PAYMENT


def linked_payment_status(invoice_status: InvoiceStatus) -> Optional[PaymentStatus]:
    """Payment status pushed to lab orders and appointments on the invoice, None means leave as is"""
    if invoice_status == InvoiceStatus.PAID:
        return PaymentStatus.PAID
    if invoice_status == InvoiceStatus.PARTIALLY_PAID:
        return PaymentStatus.PARTIALLY_PAID
    return None


async def active_invoice_number(db: AsyncSession, invoice_id: Optional[int]) -> Optional[str]:
    """Number of the invoice a record is billed on, None when unbilled or that invoice was cancelled"""
    if invoice_id is None:
        return None
    result = await db.execute(
        select(Invoice.invoice_number).where(
            Invoice.id == invoice_id,
            Invoice.status != InvoiceStatus.CANCELLED
        )
    )
    return result.scalars().first()

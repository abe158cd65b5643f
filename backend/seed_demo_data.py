"""
Demo Database Seeder - fills a fresh database with a working hospital day
Run: python seed_demo_data.py
"""
import asyncio
from datetime import datetime, date, timedelta
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from frontoffice.database import AsyncSessionLocal, init_db
from frontoffice.mongo_client import get_mongo_db, create_mongo_indexes, close_mongo
from frontoffice.redis_client import get_redis, close_redis
from frontoffice.config import settings
from frontoffice.services.billing import compute_totals, derive_invoice_status, line_total, to_money
from frontoffice.services.inventory import decrement_stock
from frontoffice.services.mongo_services import ActivityLogService, StockMovementService
from frontoffice.services.pricing import appointment_fee
from frontoffice.services.sequences import SequenceService
from frontoffice.models import (
    User, StaffRole, Patient, Gender, Appointment, AppointmentType, AppointmentStatus,
    PaymentStatus, LabOrder, LabTest, LabOrderStatus, LabTestStatus, Medication,
    Prescription, PrescriptionStatus, Invoice, InvoiceLineItem, InvoicePayment,
    InvoiceStatus, LineItemSource, Admission, AdmissionStatus, Shift, ShiftType,
    Ward, Bed, BedStatus, GeneralFees, ServicePrice, ServiceCategory
)
from frontoffice.auth import get_password_hash
import random


STAFF_DATA = [
    {"username": "dr.okafor", "full_name": "Dr. Chidi Okafor", "role": StaffRole.DOCTOR},
    {"username": "dr.lindqvist", "full_name": "Dr. Maja Lindqvist", "role": StaffRole.DOCTOR},
    {"username": "nurse.reyes", "full_name": "Ana Reyes", "role": StaffRole.NURSE},
    {"username": "nurse.baker", "full_name": "Tom Baker", "role": StaffRole.NURSE},
    {"username": "frontdesk", "full_name": "Priya Raman", "role": StaffRole.RECEPTIONIST},
    {"username": "pharmacy", "full_name": "Jonas Weber", "role": StaffRole.PHARMACIST},
    {"username": "lab", "full_name": "Leila Haddad", "role": StaffRole.LAB_TECHNICIAN},
]

PATIENT_DATA = [
    {"first_name": "Grace", "last_name": "Mensah", "gender": Gender.FEMALE, "date_of_birth": date(1984, 3, 12), "contact_number": "555-0101", "city": "Springfield"},
    {"first_name": "Daniel", "last_name": "Kowalski", "gender": Gender.MALE, "date_of_birth": date(1971, 11, 2), "contact_number": "555-0102", "city": "Springfield"},
    {"first_name": "Aiko", "last_name": "Tanaka", "gender": Gender.FEMALE, "date_of_birth": date(1995, 7, 23), "contact_number": "555-0103", "city": "Shelbyville"},
    {"first_name": "Mateo", "last_name": "Alvarez", "gender": Gender.MALE, "date_of_birth": date(2012, 1, 30), "contact_number": "555-0104", "city": "Springfield"},
    {"first_name": "Fatima", "last_name": "Zahra", "gender": Gender.FEMALE, "date_of_birth": date(1958, 9, 5), "contact_number": "555-0105", "city": "Capital City"},
    {"first_name": "Liam", "last_name": "O'Connor", "gender": Gender.MALE, "date_of_birth": date(1989, 5, 17), "contact_number": "555-0106", "city": "Shelbyville"},
    {"first_name": "Sofia", "last_name": "Rossi", "gender": Gender.FEMALE, "date_of_birth": date(2001, 12, 8), "contact_number": "555-0107", "city": "Springfield"},
    {"first_name": "Kwame", "last_name": "Asante", "gender": Gender.MALE, "date_of_birth": date(1966, 4, 21), "contact_number": "555-0108", "city": "Capital City"},
]

MEDICATION_DATA = [
    {"name": "Paracetamol", "dosage": "500mg", "category": "Analgesic", "stock": 400, "price_per_unit": Decimal("0.25")},
    {"name": "Amoxicillin", "dosage": "250mg", "category": "Antibiotic", "stock": 120, "price_per_unit": Decimal("0.80")},
    {"name": "Ibuprofen", "dosage": "400mg", "category": "Analgesic", "stock": 8, "price_per_unit": Decimal("0.35")},
    {"name": "Metformin", "dosage": "500mg", "category": "Antidiabetic", "stock": 250, "price_per_unit": Decimal("0.40")},
    {"name": "Amlodipine", "dosage": "5mg", "category": "Antihypertensive", "stock": 90, "price_per_unit": Decimal("0.60")},
    {"name": "Omeprazole", "dosage": "20mg", "category": "Antacid", "stock": 0, "price_per_unit": Decimal("1.10")},
    {"name": "Cetirizine", "dosage": "10mg", "category": "Antihistamine", "stock": 150, "price_per_unit": Decimal("0.30")},
]

LAB_PANELS = [
    [("Complete Blood Count", "25.00"), ("C-Reactive Protein", "18.00")],
    [("Lipid Panel", "40.00")],
    [("HbA1c", "32.00"), ("Fasting Glucose", "12.00")],
    [("Urinalysis", "15.00")],
]

REASONS = [
    "persistent cough for a week",
    "annual check-up",
    "follow-up on blood pressure",
    "knee pain after a fall",
    "diabetes review",
    "rash on forearms",
]

SUPPLIERS = ["MedSupply Co", "PharmaDirect", "HealthLine Wholesale"]

# name, description, nightly tariff, number of beds
WARD_DATA = [
    ("General Medicine", "Adult medical admissions", Decimal("180.00"), 6),
    ("Paediatrics", "Children under 16", Decimal("150.00"), 4),
    ("Maternity", "Antenatal and postnatal care", Decimal("220.00"), 4),
]

GENERAL_SERVICES = [
    ("Wound dressing", Decimal("20.00")),
    ("ECG", Decimal("45.00")),
    ("Nebuliser session", Decimal("20.00")),
    ("Ambulance transfer", Decimal("150.00")),
]


async def create_staff(db: AsyncSession):
    """Create one account for every role (the administrator comes from settings)"""
    print("Creating staff accounts...")

    result = await db.execute(select(func.count(User.id)))
    if not result.scalar():
        db.add(User(
            username=settings.FIRST_ADMIN_USERNAME,
            email=settings.FIRST_ADMIN_EMAIL,
            full_name="System Administrator",
            role=StaffRole.ADMINISTRATOR,
            hashed_password=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
            is_active=True
        ))

    staff = {}
    for data in STAFF_DATA:
        user = User(
            email=f"{data['username'].replace('.', '_')}@frontoffice-hospital.org",
            hashed_password=get_password_hash("staff12345"),
            is_active=True,
            **data
        )
        db.add(user)
        staff.setdefault(data["role"], []).append(user)

    await db.commit()
    print(f"Created {len(STAFF_DATA)} staff accounts")
    return staff


async def create_patients(db: AsyncSession):
    print("Creating patients...")
    patients = []

    for data in PATIENT_DATA:
        data = dict(data)
        city = data.pop("city")
        patient = Patient(
            address={"line1": f"{random.randint(1, 250)} Main Street", "line2": None, "city": city, "state": "IL", "postal_code": "62701"},
            emergency_contact={"name": "Next of kin", "relationship": "Family", "number": "555-0199"},
            allergies=random.choice([[], [], ["Penicillin"], ["Peanuts"]]),
            current_medications=[],
            **data
        )
        db.add(patient)
        patients.append(patient)

    await db.commit()
    print(f"Created {len(patients)} patients")
    return patients


async def create_medications(db: AsyncSession, mongo_db, admin: User):
    """Create the formulary and log opening stock"""
    print("Creating medications...")
    stock_service = StockMovementService(mongo_db)
    medications = []

    for data in MEDICATION_DATA:
        medication = Medication(
            reorder_level=settings.LOW_STOCK_THRESHOLD,
            supplier=random.choice(SUPPLIERS),
            expiry_date=date.today() + timedelta(days=random.randint(120, 720)),
            **data
        )
        db.add(medication)
        medications.append(medication)

    await db.commit()

    for medication in medications:
        if medication.stock <= 0:
            continue
        try:
            await stock_service.log_stock_in(
                medication_id=medication.id,
                medication_name=medication.name,
                quantity=medication.stock,
                stock_after=medication.stock,
                reason="INITIAL_STOCK",
                supplier=medication.supplier,
                performed_by_id=admin.id,
                performed_by_name=admin.full_name
            )
        except Exception as e:
            print(f"  MongoDB stock log failed: {e}")

    print(f"Created {len(medications)} medications")
    return medications


async def create_price_catalog(db: AsyncSession):
    """Fee schedule, lab test and service prices, and the wards with their beds"""
    print("Creating price catalog and wards...")
    fees = GeneralFees(
        consultation_fee=settings.CONSULTATION_FEE,
        checkup_fee=settings.CHECKUP_FEE,
        updated_by="seed"
    )
    db.add(fees)

    lab_tests = {name: price for panel in LAB_PANELS for name, price in panel}
    for name, price in lab_tests.items():
        db.add(ServicePrice(category=ServiceCategory.LAB_TEST, name=name, price=Decimal(price)))
    for name, price in GENERAL_SERVICES:
        db.add(ServicePrice(category=ServiceCategory.GENERAL_SERVICE, name=name, price=price))

    wards = []
    for name, description, rate, bed_count in WARD_DATA:
        ward = Ward(
            name=name,
            description=description,
            per_diem_rate=rate,
            beds=[Bed(label=f"Bed {n}", status=BedStatus.AVAILABLE) for n in range(1, bed_count + 1)]
        )
        db.add(ward)
        wards.append(ward)

    await db.commit()
    print(f"Created {len(lab_tests) + len(GENERAL_SERVICES)} catalog prices and {len(wards)} wards")
    return fees, wards


async def create_clinical_activity(db: AsyncSession, redis, patients, staff):
    """Past appointments with lab orders and prescriptions"""
    print("Creating appointments, lab orders and prescriptions...")
    sequences = SequenceService(redis, db)
    doctors = staff[StaffRole.DOCTOR]
    lab_tech = staff[StaffRole.LAB_TECHNICIAN][0]

    result = await db.execute(select(Medication).where(Medication.stock > 0))
    in_stock = result.scalars().all()

    visits = []
    for day_offset in range(7, 0, -1):
        visit_date = date.today() - timedelta(days=day_offset)

        for i, patient in enumerate(random.sample(patients, 3)):
            doctor = random.choice(doctors)
            appointment = Appointment(
                patient_id=patient.id,
                patient_name=patient.full_name,
                provider_name=doctor.full_name,
                appointment_date=visit_date,
                appointment_time=f"{9 + i * 2:02d}:00",
                appointment_type=random.choice(list(AppointmentType)),
                reason=random.choice(REASONS),
                status=random.choice([AppointmentStatus.COMPLETED] * 4 + [AppointmentStatus.CANCELLED]),
                payment_status=PaymentStatus.PENDING_PAYMENT
            )
            if appointment.status == AppointmentStatus.CANCELLED:
                appointment.cancellation_reason = "patient called to cancel"
                appointment.payment_status = PaymentStatus.NOT_APPLICABLE
            db.add(appointment)
            await db.flush()

            if appointment.status != AppointmentStatus.COMPLETED:
                continue

            lab_order = None
            if random.random() < 0.5:
                ordered_at = datetime.combine(visit_date, datetime.min.time()) + timedelta(hours=10)
                verified = random.random() < 0.7
                lab_order = LabOrder(
                    order_number=await sequences.next_lab_order_number(ordered_at.date()),
                    patient_id=patient.id,
                    patient_name=patient.full_name,
                    ordering_doctor=doctor.full_name,
                    order_date=ordered_at,
                    linked_appointment_id=appointment.id,
                    sample_collection_date=ordered_at + timedelta(minutes=30),
                    sample_collector=lab_tech.full_name,
                    status=LabOrderStatus.RESULTS_READY if verified else LabOrderStatus.PROCESSING,
                    verified_by=lab_tech.full_name if verified else None,
                    verification_date=ordered_at + timedelta(hours=random.randint(3, 30)) if verified else None,
                    tests=[
                        LabTest(
                            name=name,
                            price=Decimal(price),
                            status=LabTestStatus.RESULT_ENTERED if verified else LabTestStatus.PENDING_RESULT,
                            result="within normal limits" if verified else None
                        )
                        for name, price in random.choice(LAB_PANELS)
                    ]
                )
                db.add(lab_order)

            prescription = None
            if random.random() < 0.8:
                medication = random.choice(in_stock)
                prescription = Prescription(
                    patient_id=patient.id,
                    patient_name=patient.full_name,
                    medication_id=medication.id,
                    medication_name=medication.name,
                    dosage=medication.dosage,
                    quantity=random.choice([10, 14, 20, 30]),
                    instructions="take after meals",
                    prescribed_by=doctor.full_name,
                    prescription_date=datetime.combine(visit_date, datetime.min.time()) + timedelta(hours=11),
                    linked_appointment_id=appointment.id,
                    status=PrescriptionStatus.PENDING
                )
                db.add(prescription)

            visits.append((appointment, lab_order, prescription))

    await db.commit()
    print(f"Created {len(visits)} completed visits")
    return visits


async def _current_stock(db: AsyncSession, medication_id: int) -> int:
    result = await db.execute(select(Medication.stock).where(Medication.id == medication_id))
    return result.scalar()


async def create_invoices(db: AsyncSession, mongo_db, redis, visits, staff, fees: GeneralFees):
    """Bill each completed visit, collect payment on most, and dispense paid prescriptions"""
    print("Creating invoices and payments...")
    sequences = SequenceService(redis, db)
    stock_service = StockMovementService(mongo_db)
    receptionist = staff[StaffRole.RECEPTIONIST][0]
    pharmacist = staff[StaffRole.PHARMACIST][0]
    dispensed = 0

    for appointment, lab_order, prescription in visits:
        invoice_date = datetime.combine(appointment.appointment_date, datetime.min.time()) + timedelta(hours=12)

        items = [{
            "description": f"{appointment.appointment_type.value} with {appointment.provider_name}",
            "quantity": 1,
            "unit_price": appointment_fee(fees, appointment.appointment_type),
            "source_type": LineItemSource.CONSULTATION,
            "source_id": appointment.id
        }]
        if lab_order:
            items += [
                {
                    "description": f"Lab test: {test.name} ({lab_order.order_number})",
                    "quantity": 1,
                    "unit_price": test.price,
                    "source_type": LineItemSource.LAB,
                    "source_id": lab_order.id
                }
                for test in lab_order.tests
            ]
        if prescription:
            result = await db.execute(select(Medication).where(Medication.id == prescription.medication_id))
            medication = result.scalars().first()
            items.append({
                "description": f"{medication.name} {prescription.dosage}",
                "quantity": prescription.quantity,
                "unit_price": medication.price_per_unit,
                "source_type": LineItemSource.PRESCRIPTION,
                "source_id": prescription.id
            })

        totals = compute_totals([(item["quantity"], item["unit_price"]) for item in items], 0)
        invoice = Invoice(
            invoice_number=await sequences.next_invoice_number(invoice_date.date()),
            patient_id=appointment.patient_id,
            patient_name=appointment.patient_name,
            appointment_id=appointment.id,
            invoice_date=invoice_date,
            due_date=invoice_date.date() + timedelta(days=settings.INVOICE_DUE_DAYS),
            status=InvoiceStatus.PENDING_PAYMENT,
            tax_rate=Decimal("0.00"),
            sub_total=totals.sub_total,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            amount_paid=Decimal("0.00"),
            created_by=receptionist.full_name,
            line_items=[
                InvoiceLineItem(total=line_total(item["quantity"], item["unit_price"]), **item)
                for item in items
            ],
            payments=[]
        )
        db.add(invoice)
        await db.flush()

        # 70% paid in full, 15% half paid, the rest still open
        roll = random.random()
        if roll < 0.85:
            amount = totals.total_amount if roll < 0.7 else to_money(totals.total_amount / 2)
            invoice.payments.append(InvoicePayment(
                amount=amount,
                method=random.choice(["cash", "card", "card", "insurance"]),
                received_by=receptionist.full_name,
                paid_at=invoice_date + timedelta(minutes=15)
            ))
            invoice.amount_paid = amount
        invoice.status = derive_invoice_status(
            invoice.status, invoice.total_amount, invoice.amount_paid, invoice.due_date
        )

        linked = {
            InvoiceStatus.PAID: PaymentStatus.PAID,
            InvoiceStatus.PARTIALLY_PAID: PaymentStatus.PARTIALLY_PAID
        }.get(invoice.status, PaymentStatus.BILLED)

        appointment.invoice_id = invoice.id
        appointment.payment_status = linked
        if lab_order:
            lab_order.invoice_id = invoice.id
            lab_order.payment_status = linked
        if prescription:
            prescription.invoice_id = invoice.id
            prescription.is_billed = True
            if invoice.status == InvoiceStatus.PAID:
                prescription.payment_status = PaymentStatus.PAID
                if await decrement_stock(db, prescription.medication_id, prescription.quantity):
                    prescription.status = PrescriptionStatus.DISPENSED
                    prescription.dispensed_by = pharmacist.full_name
                    prescription.dispensed_at = invoice_date + timedelta(minutes=40)
                    dispensed += 1
                    try:
                        await stock_service.log_stock_out(
                            medication_id=prescription.medication_id,
                            medication_name=prescription.medication_name,
                            quantity=prescription.quantity,
                            stock_after=await _current_stock(db, prescription.medication_id),
                            reason="DISPENSED",
                            reference_type="prescription",
                            reference_id=prescription.id,
                            performed_by_id=pharmacist.id,
                            performed_by_name=pharmacist.full_name
                        )
                    except Exception as e:
                        print(f"  MongoDB stock log failed: {e}")

    await db.commit()
    print(f"Created {len(visits)} invoices, dispensed {dispensed} prescriptions")


async def create_ward_and_rota(db: AsyncSession, patients, staff, wards):
    """One admitted patient and this week's nursing rota"""
    print("Creating admission and staff schedule...")
    doctor = staff[StaffRole.DOCTOR][0]
    patient = patients[4]
    ward = wards[0]
    bed = ward.beds[1]
    bed.status = BedStatus.OCCUPIED

    db.add(Admission(
        patient_id=patient.id,
        patient_name=patient.full_name,
        bed_id=bed.id,
        room=ward.name,
        bed=bed.label,
        admission_date=datetime.utcnow() - timedelta(days=2),
        reason_for_admission="community acquired pneumonia",
        primary_doctor=doctor.full_name,
        status=AdmissionStatus.ADMITTED
    ))

    shifts = 0
    for day_offset in range(7):
        shift_date = date.today() + timedelta(days=day_offset)
        for i, nurse in enumerate(staff[StaffRole.NURSE]):
            day_off = (day_offset + i) % 5 == 0
            night = (day_offset + i) % 2 == 1
            db.add(Shift(
                staff_id=nurse.id,
                staff_name=nurse.full_name,
                shift_date=shift_date,
                shift_type=ShiftType.DAY_OFF if day_off else (ShiftType.NIGHT if night else ShiftType.DAY),
                start_time=None if day_off else ("19:00" if night else "07:00"),
                end_time=None if day_off else ("07:00" if night else "19:00")
            ))
            shifts += 1

    await db.commit()
    print(f"Created 1 admission and {shifts} shifts")


async def log_activity_entries(mongo_db, staff):
    print("Creating activity log entries...")
    receptionist = staff[StaffRole.RECEPTIONIST][0]
    try:
        await ActivityLogService(mongo_db).log_action(
            actor_id=receptionist.id,
            actor_name=receptionist.full_name,
            actor_role=receptionist.role.value,
            action="SEED",
            description="Demo data loaded",
            details={"source": "seed_demo_data.py"}
        )
        print("Created activity log entries")
    except Exception as e:
        print(f"  MongoDB activity log failed: {e}")


async def main():
    """Run the seeder"""
    print("=" * 60)
    print("Starting Demo Database Seeder")
    print("=" * 60)

    await init_db()
    mongo_db = await get_mongo_db()
    await create_mongo_indexes(mongo_db)
    redis = await get_redis()

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(func.count(Patient.id)))
        if result.scalar():
            print("Database already has patients, nothing to do.")
            return

        staff = await create_staff(db)
        result = await db.execute(select(User).where(User.role == StaffRole.ADMINISTRATOR))
        admin = result.scalars().first()

        patients = await create_patients(db)
        await create_medications(db, mongo_db, admin)
        fees, wards = await create_price_catalog(db)
        visits = await create_clinical_activity(db, redis, patients, staff)
        await create_invoices(db, mongo_db, redis, visits, staff, fees)
        await create_ward_and_rota(db, patients, staff, wards)
        await log_activity_entries(mongo_db, staff)

    await close_redis()
    await close_mongo()

    print("\n" + "=" * 60)
    print("Database seeding completed!")
    print("=" * 60)
    print("\nLogin Credentials:")
    print(f"  Admin: {settings.FIRST_ADMIN_USERNAME} / {settings.FIRST_ADMIN_PASSWORD}")
    print("  Staff: " + ", ".join(data["username"] for data in STAFF_DATA) + " / staff12345")
    print("\nStart server: uvicorn frontoffice.main:app --reload")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())

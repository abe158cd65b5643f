from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Enum, Text, Float, Boolean, Numeric, JSON,
    UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, date
import enum
from frontoffice.database import Base


class StaffRole(str, enum.Enum):
    ADMINISTRATOR = "Administrator"
    DOCTOR = "Doctor"
    NURSE = "Nurse"
    RECEPTIONIST = "Receptionist"
    PHARMACIST = "Pharmacist"
    LAB_TECHNICIAN = "Lab Technician"


class Gender(str, enum.Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"
    UNDISCLOSED = "Prefer not to say"


class PatientStatus(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PENDING = "Pending"


class AppointmentType(str, enum.Enum):
    CHECK_UP = "Check-up"
    CONSULTATION = "Consultation"
    FOLLOW_UP = "Follow-up"
    PROCEDURE = "Procedure"


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    ARRIVED = "Arrived"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment state mirrored onto billable records from their invoice"""
    PENDING_PAYMENT = "Pending Payment"
    BILLED = "Billed"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    NOT_APPLICABLE = "N/A"


class LabOrderStatus(str, enum.Enum):
    PENDING_SAMPLE = "Pending Sample"
    SAMPLE_COLLECTED = "Sample Collected"
    PROCESSING = "Processing"
    AWAITING_VERIFICATION = "Awaiting Verification"
    RESULTS_READY = "Results Ready"
    CANCELLED = "Cancelled"


class LabTestStatus(str, enum.Enum):
    PENDING_RESULT = "Pending Result"
    RESULT_ENTERED = "Result Entered"
    CANCELLED = "Cancelled"


class StockStatus(str, enum.Enum):
    IN_STOCK = "In Stock"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"


class PrescriptionStatus(str, enum.Enum):
    PENDING = "Pending"
    FILLED = "Filled"
    READY_FOR_PICKUP = "Ready for Pickup"
    DISPENSED = "Dispensed"
    CANCELLED = "Cancelled"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "Draft"
    PENDING_PAYMENT = "Pending Payment"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"
    AWAITING_PUSH_PAYMENT = "Awaiting Push Payment"
    BILLED = "Billed"


class LineItemSource(str, enum.Enum):
    CONSULTATION = "consultation"
    LAB = "lab"
    PRESCRIPTION = "prescription"
    MANUAL = "manual"
    GENERAL_SERVICE = "general_service"
    HOSPITAL_STAY = "hospital_stay"
    PROCEDURE = "procedure"
    OTHER = "other"


class BedStatus(str, enum.Enum):
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"
    NEEDS_CLEANING = "Needs Cleaning"
    MAINTENANCE = "Maintenance"


class ServiceCategory(str, enum.Enum):
    LAB_TEST = "Lab Test"
    GENERAL_SERVICE = "General Service"


class AdmissionStatus(str, enum.Enum):
    ADMITTED = "Admitted"
    OBSERVATION = "Observation"
    PENDING_DISCHARGE = "Pending Discharge"
    DISCHARGED = "Discharged"


class MarStatus(str, enum.Enum):
    ADMINISTERED = "Administered"
    MISSED = "Missed"
    REFUSED = "Refused"
    HELD = "Held"


class ShiftType(str, enum.Enum):
    DAY = "Day"
    NIGHT = "Night"
    DAY_OFF = "Day Off"
    CUSTOM = "Custom"


class AttendanceStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    CLOCKED_IN = "Clocked In"
    LATE = "Late"
    CLOCKED_OUT = "Clocked Out"
    ABSENT = "Absent"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=False)
    role = Column(Enum(StaffRole), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    shifts = relationship("Shift", back_populates="staff")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False, index=True)
    last_name = Column(String(100), nullable=False, index=True)
    gender = Column(Enum(Gender), nullable=False)
    date_of_birth = Column(Date, nullable=False)
    contact_number = Column(String(20), nullable=False, index=True)
    email = Column(String(100), nullable=True)
    # nested documents: {line1, line2, city, state, postal_code}, {name, relationship, number}, {provider, policy_number}
    address = Column(JSON, nullable=False)
    emergency_contact = Column(JSON, nullable=True)
    insurance = Column(JSON, nullable=True)
    allergies = Column(JSON, default=lambda: [])
    current_medications = Column(JSON, default=lambda: [])
    medical_history_notes = Column(Text, nullable=True)
    status = Column(Enum(PatientStatus), default=PatientStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    appointments = relationship("Appointment", back_populates="patient")
    lab_orders = relationship("LabOrder", back_populates="patient")
    prescriptions = relationship("Prescription", back_populates="patient")
    invoices = relationship("Invoice", back_populates="patient")
    admissions = relationship("Admission", back_populates="patient")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def age(self) -> int:
        today = date.today()
        born = self.date_of_birth
        return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    patient_name = Column(String(200), nullable=False)
    provider_name = Column(String(100), nullable=False, index=True)
    appointment_date = Column(Date, nullable=False, index=True)
    appointment_time = Column(String(5), nullable=False)
    appointment_type = Column(Enum(AppointmentType), nullable=False)
    status = Column(Enum(AppointmentStatus), default=AppointmentStatus.SCHEDULED, nullable=False)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    # plain column: invoices already reference appointments
    invoice_id = Column(Integer, nullable=True, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING_PAYMENT, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="appointments")


class LabOrder(Base):
    __tablename__ = "lab_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(20), unique=True, index=True, nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    patient_name = Column(String(200), nullable=False)
    ordering_doctor = Column(String(100), nullable=False)
    order_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    clinical_notes = Column(Text, nullable=True)
    status = Column(Enum(LabOrderStatus), default=LabOrderStatus.PENDING_SAMPLE, nullable=False)
    sample_collection_date = Column(DateTime, nullable=True)
    sample_collector = Column(String(100), nullable=True)
    verification_date = Column(DateTime, nullable=True)
    verified_by = Column(String(100), nullable=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING_PAYMENT, nullable=False)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)
    linked_appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="lab_orders")
    tests = relationship(
        "LabTest",
        back_populates="lab_order",
        cascade="all, delete-orphan",
        order_by="LabTest.id",
        lazy="selectin"
    )


class LabTest(Base):
    __tablename__ = "lab_tests"

    id = Column(Integer, primary_key=True, index=True)
    lab_order_id = Column(Integer, ForeignKey("lab_orders.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(Enum(LabTestStatus), default=LabTestStatus.PENDING_RESULT, nullable=False)
    result = Column(Text, nullable=True)
    reference_range = Column(String(100), nullable=True)
    unit = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)

    lab_order = relationship("LabOrder", back_populates="tests")


class Medication(Base):
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    dosage = Column(String(50), nullable=False)
    category = Column(String(100), nullable=True)
    supplier = Column(String(200), nullable=True)
    stock = Column(Integer, default=0, nullable=False)
    reorder_level = Column(Integer, nullable=False)
    price_per_unit = Column(Numeric(10, 2), nullable=False)
    expiry_date = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    prescriptions = relationship("Prescription", back_populates="medication")

    @property
    def stock_status(self) -> StockStatus:
        from frontoffice.services.inventory import stock_status
        return stock_status(self.stock, self.reorder_level)


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    patient_name = Column(String(200), nullable=False)
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=False, index=True)
    medication_name = Column(String(200), nullable=False)
    dosage = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    instructions = Column(Text, nullable=True)
    prescribed_by = Column(String(100), nullable=False)
    prescription_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    status = Column(Enum(PrescriptionStatus), default=PrescriptionStatus.PENDING, nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING_PAYMENT, nullable=False)
    is_billed = Column(Boolean, default=False, nullable=False)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)
    refillable = Column(Boolean, default=False, nullable=False)
    refills_remaining = Column(Integer, default=0, nullable=False)
    linked_appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    dispensed_by = Column(String(100), nullable=True)
    dispensed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="prescriptions")
    medication = relationship("Medication", back_populates="prescriptions")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(20), unique=True, index=True, nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    patient_name = Column(String(200), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, index=True)
    invoice_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.PENDING_PAYMENT, nullable=False)
    sub_total = Column(Numeric(10, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="invoices")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.id",
        lazy="selectin"
    )
    payments = relationship(
        "InvoicePayment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoicePayment.paid_at",
        lazy="selectin"
    )

    @property
    def balance_due(self):
        return max(self.total_amount - self.amount_paid, 0)


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    description = Column(String(300), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    source_type = Column(Enum(LineItemSource), default=LineItemSource.MANUAL, nullable=False)
    source_id = Column(Integer, nullable=True)

    invoice = relationship("Invoice", back_populates="line_items")


class InvoicePayment(Base):
    __tablename__ = "invoice_payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(30), nullable=False)
    reference = Column(String(100), nullable=True)
    received_by = Column(String(100), nullable=True)
    paid_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    invoice = relationship("Invoice", back_populates="payments")


class Ward(Base):
    __tablename__ = "wards"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    # nightly tariff billed for a stay in this ward
    per_diem_rate = Column(Numeric(10, 2), default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    beds = relationship(
        "Bed",
        back_populates="ward",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Bed.id"
    )


class Bed(Base):
    __tablename__ = "beds"
    __table_args__ = (UniqueConstraint("ward_id", "label", name="uq_bed_ward_label"),)

    id = Column(Integer, primary_key=True, index=True)
    ward_id = Column(Integer, ForeignKey("wards.id"), nullable=False, index=True)
    label = Column(String(50), nullable=False)
    status = Column(Enum(BedStatus), default=BedStatus.AVAILABLE, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ward = relationship("Ward", back_populates="beds")


class ServicePrice(Base):
    """Catalog price for an orderable lab test or a billable hospital service"""
    __tablename__ = "service_prices"
    __table_args__ = (UniqueConstraint("category", "name", name="uq_service_price_name"),)

    id = Column(Integer, primary_key=True, index=True)
    category = Column(Enum(ServiceCategory), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class GeneralFees(Base):
    __tablename__ = "general_fees"

    id = Column(Integer, primary_key=True)
    consultation_fee = Column(Numeric(10, 2), nullable=False)
    checkup_fee = Column(Numeric(10, 2), nullable=False)
    updated_by = Column(String(100), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Admission(Base):
    __tablename__ = "admissions"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    patient_name = Column(String(200), nullable=False)
    bed_id = Column(Integer, ForeignKey("beds.id"), nullable=True, index=True)
    # ward name and bed label as they were at admission
    room = Column(String(100), nullable=False)
    bed = Column(String(50), nullable=False)
    admission_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    reason_for_admission = Column(Text, nullable=False)
    primary_doctor = Column(String(100), nullable=False)
    status = Column(Enum(AdmissionStatus), default=AdmissionStatus.ADMITTED, nullable=False, index=True)
    discharge_date = Column(DateTime, nullable=True)
    discharge_summary = Column(Text, nullable=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="admissions")
    mar_entries = relationship("MarEntry", back_populates="admission", cascade="all, delete-orphan")
    vitals = relationship("VitalSignRecord", back_populates="admission", cascade="all, delete-orphan")
    nursing_notes = relationship("NursingNote", back_populates="admission", cascade="all, delete-orphan")


class MarEntry(Base):
    """One administration event on the Medication Administration Record"""
    __tablename__ = "mar_entries"

    id = Column(Integer, primary_key=True, index=True)
    admission_id = Column(Integer, ForeignKey("admissions.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id"), nullable=True)
    medication_name = Column(String(200), nullable=False)
    dosage = Column(String(100), nullable=False)
    route = Column(String(50), nullable=False)
    frequency = Column(String(50), nullable=False)
    scheduled_time = Column(DateTime, nullable=False)
    administration_time = Column(DateTime, nullable=True)
    administered_by = Column(String(100), nullable=True)
    status = Column(Enum(MarStatus), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    admission = relationship("Admission", back_populates="mar_entries")


class VitalSignRecord(Base):
    __tablename__ = "vital_signs"

    id = Column(Integer, primary_key=True, index=True)
    admission_id = Column(Integer, ForeignKey("admissions.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    temperature = Column(Float, nullable=True)
    heart_rate = Column(Integer, nullable=True)
    respiratory_rate = Column(Integer, nullable=True)
    systolic_bp = Column(Integer, nullable=True)
    diastolic_bp = Column(Integer, nullable=True)
    oxygen_saturation = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(String(100), nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    admission = relationship("Admission", back_populates="vitals")


class NursingNote(Base):
    __tablename__ = "nursing_notes"

    id = Column(Integer, primary_key=True, index=True)
    admission_id = Column(Integer, ForeignKey("admissions.id"), nullable=False, index=True)
    note_type = Column(String(50), nullable=False)
    content = Column(Text, nullable=False)
    author = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    admission = relationship("Admission", back_populates="nursing_notes")


class Shift(Base):
    __tablename__ = "shifts"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    staff_name = Column(String(100), nullable=False)
    shift_date = Column(Date, nullable=False, index=True)
    shift_type = Column(Enum(ShiftType), nullable=False)
    start_time = Column(String(5), nullable=True)
    end_time = Column(String(5), nullable=True)
    notes = Column(Text, nullable=True)
    attendance_status = Column(Enum(AttendanceStatus), default=AttendanceStatus.SCHEDULED, nullable=False)
    actual_start_time = Column(String(5), nullable=True)
    actual_end_time = Column(String(5), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    staff = relationship("User", back_populates="shifts")

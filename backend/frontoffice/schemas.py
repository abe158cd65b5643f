from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import datetime, date, timezone
from decimal import Decimal
from frontoffice.models import (
    StaffRole,
    Gender,
    PatientStatus,
    AppointmentType,
    AppointmentStatus,
    PaymentStatus,
    LabOrderStatus,
    LabTestStatus,
    StockStatus,
    PrescriptionStatus,
    InvoiceStatus,
    LineItemSource,
    AdmissionStatus,
    BedStatus,
    ServiceCategory,
    MarStatus,
    ShiftType,
    AttendanceStatus
)

# 24h clock, e.g. "08:30"
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored naive in UTC; offset-aware input is converted first"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    full_name: str = Field(..., min_length=2, max_length=100)
    role: StaffRole


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    role: Optional[StaffRole] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=8)


class UserResponse(UserBase):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class LoginRequest(BaseModel):
    username: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class Address(BaseModel):
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=3, max_length=12)


class EmergencyContact(BaseModel):
    name: str = Field(..., min_length=2)
    relationship: str = Field(..., min_length=2)
    number: str = Field(..., min_length=7, max_length=20)


class Insurance(BaseModel):
    provider: str = Field(..., min_length=2)
    policy_number: Optional[str] = None


class PatientBase(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    gender: Gender
    date_of_birth: date
    contact_number: str = Field(..., min_length=7, max_length=20)
    email: Optional[EmailStr] = None
    address: Address
    emergency_contact: Optional[EmergencyContact] = None
    insurance: Optional[Insurance] = None
    allergies: List[str] = []
    current_medications: List[str] = []
    medical_history_notes: Optional[str] = None
    status: PatientStatus = PatientStatus.ACTIVE


class PatientCreate(PatientBase):

    @field_validator("date_of_birth")
    @classmethod
    def not_in_future(cls, value: date) -> date:
        if value > date.today():
            raise ValueError("date_of_birth cannot be in the future")
        return value


class PatientUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    gender: Optional[Gender] = None
    date_of_birth: Optional[date] = None
    contact_number: Optional[str] = Field(None, min_length=7, max_length=20)
    email: Optional[EmailStr] = None
    address: Optional[Address] = None
    emergency_contact: Optional[EmergencyContact] = None
    insurance: Optional[Insurance] = None
    allergies: Optional[List[str]] = None
    current_medications: Optional[List[str]] = None
    medical_history_notes: Optional[str] = None
    status: Optional[PatientStatus] = None

    @field_validator("date_of_birth")
    @classmethod
    def not_in_future(cls, value: Optional[date]) -> Optional[date]:
        if value and value > date.today():
            raise ValueError("date_of_birth cannot be in the future")
        return value


class PatientResponse(PatientBase):
    id: int
    full_name: str
    age: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AppointmentCreate(BaseModel):
    patient_id: int
    provider_name: str = Field(..., min_length=2, max_length=100)
    appointment_date: date
    appointment_time: str = Field(..., pattern=TIME_PATTERN)
    appointment_type: AppointmentType
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentUpdate(BaseModel):
    provider_name: Optional[str] = Field(None, min_length=2, max_length=100)
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    appointment_type: Optional[AppointmentType] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    cancellation_reason: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: str
    provider_name: str
    appointment_date: date
    appointment_time: str
    appointment_type: AppointmentType
    status: AppointmentStatus
    reason: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    invoice_id: Optional[int] = None
    payment_status: PaymentStatus
    created_at: datetime

    class Config:
        from_attributes = True


class LabTestCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    # looked up in the lab test catalog when omitted
    price: Optional[Decimal] = Field(None, ge=0)
    reference_range: Optional[str] = None
    unit: Optional[str] = None


class LabTestResponse(BaseModel):
    id: int
    name: str
    price: Decimal
    status: LabTestStatus
    result: Optional[str] = None
    reference_range: Optional[str] = None
    unit: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class LabOrderCreate(BaseModel):
    patient_id: int
    ordering_doctor: str = Field(..., min_length=2, max_length=100)
    clinical_notes: Optional[str] = None
    linked_appointment_id: Optional[int] = None
    tests: List[LabTestCreate] = Field(..., min_length=1)


class SampleCollection(BaseModel):
    collector: Optional[str] = None


class LabResultEntry(BaseModel):
    test_id: int
    result: str = Field(..., min_length=1)
    reference_range: Optional[str] = None
    unit: Optional[str] = None
    notes: Optional[str] = None


class LabResultsUpdate(BaseModel):
    results: List[LabResultEntry] = Field(..., min_length=1)


class LabOrderResponse(BaseModel):
    id: int
    order_number: str
    patient_id: int
    patient_name: str
    ordering_doctor: str
    order_date: datetime
    clinical_notes: Optional[str] = None
    status: LabOrderStatus
    sample_collection_date: Optional[datetime] = None
    sample_collector: Optional[str] = None
    verification_date: Optional[datetime] = None
    verified_by: Optional[str] = None
    payment_status: PaymentStatus
    invoice_id: Optional[int] = None
    linked_appointment_id: Optional[int] = None
    tests: List[LabTestResponse] = []

    class Config:
        from_attributes = True


class MedicationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    dosage: str = Field(..., min_length=1, max_length=50)
    category: Optional[str] = None
    supplier: Optional[str] = None
    price_per_unit: Decimal = Field(..., ge=0)
    expiry_date: Optional[date] = None


class MedicationCreate(MedicationBase):
    stock: int = Field(0, ge=0)
    reorder_level: Optional[int] = Field(None, ge=0)


class MedicationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    dosage: Optional[str] = Field(None, min_length=1, max_length=50)
    category: Optional[str] = None
    supplier: Optional[str] = None
    price_per_unit: Optional[Decimal] = Field(None, ge=0)
    expiry_date: Optional[date] = None
    reorder_level: Optional[int] = Field(None, ge=0)


class MedicationResponse(MedicationBase):
    id: int
    stock: int
    reorder_level: int
    stock_status: StockStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RestockRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    supplier: Optional[str] = None
    expiry_date: Optional[date] = None


class PrescriptionCreate(BaseModel):
    patient_id: int
    medication_id: int
    dosage: Optional[str] = Field(None, max_length=100)
    quantity: int = Field(..., ge=1)
    instructions: Optional[str] = None
    prescribed_by: Optional[str] = Field(None, max_length=100)
    refillable: bool = False
    refills_remaining: int = Field(0, ge=0)
    linked_appointment_id: Optional[int] = None


class PrescriptionUpdate(BaseModel):
    dosage: Optional[str] = Field(None, max_length=100)
    quantity: Optional[int] = Field(None, ge=1)
    instructions: Optional[str] = None
    refillable: Optional[bool] = None
    refills_remaining: Optional[int] = Field(None, ge=0)


class PrescriptionResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: str
    medication_id: int
    medication_name: str
    dosage: str
    quantity: int
    instructions: Optional[str] = None
    prescribed_by: str
    prescription_date: datetime
    status: PrescriptionStatus
    payment_status: PaymentStatus
    is_billed: bool
    invoice_id: Optional[int] = None
    refillable: bool
    refills_remaining: int
    linked_appointment_id: Optional[int] = None
    dispensed_by: Optional[str] = None
    dispensed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DispenseResponse(BaseModel):
    message: str
    prescription: PrescriptionResponse
    stock_remaining: int
    refill_prescription_id: Optional[int] = None


class InvoiceLineItemCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=300)
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Field(..., ge=0)
    source_type: LineItemSource = LineItemSource.MANUAL
    source_id: Optional[int] = None


class InvoiceLineItemResponse(InvoiceLineItemCreate):
    id: int
    total: Decimal

    class Config:
        from_attributes = True


class ServiceCharge(BaseModel):
    service_id: int
    quantity: int = Field(1, ge=1)


class InvoiceCreate(BaseModel):
    """
    Items can be given directly, generated from billable records, or both:
    - appointment_id adds the consultation or check-up fee
    - lab_order_ids add one line per test
    - prescription_ids add quantity x medication price
    - services add catalog-priced general services
    - admission_id adds the ward tariff for each night of the stay
    """
    patient_id: int
    line_items: List[InvoiceLineItemCreate] = []
    appointment_id: Optional[int] = None
    include_consultation_fee: bool = True
    lab_order_ids: List[int] = []
    prescription_ids: List[int] = []
    services: List[ServiceCharge] = []
    admission_id: Optional[int] = None
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.PENDING_PAYMENT

    @field_validator("status")
    @classmethod
    def initial_status(cls, value: InvoiceStatus) -> InvoiceStatus:
        allowed = (
            InvoiceStatus.DRAFT,
            InvoiceStatus.PENDING_PAYMENT,
            InvoiceStatus.AWAITING_PUSH_PAYMENT,
            InvoiceStatus.BILLED
        )
        if value not in allowed:
            raise ValueError(f"initial status must be one of {[s.value for s in allowed]}")
        return value


class InvoiceUpdate(BaseModel):
    line_items: Optional[List[InvoiceLineItemCreate]] = Field(None, min_length=1)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    due_date: Optional[date] = None
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: str = Field("cash", min_length=2, max_length=30)
    reference: Optional[str] = Field(None, max_length=100)


class InvoicePaymentResponse(BaseModel):
    id: int
    amount: Decimal
    method: str
    reference: Optional[str] = None
    received_by: Optional[str] = None
    paid_at: datetime

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    patient_id: int
    patient_name: str
    appointment_id: Optional[int] = None
    invoice_date: datetime
    due_date: date
    status: InvoiceStatus
    sub_total: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    notes: Optional[str] = None
    line_items: List[InvoiceLineItemResponse] = []
    payments: List[InvoicePaymentResponse] = []

    class Config:
        from_attributes = True


class BedCreate(BaseModel):
    label: str = Field(..., min_length=1, max_length=50)


class BedStatusUpdate(BaseModel):
    status: BedStatus

    @field_validator("status")
    @classmethod
    def not_occupied(cls, value: BedStatus) -> BedStatus:
        if value == BedStatus.OCCUPIED:
            raise ValueError("beds become Occupied only through an admission")
        return value


class BedResponse(BaseModel):
    id: int
    ward_id: int
    label: str
    status: BedStatus

    class Config:
        from_attributes = True


class WardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    per_diem_rate: Decimal = Field(Decimal("0"), ge=0)
    # generates beds labelled "Bed 1" .. "Bed N"
    bed_count: int = Field(0, ge=0, le=200)


class WardUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    per_diem_rate: Optional[Decimal] = Field(None, ge=0)


class WardResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    per_diem_rate: Decimal
    beds: List[BedResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True


class GeneralFeesUpdate(BaseModel):
    consultation_fee: Optional[Decimal] = Field(None, ge=0)
    checkup_fee: Optional[Decimal] = Field(None, ge=0)


class GeneralFeesResponse(BaseModel):
    consultation_fee: Decimal
    checkup_fee: Decimal
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServicePriceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., ge=0)


class ServicePriceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ServicePriceResponse(BaseModel):
    id: int
    category: ServiceCategory
    name: str
    price: Decimal
    is_active: bool

    class Config:
        from_attributes = True


class AdmissionCreate(BaseModel):
    patient_id: int
    bed_id: int
    reason_for_admission: str = Field(..., min_length=3)
    primary_doctor: str = Field(..., min_length=2, max_length=100)
    admission_date: Optional[datetime] = None

    @field_validator("admission_date")
    @classmethod
    def admission_date_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class AdmissionStatusUpdate(BaseModel):
    status: AdmissionStatus

    @field_validator("status")
    @classmethod
    def not_discharged(cls, value: AdmissionStatus) -> AdmissionStatus:
        if value == AdmissionStatus.DISCHARGED:
            raise ValueError("use the discharge endpoint to discharge a patient")
        return value


class DischargeRequest(BaseModel):
    discharge_summary: str = Field(..., min_length=3)
    discharge_date: Optional[datetime] = None

    @field_validator("discharge_date")
    @classmethod
    def discharge_date_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class AdmissionResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: str
    bed_id: Optional[int] = None
    room: str
    bed: str
    admission_date: datetime
    reason_for_admission: str
    primary_doctor: str
    status: AdmissionStatus
    discharge_date: Optional[datetime] = None
    discharge_summary: Optional[str] = None
    invoice_id: Optional[int] = None

    class Config:
        from_attributes = True


class MarEntryCreate(BaseModel):
    prescription_id: Optional[int] = None
    medication_name: Optional[str] = Field(None, max_length=200)
    dosage: Optional[str] = Field(None, max_length=100)
    route: str = Field(..., min_length=2, max_length=50)
    frequency: str = Field(..., min_length=2, max_length=50)
    scheduled_time: datetime
    administration_time: Optional[datetime] = None
    status: MarStatus
    notes: Optional[str] = None

    @field_validator("scheduled_time", "administration_time")
    @classmethod
    def times_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class MarEntryResponse(BaseModel):
    id: int
    admission_id: int
    patient_id: int
    prescription_id: Optional[int] = None
    medication_name: str
    dosage: str
    route: str
    frequency: str
    scheduled_time: datetime
    administration_time: Optional[datetime] = None
    administered_by: Optional[str] = None
    status: MarStatus
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class MarSummaryItem(BaseModel):
    medication_name: str
    total_entries: int
    counts: Dict[str, int]
    last_status: MarStatus
    last_scheduled_time: datetime
    last_administered_at: Optional[datetime] = None


class VitalSignsCreate(BaseModel):
    temperature: Optional[float] = Field(None, ge=30, le=45)
    heart_rate: Optional[int] = Field(None, ge=20, le=250)
    respiratory_rate: Optional[int] = Field(None, ge=5, le=60)
    systolic_bp: Optional[int] = Field(None, ge=50, le=300)
    diastolic_bp: Optional[int] = Field(None, ge=30, le=200)
    oxygen_saturation: Optional[int] = Field(None, ge=70, le=100)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def at_least_one_measurement(self):
        measurements = (
            self.temperature, self.heart_rate, self.respiratory_rate,
            self.systolic_bp, self.diastolic_bp, self.oxygen_saturation
        )
        if all(value is None for value in measurements):
            raise ValueError("at least one vital sign measurement is required")
        return self


class VitalSignsResponse(BaseModel):
    id: int
    admission_id: int
    temperature: Optional[float] = None
    heart_rate: Optional[int] = None
    respiratory_rate: Optional[int] = None
    systolic_bp: Optional[int] = None
    diastolic_bp: Optional[int] = None
    oxygen_saturation: Optional[int] = None
    notes: Optional[str] = None
    recorded_by: str
    recorded_at: datetime

    class Config:
        from_attributes = True


class NursingNoteCreate(BaseModel):
    note_type: str = Field("General", min_length=2, max_length=50)
    content: str = Field(..., min_length=1, max_length=5000)


class NursingNoteResponse(NursingNoteCreate):
    id: int
    admission_id: int
    author: str
    created_at: datetime

    class Config:
        from_attributes = True


class ShiftBase(BaseModel):
    staff_id: int
    shift_date: date
    shift_type: ShiftType
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def times_match_shift_type(self):
        if self.shift_type == ShiftType.DAY_OFF:
            self.start_time = None
            self.end_time = None
        elif not self.start_time or not self.end_time:
            raise ValueError("start_time and end_time are required unless shift_type is Day Off")
        return self


class ShiftCreate(ShiftBase):
    pass


class ShiftUpdate(BaseModel):
    shift_date: Optional[date] = None
    shift_type: Optional[ShiftType] = None
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    notes: Optional[str] = None


class AttendanceUpdate(BaseModel):
    attendance_status: AttendanceStatus
    actual_start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    actual_end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)


class ShiftResponse(BaseModel):
    id: int
    staff_id: int
    staff_name: str
    shift_date: date
    shift_type: ShiftType
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None
    attendance_status: AttendanceStatus
    actual_start_time: Optional[str] = None
    actual_end_time: Optional[str] = None

    class Config:
        from_attributes = True


class ActivityLogCreate(BaseModel):
    action: str = Field(..., min_length=2, max_length=50)
    description: str = Field(..., min_length=2, max_length=500)
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    details: Dict = {}


class PatientHistoryResponse(BaseModel):
    patient: PatientResponse
    appointments: List[AppointmentResponse]
    lab_orders: List[LabOrderResponse]
    prescriptions: List[PrescriptionResponse]
    invoices: List[InvoiceResponse]
    admissions: List[AdmissionResponse]

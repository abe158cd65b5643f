from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import List, Optional
from datetime import datetime
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.models import (
    User, StaffRole, Admission, AdmissionStatus, MarEntry, MarStatus,
    VitalSignRecord, NursingNote, Bed, BedStatus
)
from frontoffice.schemas import (
    AdmissionCreate,
    AdmissionStatusUpdate,
    AdmissionResponse,
    DischargeRequest,
    MarEntryCreate,
    MarEntryResponse,
    MarSummaryItem,
    VitalSignsCreate,
    VitalSignsResponse,
    NursingNoteCreate,
    NursingNoteResponse
)
from frontoffice.auth import get_current_active_user, require_roles
from frontoffice.routers.patients import get_patient_or_404
from frontoffice.routers.prescriptions import get_prescription_or_404
from frontoffice.routers.wards import get_bed_or_404, get_ward_or_404

router = APIRouter(prefix="/admissions", tags=["Admissions"])

ACTIVE_STATUSES = (
    AdmissionStatus.ADMITTED,
    AdmissionStatus.OBSERVATION,
    AdmissionStatus.PENDING_DISCHARGE,
)

require_clinical_staff = require_roles(StaffRole.DOCTOR, StaffRole.NURSE)


async def get_admission_or_404(db: AsyncSession, admission_id: int) -> Admission:
    result = await db.execute(select(Admission).where(Admission.id == admission_id))
    admission = result.scalars().first()

    if not admission:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Admission with ID {admission_id} not found"
        )
    return admission


def _require_active(admission: Admission):
    if admission.status not in ACTIVE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Admission {admission.id} is {admission.status.value}"
        )


@router.post("", response_model=AdmissionResponse, status_code=status.HTTP_201_CREATED)
async def admit_patient(
    admission: AdmissionCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(get_current_active_user)
):
    patient = await get_patient_or_404(db, admission.patient_id)

    result = await db.execute(
        select(Admission).where(
            Admission.patient_id == patient.id,
            Admission.status.in_(ACTIVE_STATUSES)
        )
    )
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{patient.full_name} is already admitted"
        )

    bed = await get_bed_or_404(db, admission.bed_id)
    ward = await get_ward_or_404(db, bed.ward_id)

    # claim the bed only if it is still free, so two admissions cannot share it
    result = await db.execute(
        update(Bed)
        .where(Bed.id == bed.id, Bed.status == BedStatus.AVAILABLE)
        .values(status=BedStatus.OCCUPIED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        detail = f"{ward.name} {bed.label} is not available ({bed.status.value})"
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    db_admission = Admission(
        patient_id=patient.id,
        patient_name=patient.full_name,
        bed_id=bed.id,
        room=ward.name,
        bed=bed.label,
        admission_date=admission.admission_date or datetime.utcnow(),
        reason_for_admission=admission.reason_for_admission,
        primary_doctor=admission.primary_doctor,
        status=AdmissionStatus.ADMITTED
    )
    db.add(db_admission)
    await db.commit()
    await db.refresh(db_admission)

    await record_activity(
        mongo_db, current_user,
        action="ADMIT",
        description=f"{patient.full_name} admitted to {ward.name} {bed.label}",
        target_type="admission",
        target_id=db_admission.id
    )
    return db_admission


@router.get("", response_model=List[AdmissionResponse])
async def get_admissions(
    admission_status: Optional[AdmissionStatus] = Query(None, alias="status"),
    active_only: bool = False,
    patient_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = select(Admission)
    if admission_status:
        query = query.where(Admission.status == admission_status)
    if active_only:
        query = query.where(Admission.status.in_(ACTIVE_STATUSES))
    if patient_id:
        query = query.where(Admission.patient_id == patient_id)

    result = await db.execute(
        query.order_by(Admission.admission_date.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.get("/{admission_id}", response_model=AdmissionResponse)
async def get_admission(
    admission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await get_admission_or_404(db, admission_id)


@router.patch("/{admission_id}/status", response_model=AdmissionResponse)
async def update_admission_status(
    admission_id: int,
    status_update: AdmissionStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_clinical_staff)
):
    admission = await get_admission_or_404(db, admission_id)
    _require_active(admission)

    admission.status = status_update.status
    await db.commit()
    await db.refresh(admission)
    return admission


@router.post("/{admission_id}/discharge", response_model=AdmissionResponse)
async def discharge_patient(
    admission_id: int,
    discharge: DischargeRequest,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_clinical_staff)
):
    admission = await get_admission_or_404(db, admission_id)
    _require_active(admission)

    discharge_date = discharge.discharge_date or datetime.utcnow()
    if discharge_date < admission.admission_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="discharge_date cannot be before the admission date"
        )

    admission.status = AdmissionStatus.DISCHARGED
    admission.discharge_date = discharge_date
    admission.discharge_summary = discharge.discharge_summary
    if admission.bed_id is not None:
        await db.execute(
            update(Bed)
            .where(Bed.id == admission.bed_id, Bed.status == BedStatus.OCCUPIED)
            .values(status=BedStatus.NEEDS_CLEANING)
            .execution_options(synchronize_session=False)
        )

    await db.commit()
    await db.refresh(admission)

    await record_activity(
        mongo_db, current_user,
        action="DISCHARGE",
        description=f"{admission.patient_name} discharged from {admission.room} {admission.bed}",
        target_type="admission",
        target_id=admission.id
    )
    return admission


# ---------- Medication Administration Record ----------

@router.post("/{admission_id}/mar", response_model=MarEntryResponse, status_code=status.HTTP_201_CREATED)
async def record_mar_entry(
    admission_id: int,
    entry: MarEntryCreate,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db),
    current_user: User = Depends(require_clinical_staff)
):
    """
    Record one administration event.

    With a prescription_id, medication name and dosage default from the prescription.
    Without one, both must be given.
    """
    admission = await get_admission_or_404(db, admission_id)
    _require_active(admission)

    medication_name = entry.medication_name
    dosage = entry.dosage
    if entry.prescription_id:
        prescription = await get_prescription_or_404(db, entry.prescription_id)
        if prescription.patient_id != admission.patient_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Prescription belongs to a different patient"
            )
        medication_name = medication_name or prescription.medication_name
        dosage = dosage or prescription.dosage

    if not medication_name or not dosage:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="medication_name and dosage are required without a prescription"
        )

    administration_time = entry.administration_time
    administered_by = None
    if entry.status == MarStatus.ADMINISTERED:
        administration_time = administration_time or datetime.utcnow()
        administered_by = current_user.full_name

    db_entry = MarEntry(
        admission_id=admission.id,
        patient_id=admission.patient_id,
        prescription_id=entry.prescription_id,
        medication_name=medication_name,
        dosage=dosage,
        route=entry.route,
        frequency=entry.frequency,
        scheduled_time=entry.scheduled_time,
        administration_time=administration_time,
        administered_by=administered_by,
        status=entry.status,
        notes=entry.notes
    )
    db.add(db_entry)
    await db.commit()
    await db.refresh(db_entry)

    await record_activity(
        mongo_db, current_user,
        action="MAR_ENTRY",
        description=f"{medication_name} {dosage} {entry.status.value} for {admission.patient_name}",
        target_type="admission",
        target_id=admission.id,
        details={"mar_entry_id": db_entry.id}
    )
    return db_entry


@router.get("/{admission_id}/mar", response_model=List[MarEntryResponse])
async def get_mar_entries(
    admission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    await get_admission_or_404(db, admission_id)
    result = await db.execute(
        select(MarEntry)
        .where(MarEntry.admission_id == admission_id)
        .order_by(MarEntry.scheduled_time, MarEntry.id)
    )
    return result.scalars().all()


@router.get("/{admission_id}/mar/summary", response_model=List[MarSummaryItem])
async def get_mar_summary(
    admission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Per-medication status counts with the latest event"""
    await get_admission_or_404(db, admission_id)
    result = await db.execute(
        select(MarEntry)
        .where(MarEntry.admission_id == admission_id)
        .order_by(MarEntry.scheduled_time, MarEntry.id)
    )

    summary = {}
    for entry in result.scalars().all():
        item = summary.setdefault(entry.medication_name, {
            "medication_name": entry.medication_name,
            "total_entries": 0,
            "counts": {s.value: 0 for s in MarStatus},
            "last_administered_at": None
        })
        item["total_entries"] += 1
        item["counts"][entry.status.value] += 1
        # rows arrive in scheduled order, so the last one seen is the latest
        item["last_status"] = entry.status
        item["last_scheduled_time"] = entry.scheduled_time
        if entry.status == MarStatus.ADMINISTERED:
            item["last_administered_at"] = entry.administration_time

    return [MarSummaryItem(**item) for item in summary.values()]


# ---------- Vitals & nursing notes ----------

@router.post("/{admission_id}/vitals", response_model=VitalSignsResponse, status_code=status.HTTP_201_CREATED)
async def record_vital_signs(
    admission_id: int,
    vitals: VitalSignsCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_clinical_staff)
):
    admission = await get_admission_or_404(db, admission_id)
    _require_active(admission)

    record = VitalSignRecord(
        admission_id=admission.id,
        patient_id=admission.patient_id,
        recorded_by=current_user.full_name,
        recorded_at=datetime.utcnow(),
        **vitals.model_dump()
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


@router.get("/{admission_id}/vitals", response_model=List[VitalSignsResponse])
async def get_vital_signs(
    admission_id: int,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Most recent readings first"""
    await get_admission_or_404(db, admission_id)
    result = await db.execute(
        select(VitalSignRecord)
        .where(VitalSignRecord.admission_id == admission_id)
        .order_by(VitalSignRecord.recorded_at.desc(), VitalSignRecord.id.desc())
        .limit(limit)
    )
    return result.scalars().all()


@router.post("/{admission_id}/notes", response_model=NursingNoteResponse, status_code=status.HTTP_201_CREATED)
async def add_nursing_note(
    admission_id: int,
    note: NursingNoteCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_clinical_staff)
):
    admission = await get_admission_or_404(db, admission_id)

    db_note = NursingNote(
        admission_id=admission.id,
        note_type=note.note_type,
        content=note.content,
        author=current_user.full_name,
        created_at=datetime.utcnow()
    )
    db.add(db_note)
    await db.commit()
    await db.refresh(db_note)
    return db_note


@router.get("/{admission_id}/notes", response_model=List[NursingNoteResponse])
async def get_nursing_notes(
    admission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    await get_admission_or_404(db, admission_id)
    result = await db.execute(
        select(NursingNote)
        .where(NursingNote.admission_id == admission_id)
        .order_by(NursingNote.created_at.desc(), NursingNote.id.desc())
    )
    return result.scalars().all()

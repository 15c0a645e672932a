# /backend/wardround/models/extraction.py

"""
Extraction kinds and the shapes that travel between the scan endpoints,
the extraction use-cases and the reconciliation engine.

Each ExtractionKind maps to exactly one record model (``RECORD_MODELS``) so
the coercion boundary is an exhaustive lookup, never an untyped dict.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from wardround.models.base import CamelModel, LenientModel, coerce_choice
from wardround.models.records import (
    Acuity,
    AdmissionNote,
    ChronicDisease,
    CultureResult,
    DischargeSummary,
    EKG,
    Handoff,
    ImagingStudy,
    LabResultRecord,
    Medication,
    MicroscopyResult,
    ProblemEntry,
    ScannedDemographics,
    Task,
)


class ExtractionKind(str, Enum):
    LAB = "lab"
    MEDICATION = "medication"
    PROBLEM = "problem"
    CULTURE = "culture"
    APPOINTMENT = "appointment"
    HANDOFF = "handoff"
    TASK = "task"
    ADMISSION_NOTE = "admission_note"
    EKG = "ekg"
    ECHO = "echo"
    IMAGING = "imaging"
    PBS = "pbs"
    DISCHARGE_SUMMARY = "discharge_summary"
    PRE_ROUND_SUMMARY = "pre_round_summary"
    PATIENT_DEMOGRAPHICS = "patient_demographics"
    VITALS = "vitals"
    CHRONIC_DISEASE = "chronic_disease"


ARRAY_KINDS = frozenset({
    ExtractionKind.LAB,
    ExtractionKind.MEDICATION,
    ExtractionKind.PROBLEM,
    ExtractionKind.CULTURE,
    ExtractionKind.APPOINTMENT,
    ExtractionKind.HANDOFF,
    ExtractionKind.TASK,
    ExtractionKind.CHRONIC_DISEASE,
})

# Key under which a model sometimes wraps an array kind in an object
ENVELOPE_KEYS = {
    ExtractionKind.LAB: "results",
    ExtractionKind.MEDICATION: "medications",
    ExtractionKind.PROBLEM: "problems",
    ExtractionKind.CULTURE: "cultures",
    ExtractionKind.APPOINTMENT: "appointments",
    ExtractionKind.HANDOFF: "patients",
    ExtractionKind.TASK: "tasks",
    ExtractionKind.CHRONIC_DISEASE: "chronicDiseases",
}


# ── Extraction-only record shapes ────────────────────────────────────────────

class Appointment(LenientModel):
    title: str
    date: str
    time: str = ""
    location: str = ""
    type: str = "Meeting"
    notes: str = ""

    @field_validator("title", "date")
    @classmethod
    def _not_blank(cls, value):
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class HandoffUpdate(LenientModel):
    """One patient block parsed out of free-text handover notes."""
    room_number: str = ""
    name: str = ""
    update: Handoff = Field(default_factory=Handoff)
    acuity: Optional[Acuity] = None

    @field_validator("update", mode="before")
    @classmethod
    def _update_object(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("acuity", mode="before")
    @classmethod
    def _known_acuity(cls, value):
        if value in (None, ""):
            return None
        return coerce_choice(value, Acuity, None)

    @model_validator(mode="after")
    def _identifies_a_patient(self):
        if not self.room_number.strip() and not self.name.strip():
            raise ValueError("roomNumber or name is required")
        return self


class EchoReport(LenientModel):
    date: str = ""
    lvef: str = ""
    valves: str = ""
    wall_motion: str = ""
    impression: str = ""


class PreRoundSummary(LenientModel):
    subjective: str = ""
    assessment: str = ""
    plan_list: List[str] = Field(default_factory=list)


class PatientScan(ScannedDemographics):
    """Demographics read verbatim off an ID sticker or admission card."""
    diagnosis: str = ""
    underlying_conditions: str = ""
    one_liner: str = ""


class VitalsSummary(LenientModel):
    """Ranges read off a vitals flowsheet; ``readable`` is False for a blurred sheet."""
    readable: bool = True
    tmax: str = ""
    bp: str = ""
    hr: str = ""
    rr: str = ""
    o2: str = ""
    summary: str = ""

    @field_validator("readable", mode="before")
    @classmethod
    def _readable_unless_stated(cls, value):
        return True if value is None else value

    def as_text(self) -> str:
        """One-line summary, e.g. "Tmax 38.2, BP 110-130/70-80, HR 80-96"."""
        if self.summary.strip():
            return self.summary.strip()
        ranges = (("Tmax", self.tmax), ("BP", self.bp), ("HR", self.hr), ("RR", self.rr), ("O2", self.o2))
        return ", ".join(f"{label} {value.strip()}" for label, value in ranges if value.strip())


RECORD_MODELS = {
    ExtractionKind.LAB: LabResultRecord,
    ExtractionKind.MEDICATION: Medication,
    ExtractionKind.PROBLEM: ProblemEntry,
    ExtractionKind.CULTURE: CultureResult,
    ExtractionKind.APPOINTMENT: Appointment,
    ExtractionKind.HANDOFF: HandoffUpdate,
    ExtractionKind.TASK: Task,
    ExtractionKind.ADMISSION_NOTE: AdmissionNote,
    ExtractionKind.EKG: EKG,
    ExtractionKind.ECHO: EchoReport,
    ExtractionKind.IMAGING: ImagingStudy,
    ExtractionKind.PBS: MicroscopyResult,
    ExtractionKind.DISCHARGE_SUMMARY: DischargeSummary,
    ExtractionKind.PRE_ROUND_SUMMARY: PreRoundSummary,
    ExtractionKind.PATIENT_DEMOGRAPHICS: PatientScan,
    ExtractionKind.VITALS: VitalsSummary,
    ExtractionKind.CHRONIC_DISEASE: ChronicDisease,
}


class ExtractionEnvelope(BaseModel):
    """Unit of work for one provider call. Never persisted."""
    kind: ExtractionKind
    raw_response_text: str = ""
    sanitized_json: str = ""
    validation_errors: List[str] = Field(default_factory=list)
    provider_error: Optional[str] = None


# ── Scan API ─────────────────────────────────────────────────────────────────

class ImageScanRequest(CamelModel):
    images: List[str] = Field(..., min_length=1, max_length=10)
    patient_name: str = ""
    reference_year: Optional[int] = Field(default=None, ge=1900, le=2400)


class LabScanRequest(ImageScanRequest):
    fill_grid: bool = False


class EKGScanRequest(ImageScanRequest):
    previous_context: str = ""


class TextScanRequest(CamelModel):
    text: str = Field(..., min_length=1)


class LabScanResponse(CamelModel):
    results: List[LabResultRecord] = Field(default_factory=list)
    pbs_text: str = ""
    validation_errors: List[str] = Field(default_factory=list)


class RecordsResponse(CamelModel):
    kind: ExtractionKind
    records: List[Dict[str, Any]] = Field(default_factory=list)
    validation_errors: List[str] = Field(default_factory=list)


class RecordResponse(CamelModel):
    kind: ExtractionKind
    record: Optional[Dict[str, Any]] = None
    validation_errors: List[str] = Field(default_factory=list)


# ── Reconcile API ────────────────────────────────────────────────────────────

class ReconcileRequest(CamelModel):
    """Reviewed records the user chose to save into one patient."""
    kind: ExtractionKind
    records: List[Dict[str, Any]] = Field(default_factory=list)
    record: Optional[Dict[str, Any]] = None
    fill_grid: bool = False
    fallback_date: Optional[str] = None

    @model_validator(mode="after")
    def _has_payload(self):
        if not self.records and self.record is None:
            raise ValueError("records or record is required")
        return self


class ReconcileResponse(CamelModel):
    patient: Dict[str, Any]
    added: int = 0
    updated: int = 0
    skipped: int = 0
    unmatched_ids: List[str] = Field(default_factory=list)
    validation_errors: List[str] = Field(default_factory=list)


class BulkHandoffApplyRequest(CamelModel):
    updates: List[HandoffUpdate] = Field(..., min_length=1)


class BulkHandoffApplyResponse(CamelModel):
    applied: List[str] = Field(default_factory=list)
    unmatched: List[str] = Field(default_factory=list)

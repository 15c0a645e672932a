# /backend/wardround/models/records.py

"""
Clinical record shapes shared by the patient aggregate and the extraction
pipeline.

Every model validates camelCase input (what the LLM and the frontend send)
and dumps camelCase with ``model_dump(by_alias=True)``. Records that live in
an identified collection carry an optional ``id``: absent on freshly
extracted records, assigned by the reconciliation engine on first save.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import Field, field_validator

from wardround.models.base import LenientModel, coerce_choice

LabScalar = Union[float, str]


class Acuity(str, Enum):
    STABLE = "Stable"
    WATCH = "Watch"
    UNSTABLE = "Unstable"


class Isolation(str, Enum):
    NONE = "None"
    CONTACT = "Contact"
    DROPLET = "Droplet"
    AIRBORNE = "Airborne"


class TaskPriority(str, Enum):
    NORMAL = "Normal"
    URGENT = "Urgent"
    BEFORE_NOON = "Before Noon"
    BEFORE_DISCHARGE = "Before Discharge"


class ProblemStatus(str, Enum):
    ACTIVE = "Active"
    STABLE = "Stable"
    WORSENING = "Worsening"
    IMPROVED = "Improved"
    RESOLVED = "Resolved"


class CultureStatus(str, Enum):
    PENDING = "Pending"
    PRELIM = "Prelim"
    FINAL = "Final"


# ── Time series ──────────────────────────────────────────────────────────────

class SubLabResult(LenientModel):
    name: str
    value: Optional[LabScalar] = None
    unit: str = ""


class LabValue(LenientModel):
    """One observation at one instant (a point of a lab series)."""
    date: str
    value: Optional[LabScalar] = None
    sub_results: Optional[List[SubLabResult]] = None


class CustomLab(LenientModel):
    """Free-form "other" lab series, keyed by its literal test name."""
    name: str
    unit: str = ""
    values: List[LabValue] = Field(default_factory=list)


class LabResultRecord(LenientModel):
    """One extracted cell of a lab sheet: (testName, dateTime) -> value."""
    test_name: str
    value: Optional[LabScalar]
    unit: str = ""
    flag: Optional[str] = None
    date_time: Optional[str] = None
    category: str = ""
    sub_results: Optional[List[SubLabResult]] = None

    @field_validator("test_name")
    @classmethod
    def _test_name_not_blank(cls, value):
        if not value.strip():
            raise ValueError("testName must not be blank")
        return value.strip()


# ── Identified collections ───────────────────────────────────────────────────

class Medication(LenientModel):
    id: Optional[str] = None
    name: str
    dose: str = ""
    route: str = ""
    frequency: str = ""
    is_active: bool = True
    is_home_med: bool = False
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value):
        if not value.strip():
            raise ValueError("name must not be blank")
        return value.strip()


class ProblemEntry(LenientModel):
    id: Optional[str] = None
    problem: str
    status: ProblemStatus = ProblemStatus.ACTIVE
    plan: str = ""
    system: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value):
        return coerce_choice(value, ProblemStatus, ProblemStatus.ACTIVE)

    @field_validator("problem")
    @classmethod
    def _problem_not_blank(cls, value):
        if not value.strip():
            raise ValueError("problem must not be blank")
        return value


class Sensitivity(LenientModel):
    antibiotic: str
    interpretation: str = ""
    mic: str = ""


class CultureResult(LenientModel):
    id: Optional[str] = None
    specimen: str
    collection_date: str = ""
    status: CultureStatus = CultureStatus.PENDING
    organism: str = ""
    gram_stain: str = ""
    collection_source: str = ""
    notes: str = ""
    sensitivity: List[Sensitivity] = Field(default_factory=list)
    image_urls: List[str] = Field(default_factory=list)
    archived: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value):
        return coerce_choice(value, CultureStatus, CultureStatus.PENDING)

    @field_validator("sensitivity", mode="before")
    @classmethod
    def _drop_malformed_sensitivities(cls, value):
        if not isinstance(value, list):
            return []
        return [s for s in value if isinstance(s, dict) and s.get("antibiotic")]


class ImagingStudy(LenientModel):
    id: Optional[str] = None
    modality: str = ""
    body_part: str = ""
    date: str = ""
    time: str = ""
    impression: str = ""
    findings: str = ""
    image_urls: List[str] = Field(default_factory=list)
    archived: bool = False


class EKGIntervals(LenientModel):
    pr: str = ""
    qrs: str = ""
    qtc: str = ""


class EKG(LenientModel):
    id: Optional[str] = None
    date: str = ""
    time: str = ""
    hn: str = ""
    rate: str = ""
    rhythm: str = ""
    axis: str = ""
    intervals: EKGIntervals = Field(default_factory=EKGIntervals)
    findings: str = ""
    impression: str = ""
    comparison: str = ""
    image_urls: List[str] = Field(default_factory=list)
    archived: bool = False

    @field_validator("intervals", mode="before")
    @classmethod
    def _intervals_object(cls, value):
        return value if isinstance(value, dict) else {}


class MicroscopyResult(LenientModel):
    """Peripheral blood smear (PBS) reading."""
    id: Optional[str] = None
    date: str = ""
    rbc_morphology: str = ""
    wbc_morphology: str = ""
    platelet_morphology: str = ""
    parasites: str = ""
    others: str = ""
    image_urls: List[str] = Field(default_factory=list)
    archived: bool = False


class Subtask(LenientModel):
    id: Optional[str] = None
    text: str = ""
    is_completed: bool = False


class Task(LenientModel):
    id: Optional[str] = None
    description: str
    is_completed: bool = False
    priority: TaskPriority = TaskPriority.NORMAL
    due_date: Optional[str] = None
    subtasks: List[Subtask] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _known_priority(cls, value):
        return coerce_choice(value, TaskPriority, TaskPriority.NORMAL)

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, value):
        if not value.strip():
            raise ValueError("description must not be blank")
        return value


class TimelineEvent(LenientModel):
    id: Optional[str] = None
    title: str
    date: str
    type: str = "Other"
    status: str = "Scheduled"
    location: str = ""
    notes: str = ""


class Antibiotic(LenientModel):
    id: Optional[str] = None
    name: str
    dose: str = ""
    start_date: str = ""
    planned_duration: Optional[int] = None
    indication: str = ""
    end_date: Optional[str] = None


class Consultation(LenientModel):
    id: Optional[str] = None
    specialty: str = ""
    reason: str = ""
    status: str = "Pending"
    recommendations: str = ""
    request_date: str = ""
    follow_up_date: Optional[str] = None
    follow_up_notes: str = ""


# ── Single-object blocks ─────────────────────────────────────────────────────

class Handoff(LenientModel):
    illness_severity: Acuity = Acuity.STABLE
    patient_summary: str = ""
    action_list: str = ""
    situation_awareness: str = ""
    synthesis: str = ""
    contingencies: str = ""

    @field_validator("illness_severity", mode="before")
    @classmethod
    def _known_severity(cls, value):
        return coerce_choice(value, Acuity, Acuity.STABLE)


class ScannedDemographics(LenientModel):
    name: str = ""
    hn: str = ""
    age: Optional[int] = None
    gender: str = ""

    @field_validator("age", mode="before")
    @classmethod
    def _age_or_none(cls, value):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


class ChronicDisease(LenientModel):
    type: str
    diagnosis_date: str = ""
    last_values: Dict[str, Any] = Field(default_factory=dict)
    last_exam: Dict[str, Any] = Field(default_factory=dict)
    complications: str = ""

    @field_validator("type")
    @classmethod
    def _not_blank(cls, value):
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("last_values", "last_exam", mode="before")
    @classmethod
    def _object_or_empty(cls, value):
        return value if isinstance(value, dict) else {}


class AdmissionNote(LenientModel):
    note_type: str = "Admission Note"
    patient_demographics: Optional[ScannedDemographics] = None
    chief_complaint: str = ""
    present_illness: str = ""
    past_history: str = ""
    physical_exam: str = ""
    investigations: str = ""
    impression: str = ""
    management_plan: str = ""
    problem_list: List[ProblemEntry] = Field(default_factory=list)
    extracted_labs: List[LabResultRecord] = Field(default_factory=list)
    chronic_diseases: List[ChronicDisease] = Field(default_factory=list)
    scanned_at: str = ""


class AdvancedCarePlan(LenientModel):
    category: str = "Not Decided"
    no_cpr: bool = False
    no_ett: bool = False
    no_inotropes: bool = False
    no_cvc: bool = False
    no_hd: bool = False
    other_details: str = ""


class DischargeSummary(LenientModel):
    admission_diagnosis: str = ""
    discharge_diagnosis: str = ""
    hospital_course: str = ""
    discharge_condition: str = ""
    discharge_medications: List[str] = Field(default_factory=list)
    follow_up_instructions: str = ""


class AllergyConflict(LenientModel):
    medication_id: Optional[str] = None
    medication_name: str
    allergy: str
    reason: str = ""

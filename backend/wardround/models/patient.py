# /backend/wardround/models/patient.py

from pydantic import Field
from typing import List, Optional, Union
from datetime import datetime

from wardround.models.base import CamelModel
from wardround.models.records import (
    Acuity,
    AdmissionNote,
    AdvancedCarePlan,
    Antibiotic,
    Consultation,
    CultureResult,
    CustomLab,
    DischargeSummary,
    EKG,
    Handoff,
    ImagingStudy,
    Isolation,
    LabValue,
    Medication,
    MicroscopyResult,
    ProblemEntry,
    Subtask,
    Task,
    TaskPriority,
    TimelineEvent,
)

STANDARD_SERIES = ("creatinine", "wbc", "hgb", "k", "inr", "sodium")


class Labs(CamelModel):
    """
    Lab series of one patient.

    Each standard series and each "other" series stores points in insertion
    order; ``ordered`` gives the chronological view (stable on equal dates).
    """
    creatinine: List[LabValue] = Field(default_factory=list)
    wbc: List[LabValue] = Field(default_factory=list)
    hgb: List[LabValue] = Field(default_factory=list)
    k: List[LabValue] = Field(default_factory=list)
    inr: List[LabValue] = Field(default_factory=list)
    sodium: List[LabValue] = Field(default_factory=list)
    others: List[CustomLab] = Field(default_factory=list)
    pbs: List[MicroscopyResult] = Field(default_factory=list)

    def series(self, key: str) -> Optional[List[LabValue]]:
        """Points of a standard series, or of an "other" series by name."""
        if key in STANDARD_SERIES:
            return getattr(self, key)
        other = self.find_other(key)
        return other.values if other else None

    def find_other(self, name: str) -> Optional[CustomLab]:
        wanted = name.strip().lower()
        for other in self.others:
            if other.name.strip().lower() == wanted:
                return other
        return None

    def ordered(self, key: str) -> List[LabValue]:
        return sorted(self.series(key) or [], key=lambda point: point.date)


class PatientBase(CamelModel):
    name: str = Field(..., min_length=1)
    hn: str = ""
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: str = ""
    diagnosis: str = ""
    room: str = ""
    admission_date: str = ""
    acuity: Acuity = Acuity.STABLE
    isolation: Isolation = Isolation.NONE
    underlying_conditions: str = ""
    allergies: str = ""
    one_liner: str = ""


class PatientCreate(PatientBase):
    pass


class PatientUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    hn: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[str] = None
    diagnosis: Optional[str] = None
    room: Optional[str] = None
    admission_date: Optional[str] = None
    acuity: Optional[Acuity] = None
    isolation: Optional[Isolation] = None
    underlying_conditions: Optional[str] = None
    allergies: Optional[str] = None
    one_liner: Optional[str] = None
    advanced_care_plan: Optional[AdvancedCarePlan] = None
    handoff: Optional[Handoff] = None
    antibiotics: Optional[List[Antibiotic]] = None
    consultations: Optional[List[Consultation]] = None


class Patient(PatientBase):
    """The patient aggregate: one consistency boundary, read and written whole."""
    id: Optional[str] = None
    medications: List[Medication] = Field(default_factory=list)
    antibiotics: List[Antibiotic] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    timeline: List[TimelineEvent] = Field(default_factory=list)
    labs: Labs = Field(default_factory=Labs)
    consultations: List[Consultation] = Field(default_factory=list)
    imaging: List[ImagingStudy] = Field(default_factory=list)
    ekgs: List[EKG] = Field(default_factory=list)
    cultures: List[CultureResult] = Field(default_factory=list)
    advanced_care_plan: AdvancedCarePlan = Field(default_factory=AdvancedCarePlan)
    handoff: Handoff = Field(default_factory=Handoff)
    admission_note: Optional[AdmissionNote] = None
    discharge_summary: Optional[DischargeSummary] = None
    problem_list: List[ProblemEntry] = Field(default_factory=list)
    problem_history: List[List[ProblemEntry]] = Field(default_factory=list)
    problem_history_index: int = -1
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def active_medications(self) -> List[Medication]:
        return [med for med in self.medications if med.is_active]

    def allergy_list(self) -> List[str]:
        """Allergies are kept as free text; split on commas, semicolons and newlines."""
        parts = [part.strip() for part in
                 self.allergies.replace(";", ",").replace("\n", ",").split(",")]
        return [part for part in parts if part and part.lower() not in ("nkda", "none", "no known drug allergies")]


class TaskUpdate(CamelModel):
    description: Optional[str] = Field(default=None, min_length=1)
    is_completed: Optional[bool] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[str] = None
    subtasks: Optional[List[Subtask]] = None


class MedicationUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    dose: Optional[str] = None
    route: Optional[str] = None
    frequency: Optional[str] = None
    is_home_med: Optional[bool] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class MedicationToggle(CamelModel):
    is_active: bool


class ManualLabEntry(CamelModel):
    test_name: str = Field(..., min_length=1)
    value: Union[float, str]
    unit: str = ""
    date_time: Optional[str] = None


class ProblemListReplace(CamelModel):
    problems: List[ProblemEntry]


class ProblemListState(CamelModel):
    problems: List[ProblemEntry]
    history_index: int
    history_length: int
    can_undo: bool
    can_redo: bool


class PatientStatistics(CamelModel):
    total_patients: int = 0
    stable: int = 0
    watch: int = 0
    unstable: int = 0
    pending_tasks: int = 0

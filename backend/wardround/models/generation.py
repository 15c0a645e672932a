# /backend/wardround/models/generation.py

from pydantic import Field, field_validator
from typing import List, Optional
from enum import Enum

from wardround.models.base import CamelModel, LenientModel, coerce_choice
from wardround.models.records import AllergyConflict


class InteractionSeverity(str, Enum):
    HIGH = "High"
    MODERATE = "Moderate"
    LOW = "Low"


class DrugInteraction(LenientModel):
    pair: str
    severity: InteractionSeverity = InteractionSeverity.MODERATE
    description: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _known_severity(cls, value):
        # "Major"/"Minor" are the other common scale
        aliases = {"major": "High", "minor": "Low"}
        value = aliases.get(str(value or "").strip().lower(), value)
        return coerce_choice(value, InteractionSeverity, InteractionSeverity.MODERATE)


class MedicationChangeStatus(str, Enum):
    NEW = "New"
    CONTINUED = "Continued"
    STOPPED = "Stopped"
    MODIFIED = "Modified"


class MedicationChange(LenientModel):
    med_name: str
    status: MedicationChangeStatus = MedicationChangeStatus.CONTINUED
    note: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value):
        return coerce_choice(value, MedicationChangeStatus, MedicationChangeStatus.CONTINUED)


class AllergyAlert(LenientModel):
    med_name: str
    alert: str = ""


class DischargeMedicationAnalysis(CamelModel):
    changes: List[MedicationChange] = Field(default_factory=list)
    allergy_alerts: List[AllergyAlert] = Field(default_factory=list)
    conflicts: List[AllergyConflict] = Field(default_factory=list)


class TextResponse(CamelModel):
    text: str = ""


class LabInterpretationRequest(CamelModel):
    tests: Optional[List[str]] = None


class DrugInteractionRequest(CamelModel):
    medications: List[str] = Field(..., min_length=2)

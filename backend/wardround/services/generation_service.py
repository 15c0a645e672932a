# /backend/wardround/services/generation_service.py

"""
Clinical text generation: one-liners, pre-round SOAP drafts, lab trend
interpretation, discharge summaries and medication checks.

Patient data is anonymized before it goes into a prompt. Every call
degrades to "" / None / [] on provider or parse failure.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import ValidationError

from wardround.models.extraction import ExtractionKind, PreRoundSummary
from wardround.models.generation import (
    AllergyAlert,
    DischargeMedicationAnalysis,
    DrugInteraction,
    MedicationChange,
)
from wardround.models.patient import STANDARD_SERIES, Patient
from wardround.models.records import DischargeSummary
from wardround.services.completion_provider import CompletionRequest, completion_provider
from wardround.services.reconciliation import find_allergy_conflicts
from wardround.services.sanitizer import sanitize
from wardround.services.schema_coercer import CoercionError, coerce_object, parse_json
from wardround.utils.privacy import anonymize_patient

logger = logging.getLogger(__name__)


def _validated(model, items) -> list:
    records = []
    for item in items if isinstance(items, list) else []:
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropped {model.__name__}: {e.errors()[:1]}")
    return records


def _med_line(medication) -> str:
    return " ".join(part for part in (medication.name, medication.dose, medication.route,
                                      medication.frequency) if part)


class GenerationService:

    def __init__(self, provider=None):
        self.provider = provider or completion_provider

    async def _text(self, prompt: str) -> str:
        response = await self.provider.complete(CompletionRequest(prompt=prompt))
        if not response.ok:
            logger.warning(f"Generation failed: {response.error}")
            return ""
        return response.text.strip()

    async def _json(self, prompt: str):
        response = await self.provider.complete(CompletionRequest(prompt=prompt, structured_output=True))
        if not response.ok:
            logger.warning(f"Generation failed: {response.error}")
            return None
        try:
            return parse_json(sanitize(response.text))
        except CoercionError as e:
            logger.warning(f"Generation returned unusable JSON: {e}")
            return None

    @staticmethod
    def _context(patient: Patient) -> dict:
        return anonymize_patient(patient.model_dump(by_alias=True, mode="json"))

    # ------------------------------------------------------------------

    async def one_liner(self, patient: Patient) -> str:
        data = self._context(patient)
        chief_complaint = (data.get("admissionNote") or {}).get("chiefComplaint") or "N/A"
        prompt = f"""Act as a chief resident. Generate a concise, professional medical "one-liner".
Format: "[Age][Sex] w/ [Key PMH], admitted for [Diagnosis/Chief Complaint], currently [Status/Plan]."
Keep it under 25 words. Use standard medical abbreviations.

Patient: {data.get('age')}{data.get('gender')}.
Diagnosis: {data.get('diagnosis')}.
PMH: {data.get('underlyingConditions') or 'None'}.
Current status: {data.get('acuity')}.
Chief complaint: {chief_complaint}.
"""
        return await self._text(prompt)

    async def pre_round_summary(self, patient: Patient) -> Optional[PreRoundSummary]:
        data = self._context(patient)
        creatinine = (data.get("labs") or {}).get("creatinine", [])[-2:]
        antibiotics = ", ".join(a["name"] for a in data.get("antibiotics", []) if a.get("name")) or "None"
        prompt = f"""Act as a medical resident in Thailand. Summarize this patient into draft SOAP components.
Patient: {data.get('age')}{data.get('gender')}. Dx: {data.get('diagnosis')}.
Recent labs (Cr): {json.dumps(creatinine)}.
Current antibiotics: {antibiotics}.
Medical Thai-English is preferred for Subjective; English for Assessment/Plan.

Return ONLY valid JSON: {{"subjective": "string", "assessment": "string", "planList": ["string"]}}
"""
        parsed = await self._json(prompt)
        if parsed is None:
            return None
        try:
            return coerce_object(ExtractionKind.PRE_ROUND_SUMMARY, parsed)
        except CoercionError as e:
            logger.warning(f"Pre-round summary: {e}")
            return None

    async def interpret_labs(self, patient: Patient, tests: Optional[Sequence[str]] = None) -> str:
        labs = patient.labs
        trends = {}
        for key in tests or STANDARD_SERIES:
            points = labs.ordered(key)
            if points:
                trends[key] = [point.model_dump(by_alias=True, exclude_none=True) for point in points[-5:]]
        if not tests:
            for other in labs.others:
                if other.values:
                    trends[other.name] = [p.model_dump(by_alias=True, exclude_none=True)
                                          for p in labs.ordered(other.name)[-5:]]
        if not trends:
            return ""

        prompt = f"""Act as a clinical pathologist. Interpret these lab trends and give their clinical significance:
{json.dumps(trends, indent=2, default=str)}

Focus on abnormal values and their implications. Plain text, at most 200 words.
"""
        return await self._text(prompt)

    async def discharge_summary(self, patient: Patient) -> Optional[DischargeSummary]:
        data = self._context(patient)
        active = [_med_line(m) for m in patient.active_medications()]
        prompt = f"""Act as a hospital physician. Write a discharge summary for this patient.
Current date: {datetime.now().strftime('%Y-%m-%d')}.
Discharge medications: {', '.join(active) or 'None'}.
Patient:
{json.dumps(data, indent=2, default=str)}

Return ONLY valid JSON:
{{"admissionDiagnosis": "string", "dischargeDiagnosis": "string", "hospitalCourse": "string",
 "dischargeCondition": "string", "dischargeMedications": ["string"], "followUpInstructions": "string"}}
"""
        parsed = await self._json(prompt)
        if parsed is None:
            return None
        try:
            return coerce_object(ExtractionKind.DISCHARGE_SUMMARY, parsed)
        except CoercionError as e:
            logger.warning(f"Discharge summary: {e}")
            return None

    async def drug_interactions(self, medications: Sequence[str]) -> List[DrugInteraction]:
        names = [name.strip() for name in medications if name and name.strip()]
        if len(names) < 2:
            return []
        prompt = f"""Act as a clinical pharmacist. List clinically relevant drug-drug interactions among:
{', '.join(names)}

Return ONLY valid JSON:
{{"interactions": [{{"pair": "Drug A + Drug B", "severity": "High|Moderate|Low", "description": "string"}}]}}
"""
        parsed = await self._json(prompt)
        if isinstance(parsed, dict):
            parsed = parsed.get("interactions")
        return _validated(DrugInteraction, parsed)

    async def analyze_discharge_medications(self, patient: Patient) -> DischargeMedicationAnalysis:
        """Medication reconciliation at discharge. Read-only: nothing is stopped or started."""
        active = patient.active_medications()
        home = [m for m in patient.medications if m.is_home_med]
        allergies = patient.allergy_list()
        conflicts = find_allergy_conflicts(active, allergies)

        prompt = f"""Act as a clinical pharmacist doing discharge medication reconciliation.
Active inpatient medications: {'; '.join(_med_line(m) for m in active) or 'None'}
Home medications: {'; '.join(_med_line(m) for m in home) or 'None known'}
Allergies: {', '.join(allergies) or 'No Known Drug Allergies'}

Return ONLY valid JSON:
{{"changes": [{{"medName": "string", "status": "New|Continued|Stopped|Modified", "note": "string"}}],
 "allergyAlerts": [{{"medName": "string", "alert": "string"}}]}}
"""
        parsed = await self._json(prompt)
        changes, alerts = [], []
        if isinstance(parsed, dict):
            changes = _validated(MedicationChange, parsed.get("changes"))
            alerts = _validated(AllergyAlert, parsed.get("allergyAlerts"))
        return DischargeMedicationAnalysis(changes=changes, allergy_alerts=alerts, conflicts=conflicts)


# Global singleton
generation_service = GenerationService()

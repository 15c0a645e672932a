# /backend/wardround/services/extraction_service.py

"""
Extraction use-cases: one per clinical document type.

Each use-case builds its prompt, calls the completion provider, then runs

    sanitize -> coerce -> normalize dates

and hands typed records back to the caller. Nothing here writes to a
patient: saving reviewed records is a separate, explicit reconcile call.
Provider failures and malformed output both end as an empty Extraction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from wardround.models.extraction import ExtractionEnvelope, ExtractionKind
from wardround.models.patient import Patient
from wardround.services.completion_provider import (
    CompletionRequest,
    ImagePayload,
    completion_provider,
)
from wardround.services.date_normalizer import normalize
from wardround.services.reconciliation import grid_fill
from wardround.services.sanitizer import sanitize
from wardround.services.schema_coercer import CoercionError, coerce_object, coerce_records, parse_json

logger = logging.getLogger(__name__)

# Date fields normalized per kind; a (date, time) pair is read together
_DATE_FIELDS = {
    ExtractionKind.LAB: (("date_time", None),),
    ExtractionKind.MEDICATION: (("start_date", None), ("end_date", None)),
    ExtractionKind.CULTURE: (("collection_date", None),),
    ExtractionKind.APPOINTMENT: (("date", None),),
    ExtractionKind.EKG: (("date", "time"),),
    ExtractionKind.IMAGING: (("date", "time"),),
    ExtractionKind.ECHO: (("date", None),),
    ExtractionKind.PBS: (("date", None),),
    ExtractionKind.TASK: (("due_date", None),),
    ExtractionKind.CHRONIC_DISEASE: (("diagnosis_date", None),),
}


@dataclass
class Extraction:
    kind: ExtractionKind
    records: list = field(default_factory=list)
    record: Optional[BaseModel] = None
    envelope: Optional[ExtractionEnvelope] = None
    pbs_text: str = ""

    @property
    def empty(self) -> bool:
        return not self.records and self.record is None

    @property
    def validation_errors(self) -> List[str]:
        return list(self.envelope.validation_errors) if self.envelope else []


def _normalize_dates(kind: ExtractionKind, record: BaseModel, reference_year: Optional[int]) -> BaseModel:
    updates = {}
    for date_field, time_field in _DATE_FIELDS.get(kind, ()):
        raw = getattr(record, date_field, None)
        if not raw:
            continue
        if time_field and getattr(record, time_field, ""):
            raw = f"{raw} {getattr(record, time_field)}"
        normalized = normalize(raw, reference_year)
        if normalized is None:
            logger.warning(f"{kind.value}: unreadable {date_field} '{raw}'")
            # Leave it to the caller to stamp a fallback
            updates[date_field] = None if kind == ExtractionKind.LAB else raw
        else:
            updates[date_field] = normalized
    return record.model_copy(update=updates) if updates else record


class ExtractionService:

    def __init__(self, provider=None):
        self.provider = provider or completion_provider

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _call(
        self,
        kind: ExtractionKind,
        prompt: str,
        images: Sequence[str] = (),
        timeout: Optional[float] = None,
    ) -> Tuple[Any, ExtractionEnvelope]:
        """Provider call + sanitize + parse. Returns (parsed or None, envelope)."""
        envelope = ExtractionEnvelope(kind=kind)
        request = CompletionRequest(
            prompt=prompt,
            images=[ImagePayload.from_data_url(image) for image in images],
            structured_output=True,
        )
        response = await self.provider.complete(request, timeout=timeout)
        envelope.raw_response_text = response.text
        if not response.ok:
            envelope.provider_error = response.error
            logger.warning(f"{kind.value} extraction: provider error: {response.error}")
            return None, envelope

        envelope.sanitized_json = sanitize(response.text)
        try:
            return parse_json(envelope.sanitized_json), envelope
        except CoercionError as e:
            envelope.validation_errors.append(str(e))
            logger.warning(f"{kind.value} extraction: {e}")
            return None, envelope

    def _records(self, kind: ExtractionKind, parsed: Any, envelope: ExtractionEnvelope,
                 reference_year: Optional[int]) -> list:
        if parsed is None:
            return []
        try:
            records = coerce_records(kind, parsed, envelope.validation_errors)
        except CoercionError as e:
            envelope.validation_errors.append(str(e))
            logger.warning(f"{kind.value} extraction: {e}")
            return []
        return [_normalize_dates(kind, record, reference_year) for record in records]

    def _record(self, kind: ExtractionKind, parsed: Any, envelope: ExtractionEnvelope,
                reference_year: Optional[int]) -> Optional[BaseModel]:
        if parsed is None:
            return None
        try:
            record = coerce_object(kind, parsed, envelope.validation_errors)
        except CoercionError as e:
            envelope.validation_errors.append(str(e))
            logger.warning(f"{kind.value} extraction: {e}")
            return None
        return _normalize_dates(kind, record, reference_year)

    async def _extract_list(self, kind, prompt, images=(), reference_year=None, timeout=None) -> Extraction:
        parsed, envelope = await self._call(kind, prompt, images, timeout)
        records = self._records(kind, parsed, envelope, reference_year)
        logger.info(f"{kind.value} extraction: {len(records)} records, "
                    f"{len(envelope.validation_errors)} dropped/errors")
        return Extraction(kind=kind, records=records, envelope=envelope)

    async def _extract_one(self, kind, prompt, images=(), reference_year=None, timeout=None) -> Extraction:
        parsed, envelope = await self._call(kind, prompt, images, timeout)
        record = self._record(kind, parsed, envelope, reference_year)
        return Extraction(kind=kind, record=record, envelope=envelope)

    @staticmethod
    def _year(reference_year: Optional[int]) -> int:
        return reference_year or datetime.now().year

    # ------------------------------------------------------------------
    # Use-cases
    # ------------------------------------------------------------------

    async def scan_labs(
        self,
        images: Sequence[str],
        patient: Optional[Patient] = None,
        patient_name: str = "",
        reference_year: Optional[int] = None,
        fill_grid: bool = False,
        timeout: Optional[float] = None,
    ) -> Extraction:
        """
        Lab sheet (possibly columnar, several date headers) -> lab results.

        With ``fill_grid`` the batch is completed to a full test x date
        grid with value=None placeholders for a table view.
        """
        kind = ExtractionKind.LAB
        name = patient_name or (patient.name if patient else "")
        year = self._year(reference_year)
        prompt = f"""TASK: HIGH-PRECISION EXTRACTION OF THAI HOSPITAL LAB RESULTS.

1. Patient context: the results belong to "{name or 'unknown'}".
2. Dates: the current year is {year}. Buddhist Era years (e.g. {year + 543})
   must be converted by subtracting 543. Output every dateTime as
   "YYYY-MM-DD HH:mm"; use "00:00" when no time is printed.
3. Columnar sheets: each date column is a separate result. A single 'Hct'
   row under two date headers produces TWO entries.
4. Put any Peripheral Blood Smear (PBS) section verbatim in "pbsText".
5. Put flags such as H, L, *, ! in "flag".

Return ONLY valid JSON. No explanation. No markdown.
{{"results": [{{"testName": "string", "value": "string or number", "unit": "string",
  "flag": "H|L|null", "dateTime": "YYYY-MM-DD HH:mm", "category": "CBC|Chemistry|Urinalysis|Coagulation|Other"}}],
 "pbsText": "string"}}
"""
        parsed, envelope = await self._call(kind, prompt, images, timeout)
        pbs_text = ""
        if isinstance(parsed, dict) and isinstance(parsed.get("pbsText"), str):
            pbs_text = parsed["pbsText"].strip()

        records = self._records(kind, parsed, envelope, reference_year)
        if fill_grid:
            records = grid_fill(records)
        logger.info(f"Lab scan: {len(records)} results (grid_fill={fill_grid})")
        return Extraction(kind=kind, records=records, envelope=envelope, pbs_text=pbs_text)

    async def scan_admission_note(self, images: Sequence[str], reference_year: Optional[int] = None,
                                  timeout: Optional[float] = None) -> Extraction:
        year = self._year(reference_year)
        prompt = f"""Act as a medical scribe. Extract this admission note (Thai/English).
The current year is {year}; convert Buddhist Era years by subtracting 543.

Return ONLY valid JSON:
{{"noteType": "Admission Note",
 "patientDemographics": {{"name": "string", "hn": "string", "age": number, "gender": "M|F"}},
 "chiefComplaint": "string", "presentIllness": "string", "pastHistory": "string",
 "physicalExam": "string", "investigations": "string", "impression": "string",
 "managementPlan": "string",
 "problemList": [{{"problem": "string", "status": "Active|Stable|Resolved", "plan": "string"}}],
 "extractedLabs": [{{"testName": "string", "value": "string or number", "unit": "string", "dateTime": "YYYY-MM-DD HH:mm"}}],
 "chronicDiseases": [{{"type": "string", "diagnosisDate": "string", "complications": "string"}}]}}
Use "" for anything not written on the note.
"""
        extraction = await self._extract_one(ExtractionKind.ADMISSION_NOTE, prompt, images, reference_year, timeout)
        note = extraction.record
        if note is not None:
            labs = [_normalize_dates(ExtractionKind.LAB, lab, reference_year) for lab in note.extracted_labs]
            extraction.record = note.model_copy(update={
                "extracted_labs": labs,
                "scanned_at": note.scanned_at or datetime.utcnow().isoformat(),
            })
        return extraction

    async def scan_problem_list(self, images: Sequence[str], timeout: Optional[float] = None) -> Extraction:
        prompt = """Extract the problem list from this document.
Return ONLY a JSON array:
[{"problem": "string", "status": "Active|Stable|Worsening|Improved|Resolved", "plan": "string", "system": "string"}]
"""
        return await self._extract_list(ExtractionKind.PROBLEM, prompt, images, timeout=timeout)

    async def scan_medications(self, images: Sequence[str], reference_year: Optional[int] = None,
                               timeout: Optional[float] = None) -> Extraction:
        prompt = """Act as a clinical pharmacist. Extract every medication on this order sheet or label.
Return ONLY a JSON array:
[{"name": "string", "dose": "string", "frequency": "string", "route": "string (PO/IV/SC/etc)"}]
"""
        return await self._extract_list(ExtractionKind.MEDICATION, prompt, images, reference_year, timeout)

    async def scan_cultures(self, images: Sequence[str], reference_year: Optional[int] = None,
                            timeout: Optional[float] = None) -> Extraction:
        year = self._year(reference_year)
        prompt = f"""Analyze this microbiology report. The current year is {year};
convert Buddhist Era years by subtracting 543.
Return ONLY a JSON array:
[{{"specimen": "string", "collectionDate": "YYYY-MM-DD", "status": "Pending|Prelim|Final",
  "organism": "string", "gramStain": "string",
  "sensitivity": [{{"antibiotic": "string", "interpretation": "S|I|R", "mic": "string"}}]}}]
"""
        return await self._extract_list(ExtractionKind.CULTURE, prompt, images, reference_year, timeout)

    async def scan_ekg(self, images: Sequence[str], patient: Optional[Patient] = None,
                       previous_context: str = "", timeout: Optional[float] = None) -> Extraction:
        if not previous_context and patient is not None and patient.ekgs:
            last = patient.ekgs[-1]
            previous_context = f"{last.date}: {last.rhythm} {last.impression}".strip()
        comparison = f"\nPrevious EKG for comparison: {previous_context}" if previous_context else ""
        prompt = f"""Analyze this 12-lead EKG.{comparison}
Return ONLY valid JSON:
{{"hn": "string", "date": "string", "time": "HH:mm", "rate": "string", "rhythm": "string",
 "axis": "string", "intervals": {{"pr": "string", "qrs": "string", "qtc": "string"}},
 "findings": "string", "impression": "string", "comparison": "string"}}
"""
        return await self._extract_one(ExtractionKind.EKG, prompt, images, timeout=timeout)

    async def scan_echo(self, images: Sequence[str], timeout: Optional[float] = None) -> Extraction:
        prompt = """Extract this echocardiogram report.
Return ONLY valid JSON: {"date": "string", "lvef": "string", "valves": "string", "wallMotion": "string", "impression": "string"}
"""
        return await self._extract_one(ExtractionKind.ECHO, prompt, images, timeout=timeout)

    async def scan_imaging(self, images: Sequence[str], timeout: Optional[float] = None) -> Extraction:
        prompt = """Extract this radiology report.
Return ONLY valid JSON:
{"modality": "string", "bodyPart": "string", "date": "YYYY-MM-DD", "time": "HH:mm", "impression": "string", "findings": "string"}
"""
        return await self._extract_one(ExtractionKind.IMAGING, prompt, images, timeout=timeout)

    async def scan_pbs(self, images: Sequence[str], timeout: Optional[float] = None) -> Extraction:
        prompt = """Extract this peripheral blood smear (PBS) report.
Return ONLY valid JSON:
{"date": "string", "rbcMorphology": "string", "wbcMorphology": "string",
 "plateletMorphology": "string", "parasites": "string", "others": "string"}
"""
        return await self._extract_one(ExtractionKind.PBS, prompt, images, timeout=timeout)

    async def scan_appointments(self, images: Sequence[str], reference_year: Optional[int] = None,
                                timeout: Optional[float] = None) -> Extraction:
        year = self._year(reference_year)
        prompt = f"""Analyze this hospital appointment screen (Thai EMR).
The current year is {year}; convert Buddhist Era years (e.g. {year + 543}) by subtracting 543.
Skip rows marked as old and dates in the past.
Return ONLY valid JSON:
{{"appointments": [{{"title": "string (clinic + doctor, or Follow-up)", "date": "YYYY-MM-DD",
  "time": "HH:mm", "location": "string", "type": "Meeting|Lab|Imaging|Procedure|Other", "notes": "string"}}]}}
"""
        return await self._extract_list(ExtractionKind.APPOINTMENT, prompt, images, reference_year, timeout)

    async def scan_patient_demographics(self, images: Sequence[str], timeout: Optional[float] = None) -> Extraction:
        """ID sticker or admission card -> demographics for a new or sparse patient."""
        prompt = """Extract patient demographics exactly as they appear on the sticker/card.
VERBATIM ONLY. No translation.
- Name: include titles (นาย, นาง, นางสาว, etc.) if present.
- Diagnosis: copy exactly.

Return ONLY valid JSON:
{"name": "string", "hn": "string", "age": number, "gender": "M|F", "diagnosis": "string",
 "underlyingConditions": "string", "oneLiner": "string"}
Use "" for anything not printed.
"""
        return await self._extract_one(ExtractionKind.PATIENT_DEMOGRAPHICS, prompt, images, timeout=timeout)

    async def scan_vitals(self, images: Sequence[str], timeout: Optional[float] = None) -> Extraction:
        """
        Vitals flowsheet -> ranges for Tmax, BP, HR, RR and O2.

        A sheet the model marks unreadable yields no record and a
        validation error, so the caller can ask for a better photo.
        """
        prompt = """Analyze this vitals flowsheet. Extract the range over the sheet for:
Tmax, BP, HR, RR, O2 (SpO2 and oxygen support).
If the image is too blurry to read, set "readable" to false and leave the rest empty.

Return ONLY valid JSON:
{"readable": true, "tmax": "string", "bp": "string (e.g. 100-130/60-80)", "hr": "string",
 "rr": "string", "o2": "string", "summary": "string (one concise line)"}
"""
        kind = ExtractionKind.VITALS
        extraction = await self._extract_one(kind, prompt, images, timeout=timeout)
        vitals = extraction.record
        if vitals is not None and not (vitals.readable and vitals.as_text()):
            extraction.envelope.validation_errors.append("Vitals flowsheet unreadable")
            logger.info("Vitals scan: flowsheet unreadable")
            extraction.record = None
        elif vitals is not None:
            extraction.record = vitals.model_copy(update={"summary": vitals.as_text()})
        return extraction

    async def extract_chronic_diseases(self, history_text: str, reference_year: Optional[int] = None,
                                       timeout: Optional[float] = None) -> Extraction:
        prompt = f"""Extract the chronic diseases from this past history. Support Thai.
Keep the latest control values (e.g. HbA1c, LDL, eGFR, BP) in "lastValues".

History:
\"\"\"
{history_text}
\"\"\"

Return ONLY a JSON array:
[{{"type": "string (e.g. DM type 2, HT, CKD stage 3)", "diagnosisDate": "string",
  "lastValues": {{"name": "value"}}, "complications": "string"}}]
"""
        return await self._extract_list(ExtractionKind.CHRONIC_DISEASE, prompt, (), reference_year, timeout)

    async def parse_bulk_handoff(self, text: str, timeout: Optional[float] = None) -> Extraction:
        prompt = f"""Act as a chief resident. Parse this handover text (mixed Thai/English) into
structured I-PASS updates, one per patient. A patient block usually starts with a room number or a name.
"ไม่ฝาก" means nothing to hand over (Stable).

Input text:
\"\"\"
{text}
\"\"\"

Return ONLY a JSON array:
[{{"roomNumber": "string (digits only)", "name": "string",
  "update": {{"illnessSeverity": "Stable|Watch|Unstable", "patientSummary": "string",
             "actionList": "string", "situationAwareness": "string", "contingencies": "string"}},
  "acuity": "Stable|Watch|Unstable"}}]
"""
        return await self._extract_list(ExtractionKind.HANDOFF, prompt, timeout=timeout)

    async def extract_tasks(self, plan_text: str, timeout: Optional[float] = None) -> Extraction:
        prompt = f"""Turn this plan into discrete ward tasks.

Plan:
\"\"\"
{plan_text}
\"\"\"

Return ONLY a JSON array:
[{{"description": "string", "priority": "Normal|Urgent|Before Noon|Before Discharge"}}]
"""
        return await self._extract_list(ExtractionKind.TASK, prompt, timeout=timeout)


# Global singleton
extraction_service = ExtractionService()

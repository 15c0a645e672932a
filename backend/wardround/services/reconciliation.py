# /backend/wardround/services/reconciliation.py

"""
Reconciliation engine: merge reviewed extraction records into one patient
aggregate.

reconcile() works on a deep copy and returns it; the caller's aggregate is
never touched. Rules per kind:

  lab          append one point per (testName, date) to the series chosen by
               SERIES_KEYWORDS, "other" series keyed by literal name.
               Exact (series, date, value) duplicates are skipped when
               dedupe is on. Null-valued grid cells are stored only when
               fill_grid is set, and skipped otherwise.
  identified   records without an id are new and get a content-derived id,
               so the same batch reconciled twice adds nothing; records with
               an id replace the item with that id; unknown ids are reported
               back and never inserted; archived items are locked.
  problem      as identified, then pushed as a new problem-list snapshot.
  handoff      non-empty fields overwrite the handoff block; acuity follows.
  note kinds   admission note and discharge summary replace the stored one.
  demographics  fill only the patient fields that are still blank.
  chronic      merged into the admission note by disease type, case-insensitive.
"""

import json
import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from wardround.models.extraction import (
    Appointment,
    EchoReport,
    ExtractionKind,
    HandoffUpdate,
    RECORD_MODELS,
)
from wardround.models.patient import Patient
from wardround.models.records import (
    AdmissionNote,
    AllergyConflict,
    CustomLab,
    ImagingStudy,
    LabResultRecord,
    LabValue,
    Medication,
    TimelineEvent,
)
from wardround.services.date_normalizer import normalize, normalize_lab_value, now_stamp
from wardround.services.problem_history import ProblemListHistory

logger = logging.getLogger(__name__)

# Namespace for content-derived record ids
RECORD_ID_NAMESPACE = uuid.UUID("5b0f3a52-8c1e-4d8e-9a57-2f4c1b6e7d90")

# Ordered: first match wins. (canonical key, whole-name tokens, substrings)
SERIES_KEYWORDS: Tuple[Tuple[str, frozenset, Tuple[str, ...]], ...] = (
    ("creatinine", frozenset({"cr", "scr", "creat"}), ("creatinine",)),
    ("wbc", frozenset({"wbc", "wbc count"}), ("wbc", "white blood cell", "leukocyte count")),
    ("hgb", frozenset({"hb", "hgb"}), ("hemoglobin", "haemoglobin", "hgb")),
    ("k", frozenset({"k", "k+"}), ("potassium",)),
    ("inr", frozenset({"inr", "pt-inr", "pt inr"}), ("inr",)),
    ("sodium", frozenset({"na", "na+"}), ("sodium",)),
)

TIMELINE_TYPES = ("Meeting", "Lab", "Imaging", "Procedure", "Other")

# Drug classes for the allergy cross-check. Matching is by substring of the
# lowercased medication or allergy text.
DRUG_CLASSES: Dict[str, Tuple[str, ...]] = {
    "penicillin": ("penicillin", "amoxicillin", "ampicillin", "piperacillin", "cloxacillin",
                   "dicloxacillin", "nafcillin", "oxacillin", "augmentin", "tazocin"),
    "cephalosporin": ("cephalosporin", "cefazolin", "ceftriaxone", "cefotaxime", "ceftazidime",
                      "cefepime", "cephalexin", "cefuroxime", "cefixime", "cefoperazone"),
    "carbapenem": ("carbapenem", "meropenem", "imipenem", "ertapenem"),
    "sulfonamide": ("sulfa", "sulfamethoxazole", "bactrim", "co-trimoxazole", "sulfasalazine"),
    "fluoroquinolone": ("quinolone", "ciprofloxacin", "levofloxacin", "moxifloxacin", "norfloxacin"),
    "macrolide": ("macrolide", "azithromycin", "clarithromycin", "erythromycin"),
    "nsaid": ("nsaid", "ibuprofen", "naproxen", "diclofenac", "aspirin", "celecoxib",
              "etoricoxib", "indomethacin", "ketorolac"),
    "opioid": ("opioid", "morphine", "codeine", "tramadol", "fentanyl", "pethidine", "oxycodone"),
}

CROSS_REACTIVE = frozenset({
    frozenset({"penicillin", "cephalosporin"}),
    frozenset({"penicillin", "carbapenem"}),
})


class ReconciliationError(ValueError):
    """The batch cannot be reconciled (wrong kind or untyped records)."""


class RecordNotFound(LookupError):
    pass


@dataclass
class ReconciliationResult:
    patient: Patient
    added: int = 0
    updated: int = 0
    skipped: int = 0
    unmatched_ids: List[str] = field(default_factory=list)
    locked_ids: List[str] = field(default_factory=list)


# ── Lab routing ──────────────────────────────────────────────────────────────

def series_key(test_name: str) -> Optional[str]:
    """Canonical series for a test name, or None for an "other" series."""
    name = (test_name or "").strip().lower()
    if not name:
        return None
    for key, tokens, substrings in SERIES_KEYWORDS:
        if name in tokens:
            return key
    for key, tokens, substrings in SERIES_KEYWORDS:
        if any(part in name for part in substrings):
            return key
    return None


def grid_fill(results: Sequence[LabResultRecord]) -> List[LabResultRecord]:
    """
    Complete the testName x dateTime grid of one batch.

    Output is in grid order (test names and dates in order of first
    appearance); every missing cell becomes a value=None placeholder that
    carries the test's unit and category. Undated records follow unchanged.
    """
    names: List[str] = []
    dates: List[str] = []
    cells: Dict[Tuple[str, str], List[LabResultRecord]] = {}
    first_of: Dict[str, LabResultRecord] = {}
    undated: List[LabResultRecord] = []

    for record in results:
        if not record.date_time:
            undated.append(record)
            continue
        if record.test_name not in first_of:
            first_of[record.test_name] = record
            names.append(record.test_name)
        if record.date_time not in dates:
            dates.append(record.date_time)
        cells.setdefault((record.test_name, record.date_time), []).append(record)

    filled: List[LabResultRecord] = []
    for name in names:
        template = first_of[name]
        for date in dates:
            found = cells.get((name, date))
            if found:
                filled.extend(found)
            else:
                filled.append(LabResultRecord(
                    test_name=name,
                    value=None,
                    unit=template.unit,
                    flag=None,
                    date_time=date,
                    category=template.category,
                ))
    return filled + undated


def _reconcile_labs(
    result: ReconciliationResult,
    records: Sequence[LabResultRecord],
    *,
    dedupe: bool,
    fallback_date: str,
    keep_placeholders: bool,
) -> None:
    labs = result.patient.labs
    for record in records:
        if record.value is None and not keep_placeholders:
            result.skipped += 1
            continue
        date = normalize(record.date_time) or fallback_date
        point = LabValue(
            date=date,
            value=normalize_lab_value(record.value),
            sub_results=record.sub_results,
        )

        key = series_key(record.test_name)
        if key:
            series = getattr(labs, key)
        else:
            other = labs.find_other(record.test_name)
            if other is None:
                other = CustomLab(name=record.test_name, unit=record.unit)
                labs.others.append(other)
            series = other.values

        if dedupe and any(p.date == point.date and p.value == point.value for p in series):
            result.skipped += 1
            continue

        series.append(point)
        result.added += 1


# ── Identified collections ───────────────────────────────────────────────────

def content_id(kind: ExtractionKind, record) -> str:
    """Stable id derived from a record's content (its id excluded)."""
    payload = json.dumps(
        record.model_dump(by_alias=True, exclude={"id"}, mode="json"),
        sort_keys=True,
    )
    return str(uuid.uuid5(RECORD_ID_NAMESPACE, f"{kind.value}:{payload}"))


def _merge_identified(result: ReconciliationResult, kind: ExtractionKind, items: list, records) -> list:
    merged = list(items)
    index_of = {item.id: position for position, item in enumerate(merged) if item.id}

    for record in records:
        if record.id:
            position = index_of.get(record.id)
            if position is None:
                logger.warning(f"{kind.value}: no item with id {record.id}, update ignored")
                result.unmatched_ids.append(record.id)
                continue
            if getattr(merged[position], "archived", False):
                logger.warning(f"{kind.value}: item {record.id} is archived, update ignored")
                result.locked_ids.append(record.id)
                continue
            merged[position] = record.model_copy(deep=True)
            result.updated += 1
            continue

        new_id = content_id(kind, record)
        if new_id in index_of:
            result.skipped += 1
            continue
        merged.append(record.model_copy(update={"id": new_id}, deep=True))
        index_of[new_id] = len(merged) - 1
        result.added += 1

    return merged


def _echo_to_imaging(echo: EchoReport) -> ImagingStudy:
    findings = "; ".join(
        f"{label}: {value}" for label, value in (
            ("LVEF", echo.lvef),
            ("Valves", echo.valves),
            ("Wall motion", echo.wall_motion),
        ) if value
    )
    return ImagingStudy(
        modality="Echo",
        body_part="Heart",
        date=echo.date,
        impression=echo.impression,
        findings=findings,
    )


def _appointment_to_event(appointment: Appointment) -> TimelineEvent:
    day = normalize(appointment.date)
    clock = normalize(f"2000-01-01 {appointment.time}") if appointment.time else None
    if day is None:
        when = appointment.date
    elif clock:
        when = f"{day[:10]} {clock[11:]}"
    else:
        when = day
    event_type = appointment.type if appointment.type in TIMELINE_TYPES else "Other"
    return TimelineEvent(
        title=appointment.title,
        date=when,
        type=event_type,
        status="Scheduled",
        location=appointment.location,
        notes=appointment.notes,
    )


# ── Single-object kinds ──────────────────────────────────────────────────────

def _apply_handoff(result: ReconciliationResult, update: HandoffUpdate) -> None:
    patient = result.patient
    changes = {
        name: value
        for name, value in update.update.model_dump(exclude={"illness_severity"}).items()
        if isinstance(value, str) and value.strip()
    }
    acuity = update.acuity or (
        update.update.illness_severity if "illness_severity" in update.update.model_fields_set else None
    )
    if acuity is not None:
        changes["illness_severity"] = acuity
        patient.acuity = acuity
    if not changes:
        result.skipped += 1
        return
    patient.handoff = patient.handoff.model_copy(update=changes)
    result.updated += 1


def _apply_admission_note(result: ReconciliationResult, note) -> None:
    patient = result.patient
    patient.admission_note = note.model_copy(deep=True)

    demographics = note.patient_demographics
    if demographics is not None:
        if not patient.hn and demographics.hn:
            patient.hn = demographics.hn
        if patient.age is None and demographics.age is not None:
            patient.age = demographics.age
        if not patient.gender and demographics.gender:
            patient.gender = demographics.gender

    if note.problem_list:
        problems = _merge_identified(
            ReconciliationResult(patient=patient), ExtractionKind.PROBLEM, [], note.problem_list
        )
        ProblemListHistory.from_patient(patient).push(problems).apply_to(patient)
    result.updated += 1


def _apply_patient_scan(result: ReconciliationResult, scan) -> None:
    """Fill blank demographics; anything already on the patient wins."""
    patient = result.patient
    filled = [
        name for name in ("hn", "gender", "diagnosis", "underlying_conditions", "one_liner")
        if not getattr(patient, name).strip() and getattr(scan, name).strip()
    ]
    for name in filled:
        setattr(patient, name, getattr(scan, name).strip())
    if patient.age is None and scan.age is not None and 0 <= scan.age <= 150:
        patient.age = scan.age
        filled.append("age")

    if filled:
        result.updated += 1
    else:
        result.skipped += 1


def _merge_chronic_diseases(result: ReconciliationResult, diseases) -> None:
    """One entry per disease type (case-insensitive); a re-read type replaces the old entry."""
    patient = result.patient
    if patient.admission_note is None:
        patient.admission_note = AdmissionNote(scanned_at=now_stamp())
    merged = list(patient.admission_note.chronic_diseases)
    for disease in diseases:
        wanted = disease.type.lower()
        position = next((i for i, known in enumerate(merged) if known.type.lower() == wanted), None)
        if position is None:
            merged.append(disease.model_copy(deep=True))
            result.added += 1
        elif merged[position].model_dump() == disease.model_dump():
            result.skipped += 1
        else:
            merged[position] = disease.model_copy(deep=True)
            result.updated += 1
    patient.admission_note.chronic_diseases = merged


# ── Entry points ─────────────────────────────────────────────────────────────

def reconcile(
    patient: Patient,
    kind,
    records,
    *,
    fill_grid: bool = False,
    dedupe: bool = True,
    fallback_date: Optional[str] = None,
) -> ReconciliationResult:
    """
    Merge ``records`` of ``kind`` into a copy of ``patient``.

    ``records`` is a list of the kind's record model, or a single record for
    object kinds. ``fallback_date`` stamps lab points whose date cannot be
    read (default: now).
    """
    kind = ExtractionKind(kind)
    model = RECORD_MODELS[kind]
    batch = list(records) if isinstance(records, (list, tuple)) else [records]
    for record in batch:
        if not isinstance(record, model):
            raise ReconciliationError(
                f"{kind.value} expects {model.__name__} records, got {type(record).__name__}"
            )

    result = ReconciliationResult(patient=patient.model_copy(deep=True))
    target = result.patient

    if kind == ExtractionKind.LAB:
        if fill_grid:
            batch = grid_fill(batch)
        _reconcile_labs(
            result, batch,
            dedupe=dedupe,
            fallback_date=fallback_date or now_stamp(),
            keep_placeholders=fill_grid,
        )
    elif kind == ExtractionKind.MEDICATION:
        target.medications = _merge_identified(result, kind, target.medications, batch)
    elif kind == ExtractionKind.CULTURE:
        target.cultures = _merge_identified(result, kind, target.cultures, batch)
    elif kind == ExtractionKind.IMAGING:
        target.imaging = _merge_identified(result, kind, target.imaging, batch)
    elif kind == ExtractionKind.ECHO:
        studies = [_echo_to_imaging(echo) for echo in batch]
        target.imaging = _merge_identified(result, ExtractionKind.IMAGING, target.imaging, studies)
    elif kind == ExtractionKind.EKG:
        target.ekgs = _merge_identified(result, kind, target.ekgs, batch)
    elif kind == ExtractionKind.PBS:
        target.labs.pbs = _merge_identified(result, kind, target.labs.pbs, batch)
    elif kind == ExtractionKind.TASK:
        target.tasks = _merge_identified(result, kind, target.tasks, batch)
    elif kind == ExtractionKind.APPOINTMENT:
        events = [_appointment_to_event(appointment) for appointment in batch]
        target.timeline = _merge_identified(result, kind, target.timeline, events)
    elif kind == ExtractionKind.PROBLEM:
        history = ProblemListHistory.from_patient(target)
        problems = _merge_identified(result, kind, history.current(), batch)
        if result.added or result.updated:
            history.push(problems).apply_to(target)
    elif kind == ExtractionKind.HANDOFF:
        for update in batch:
            _apply_handoff(result, update)
    elif kind == ExtractionKind.ADMISSION_NOTE:
        for note in batch:
            _apply_admission_note(result, note)
    elif kind == ExtractionKind.PATIENT_DEMOGRAPHICS:
        for scan in batch:
            _apply_patient_scan(result, scan)
    elif kind == ExtractionKind.CHRONIC_DISEASE:
        _merge_chronic_diseases(result, batch)
    elif kind == ExtractionKind.DISCHARGE_SUMMARY:
        for summary in batch:
            target.discharge_summary = summary.model_copy(deep=True)
            result.updated += 1
    else:
        raise ReconciliationError(f"{kind.value} records are not stored on a patient")

    if result.added or result.updated:
        target.updated_at = datetime.utcnow()

    logger.info(
        f"Reconciled {kind.value}: added={result.added} updated={result.updated} "
        f"skipped={result.skipped} unmatched={len(result.unmatched_ids)}"
    )
    return result


def set_medication_active(patient: Patient, medication_id: str, active: bool) -> Patient:
    """Copy of ``patient`` with one medication started or stopped. Nothing is deleted."""
    updated = patient.model_copy(deep=True)
    for medication in updated.medications:
        if medication.id == medication_id:
            medication.is_active = active
            if active:
                medication.end_date = None
            elif not medication.end_date:
                medication.end_date = datetime.now().strftime("%Y-%m-%d")
            updated.updated_at = datetime.utcnow()
            return updated
    raise RecordNotFound(f"Medication {medication_id} not found")


def _classes_of(text: str) -> set:
    lowered = text.lower()
    return {name for name, members in DRUG_CLASSES.items() if any(m in lowered for m in members)}


def find_allergy_conflicts(medications: Sequence[Medication], allergies: Sequence[str]) -> List[AllergyConflict]:
    """
    Conflicts between active medications and known allergies.

    Read-only: direct name matches, same-class matches and the known
    cross-reactive class pairs.
    """
    conflicts: List[AllergyConflict] = []
    for medication in medications:
        if not medication.is_active:
            continue
        med_name = medication.name.lower()
        med_classes = _classes_of(med_name)

        for allergy in allergies:
            allergen = allergy.strip().lower()
            if not allergen:
                continue

            reason = None
            if allergen in med_name or med_name in allergen:
                reason = "Direct match with documented allergy"
            else:
                allergy_classes = _classes_of(allergen)
                shared = med_classes & allergy_classes
                if shared:
                    reason = f"Same drug class ({sorted(shared)[0]})"
                else:
                    for med_class in sorted(med_classes):
                        for allergy_class in sorted(allergy_classes):
                            if frozenset({med_class, allergy_class}) in CROSS_REACTIVE:
                                reason = f"Cross-reactivity between {allergy_class} and {med_class}"
                                break
                        if reason:
                            break

            if reason:
                conflicts.append(AllergyConflict(
                    medication_id=medication.id,
                    medication_name=medication.name,
                    allergy=allergy.strip(),
                    reason=reason,
                ))
    return conflicts

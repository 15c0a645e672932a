# /backend/wardround/services/patient_service.py

import re
import uuid
import logging
from datetime import datetime
from typing import Dict, List, Optional
from fastapi import HTTPException, status

from wardround.config import settings
from wardround.database import get_database
from wardround.models.extraction import (
    ARRAY_KINDS,
    BulkHandoffApplyResponse,
    ExtractionKind,
    HandoffUpdate,
    ReconcileRequest,
    ReconcileResponse,
)
from wardround.models.patient import (
    ManualLabEntry,
    MedicationUpdate,
    Patient,
    PatientCreate,
    PatientStatistics,
    PatientUpdate,
    ProblemListState,
    TaskUpdate,
)
from wardround.models.records import (
    Acuity,
    AllergyConflict,
    LabResultRecord,
    Medication,
    ProblemEntry,
    Task,
)
from wardround.services.date_normalizer import normalize, now_stamp
from wardround.services.problem_history import ProblemListHistory
from wardround.services.reconciliation import (
    RecordNotFound,
    find_allergy_conflicts,
    reconcile,
    set_medication_active,
)
from wardround.services.schema_coercer import coerce_object, coerce_records

logger = logging.getLogger(__name__)


def _not_found(what: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{what} not found"
    )


def _room_digits(room: str) -> str:
    return re.sub(r"\D", "", room or "")


class PatientService:
    """Patient aggregate persistence. Every write replaces the whole document."""

    @staticmethod
    def _to_patient(document: dict) -> Patient:
        data = dict(document)
        data["id"] = data.pop("_id", None)
        return Patient.model_validate(data)

    @staticmethod
    def _to_document(patient: Patient) -> dict:
        document = patient.model_dump(by_alias=True, mode="json", exclude={"id"})
        # Timestamps stay BSON dates
        document["createdAt"] = patient.created_at
        document["updatedAt"] = patient.updated_at
        document["_id"] = patient.id
        return document

    @staticmethod
    async def list_patients(
        acuity: Optional[Acuity] = None,
        isolation: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Patient]:
        db = get_database()

        query = {}
        if acuity:
            query["acuity"] = acuity.value
        if isolation:
            query["isolation"] = isolation
        if search:
            pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
            query["$or"] = [
                {"name": pattern},
                {"hn": pattern},
                {"diagnosis": pattern},
                {"room": pattern},
            ]

        cursor = db.patients.find(query).sort("room", 1).skip(skip).limit(limit)
        documents = await cursor.to_list(length=limit)
        return [PatientService._to_patient(document) for document in documents]

    @staticmethod
    async def statistics() -> PatientStatistics:
        db = get_database()

        stats = PatientStatistics(total_patients=await db.patients.count_documents({}))
        stats.stable = await db.patients.count_documents({"acuity": Acuity.STABLE.value})
        stats.watch = await db.patients.count_documents({"acuity": Acuity.WATCH.value})
        stats.unstable = await db.patients.count_documents({"acuity": Acuity.UNSTABLE.value})

        documents = await db.patients.find({}, {"tasks": 1}).to_list(length=None)
        stats.pending_tasks = sum(
            1
            for document in documents
            for task in document.get("tasks", [])
            if not task.get("isCompleted")
        )
        return stats

    @staticmethod
    async def get_patient(patient_id: str) -> Patient:
        db = get_database()
        document = await db.patients.find_one({"_id": patient_id})
        if not document:
            raise _not_found("Patient")
        return PatientService._to_patient(document)

    @staticmethod
    async def save(patient: Patient, user_id: Optional[str] = None) -> Patient:
        """Whole-document replace; the last write wins."""
        db = get_database()
        patient.last_modified_by = user_id or patient.last_modified_by
        patient.updated_at = datetime.utcnow()

        result = await db.patients.replace_one(
            {"_id": patient.id},
            PatientService._to_document(patient)
        )
        if result.matched_count == 0:
            raise _not_found("Patient")
        return patient

    @staticmethod
    async def create_patient(patient_data: PatientCreate, user_id: str) -> Patient:
        db = get_database()
        now = datetime.utcnow()

        patient = Patient(
            **patient_data.model_dump(),
            id=str(uuid.uuid4()),
            created_by=user_id,
            last_modified_by=user_id,
            created_at=now,
            updated_at=now,
        )
        if patient.admission_date:
            patient.admission_date = normalize(patient.admission_date) or patient.admission_date

        await db.patients.insert_one(PatientService._to_document(patient))
        logger.info(f"Created patient {patient.id} in room {patient.room or '-'}")
        return patient

    @staticmethod
    async def update_patient(patient_id: str, changes: PatientUpdate, user_id: str) -> Patient:
        patient = await PatientService.get_patient(patient_id)
        for key in changes.model_dump(exclude_unset=True):
            setattr(patient, key, getattr(changes, key))
        return await PatientService.save(patient, user_id)

    @staticmethod
    async def delete_patient(patient_id: str) -> dict:
        db = get_database()
        result = await db.patients.delete_one({"_id": patient_id})
        if result.deleted_count == 0:
            raise _not_found("Patient")
        logger.info(f"Deleted patient {patient_id}")
        return {"message": "Patient deleted successfully"}

    # ── Tasks ────────────────────────────────────────────────────────────

    @staticmethod
    async def add_task(patient_id: str, task: Task, user_id: str) -> Task:
        patient = await PatientService.get_patient(patient_id)
        task = task.model_copy(update={"id": task.id or str(uuid.uuid4())})
        patient.tasks.append(task)
        await PatientService.save(patient, user_id)
        return task

    @staticmethod
    async def update_task(patient_id: str, task_id: str, changes: TaskUpdate, user_id: str) -> Task:
        patient = await PatientService.get_patient(patient_id)
        for index, task in enumerate(patient.tasks):
            if task.id == task_id:
                updates = {key: getattr(changes, key) for key in changes.model_dump(exclude_unset=True)}
                patient.tasks[index] = task.model_copy(update=updates)
                await PatientService.save(patient, user_id)
                return patient.tasks[index]
        raise _not_found("Task")

    @staticmethod
    async def delete_task(patient_id: str, task_id: str, user_id: str) -> dict:
        patient = await PatientService.get_patient(patient_id)
        remaining = [task for task in patient.tasks if task.id != task_id]
        if len(remaining) == len(patient.tasks):
            raise _not_found("Task")
        patient.tasks = remaining
        await PatientService.save(patient, user_id)
        return {"message": "Task deleted successfully"}

    # ── Medications ──────────────────────────────────────────────────────

    @staticmethod
    async def add_medication(patient_id: str, medication: Medication, user_id: str) -> Medication:
        patient = await PatientService.get_patient(patient_id)
        medication = medication.model_copy(update={
            "id": medication.id or str(uuid.uuid4()),
            "start_date": medication.start_date or datetime.now().strftime("%Y-%m-%d"),
        })
        patient.medications.append(medication)
        await PatientService.save(patient, user_id)
        return medication

    @staticmethod
    async def update_medication(
        patient_id: str, medication_id: str, changes: MedicationUpdate, user_id: str
    ) -> Medication:
        patient = await PatientService.get_patient(patient_id)
        for index, medication in enumerate(patient.medications):
            if medication.id == medication_id:
                updates = {key: getattr(changes, key) for key in changes.model_dump(exclude_unset=True)}
                patient.medications[index] = medication.model_copy(update=updates)
                await PatientService.save(patient, user_id)
                return patient.medications[index]
        raise _not_found("Medication")

    @staticmethod
    async def toggle_medication(patient_id: str, medication_id: str, active: bool, user_id: str) -> Medication:
        patient = await PatientService.get_patient(patient_id)
        try:
            patient = set_medication_active(patient, medication_id, active)
        except RecordNotFound:
            raise _not_found("Medication")
        await PatientService.save(patient, user_id)
        return next(m for m in patient.medications if m.id == medication_id)

    @staticmethod
    async def allergy_conflicts(patient_id: str) -> List[AllergyConflict]:
        patient = await PatientService.get_patient(patient_id)
        return find_allergy_conflicts(patient.active_medications(), patient.allergy_list())

    # ── Labs ─────────────────────────────────────────────────────────────

    @staticmethod
    async def add_lab(patient_id: str, entry: ManualLabEntry, user_id: str) -> ReconcileResponse:
        """One manually typed result, routed like an extracted one."""
        patient = await PatientService.get_patient(patient_id)
        record = LabResultRecord(
            test_name=entry.test_name,
            value=entry.value,
            unit=entry.unit,
            date_time=normalize(entry.date_time) if entry.date_time else now_stamp(),
        )
        result = reconcile(patient, ExtractionKind.LAB, [record], dedupe=settings.LAB_DEDUPE)
        await PatientService.save(result.patient, user_id)
        return ReconcileResponse(
            patient=result.patient.model_dump(by_alias=True, mode="json"),
            added=result.added,
            skipped=result.skipped,
        )

    # ── Problem list ─────────────────────────────────────────────────────

    @staticmethod
    def _problem_state(patient: Patient) -> ProblemListState:
        history = ProblemListHistory.from_patient(patient)
        return ProblemListState(
            problems=history.current(),
            history_index=history.index,
            history_length=len(history),
            can_undo=history.can_undo(),
            can_redo=history.can_redo(),
        )

    @staticmethod
    async def get_problems(patient_id: str) -> ProblemListState:
        return PatientService._problem_state(await PatientService.get_patient(patient_id))

    @staticmethod
    async def replace_problems(patient_id: str, problems: List[ProblemEntry], user_id: str) -> ProblemListState:
        patient = await PatientService.get_patient(patient_id)
        problems = [
            problem if problem.id else problem.model_copy(update={"id": str(uuid.uuid4())})
            for problem in problems
        ]
        ProblemListHistory.from_patient(patient).push(problems).apply_to(patient)
        await PatientService.save(patient, user_id)
        return PatientService._problem_state(patient)

    @staticmethod
    async def _step_problems(patient_id: str, user_id: str, forward: bool) -> ProblemListState:
        patient = await PatientService.get_patient(patient_id)
        history = ProblemListHistory.from_patient(patient)
        if not (history.can_redo() if forward else history.can_undo()):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Nothing to {'redo' if forward else 'undo'}"
            )
        (history.redo() if forward else history.undo()).apply_to(patient)
        await PatientService.save(patient, user_id)
        return PatientService._problem_state(patient)

    @staticmethod
    async def undo_problems(patient_id: str, user_id: str) -> ProblemListState:
        return await PatientService._step_problems(patient_id, user_id, forward=False)

    @staticmethod
    async def redo_problems(patient_id: str, user_id: str) -> ProblemListState:
        return await PatientService._step_problems(patient_id, user_id, forward=True)

    # ── Reconcile ────────────────────────────────────────────────────────

    @staticmethod
    async def reconcile_records(patient_id: str, request: ReconcileRequest, user_id: str) -> ReconcileResponse:
        """
        Save reviewed extraction records into a patient.

        The records are re-validated here: what the client sends back after
        review is as untrusted as what the model returned.
        """
        patient = await PatientService.get_patient(patient_id)
        errors: List[str] = []

        if request.kind in ARRAY_KINDS:
            payload = request.records if request.records else [request.record]
            records = coerce_records(
                request.kind, payload, errors,
                keep_placeholders=request.kind == ExtractionKind.LAB,
            )
        else:
            records = coerce_object(request.kind, request.record or request.records[0], errors)

        fallback_date = normalize(request.fallback_date) if request.fallback_date else None
        result = reconcile(
            patient,
            request.kind,
            records,
            fill_grid=request.fill_grid,
            dedupe=settings.LAB_DEDUPE,
            fallback_date=fallback_date,
        )

        if result.added or result.updated:
            await PatientService.save(result.patient, user_id)

        return ReconcileResponse(
            patient=result.patient.model_dump(by_alias=True, mode="json"),
            added=result.added,
            updated=result.updated,
            skipped=result.skipped,
            unmatched_ids=result.unmatched_ids + result.locked_ids,
            validation_errors=errors,
        )

    # ── Bulk handoff ─────────────────────────────────────────────────────

    @staticmethod
    def _match(patients: List[Patient], update: HandoffUpdate) -> Optional[Patient]:
        room = _room_digits(update.room_number)
        if room:
            for patient in patients:
                if _room_digits(patient.room) == room:
                    return patient
        name = update.name.strip().lower()
        if name:
            for patient in patients:
                if patient.name.strip().lower() == name:
                    return patient
        return None

    @staticmethod
    async def apply_bulk_handoff(updates: List[HandoffUpdate], user_id: str) -> BulkHandoffApplyResponse:
        patients = await PatientService.list_patients(limit=1000)
        response = BulkHandoffApplyResponse()
        changed: Dict[str, Patient] = {}

        for update in updates:
            patient = PatientService._match(patients, update)
            if patient is None:
                response.unmatched.append(update.room_number or update.name)
                continue
            updated = reconcile(patient, ExtractionKind.HANDOFF, [update]).patient
            patients = [updated if p.id == updated.id else p for p in patients]
            changed[updated.id] = updated
            if updated.id not in response.applied:
                response.applied.append(updated.id)

        for patient in changed.values():
            await PatientService.save(patient, user_id)

        logger.info(f"Bulk handoff: {len(response.applied)} applied, {len(response.unmatched)} unmatched")
        return response


patient_service = PatientService()

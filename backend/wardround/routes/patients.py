# /backend/wardround/routes/patients.py

from fastapi import APIRouter, Depends, Query, Request
from typing import List, Optional
from wardround.models.audit import AuditAction, AuditResource
from wardround.models.extraction import (
    BulkHandoffApplyRequest,
    BulkHandoffApplyResponse,
    ReconcileRequest,
    ReconcileResponse,
)
from wardround.models.patient import (
    ManualLabEntry,
    MedicationToggle,
    MedicationUpdate,
    Patient,
    PatientCreate,
    PatientStatistics,
    PatientUpdate,
    ProblemListReplace,
    ProblemListState,
    TaskUpdate,
)
from wardround.models.records import Acuity, AllergyConflict, Medication, Task
from wardround.services.patient_service import patient_service
from wardround.utils.audit import audited
from wardround.utils.security import get_current_user, require_roles

router = APIRouter(prefix="/patients", tags=["Patients"])

@router.get("/", response_model=List[Patient])
async def list_patients(
    acuity: Optional[Acuity] = None,
    isolation: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(get_current_user)
):
    """
    List patients on the ward

    - **acuity**: Stable, Watch or Unstable
    - **isolation**: isolation precaution
    - **search**: matches name, HN, diagnosis or room
    """
    return await patient_service.list_patients(acuity, isolation, search, skip, limit)

@router.get("/statistics", response_model=PatientStatistics)
async def get_statistics(current_user: dict = Depends(get_current_user)):
    """Census by acuity and open task count"""
    return await patient_service.statistics()

@router.post("/handoff/apply", response_model=BulkHandoffApplyResponse)
@audited(AuditAction.UPDATE, AuditResource.HANDOFF)
async def apply_bulk_handoff(
    payload: BulkHandoffApplyRequest,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    """
    Apply reviewed handoff updates to the ward

    Updates are matched to patients by room number, then by name.
    """
    return await patient_service.apply_bulk_handoff(payload.updates, current_user["_id"])

@router.post("/", response_model=Patient, status_code=201)
@audited(AuditAction.CREATE, AuditResource.PATIENT)
async def create_patient(
    patient_data: PatientCreate,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.create_patient(patient_data, current_user["_id"])

@router.get("/{patient_id}", response_model=Patient)
async def get_patient(patient_id: str, current_user: dict = Depends(get_current_user)):
    """Get the full patient record"""
    return await patient_service.get_patient(patient_id)

@router.put("/{patient_id}", response_model=Patient)
@audited(AuditAction.UPDATE, AuditResource.PATIENT)
async def update_patient(
    patient_id: str,
    changes: PatientUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.update_patient(patient_id, changes, current_user["_id"])

@router.delete("/{patient_id}")
@audited(AuditAction.DELETE, AuditResource.PATIENT)
async def delete_patient(
    patient_id: str,
    request: Request,
    current_user: dict = Depends(require_roles("Admin", "Attending"))
):
    """Delete a patient (Admin or Attending only)"""
    return await patient_service.delete_patient(patient_id)

# Tasks

@router.post("/{patient_id}/tasks", response_model=Task, status_code=201)
@audited(AuditAction.CREATE, AuditResource.TASK)
async def add_task(
    patient_id: str,
    task: Task,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.add_task(patient_id, task, current_user["_id"])

@router.put("/{patient_id}/tasks/{task_id}", response_model=Task)
@audited(AuditAction.UPDATE, AuditResource.TASK)
async def update_task(
    patient_id: str,
    task_id: str,
    changes: TaskUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.update_task(patient_id, task_id, changes, current_user["_id"])

@router.delete("/{patient_id}/tasks/{task_id}")
@audited(AuditAction.DELETE, AuditResource.TASK)
async def delete_task(
    patient_id: str,
    task_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.delete_task(patient_id, task_id, current_user["_id"])

# Medications

@router.post("/{patient_id}/medications", response_model=Medication, status_code=201)
@audited(AuditAction.CREATE, AuditResource.MEDICATION)
async def add_medication(
    patient_id: str,
    medication: Medication,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.add_medication(patient_id, medication, current_user["_id"])

@router.put("/{patient_id}/medications/{medication_id}", response_model=Medication)
@audited(AuditAction.UPDATE, AuditResource.MEDICATION)
async def update_medication(
    patient_id: str,
    medication_id: str,
    changes: MedicationUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.update_medication(patient_id, medication_id, changes, current_user["_id"])

@router.patch("/{patient_id}/medications/{medication_id}/toggle", response_model=Medication)
@audited(AuditAction.UPDATE, AuditResource.MEDICATION)
async def toggle_medication(
    patient_id: str,
    medication_id: str,
    toggle: MedicationToggle,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    """Start or stop a medication. Stopped medications are kept with an end date."""
    return await patient_service.toggle_medication(
        patient_id, medication_id, toggle.is_active, current_user["_id"]
    )

@router.get("/{patient_id}/allergy-conflicts", response_model=List[AllergyConflict])
async def get_allergy_conflicts(patient_id: str, current_user: dict = Depends(get_current_user)):
    """Active medications that clash with documented allergies"""
    return await patient_service.allergy_conflicts(patient_id)

# Labs

@router.post("/{patient_id}/labs", response_model=ReconcileResponse, status_code=201)
@audited(AuditAction.CREATE, AuditResource.LAB)
async def add_lab(
    patient_id: str,
    entry: ManualLabEntry,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.add_lab(patient_id, entry, current_user["_id"])

# Problem list

@router.get("/{patient_id}/problems", response_model=ProblemListState)
async def get_problems(patient_id: str, current_user: dict = Depends(get_current_user)):
    return await patient_service.get_problems(patient_id)

@router.put("/{patient_id}/problems", response_model=ProblemListState)
@audited(AuditAction.UPDATE, AuditResource.PATIENT)
async def replace_problems(
    patient_id: str,
    payload: ProblemListReplace,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    """Save a new problem list snapshot (clears the redo branch)"""
    return await patient_service.replace_problems(patient_id, payload.problems, current_user["_id"])

@router.post("/{patient_id}/problems/undo", response_model=ProblemListState)
@audited(AuditAction.UPDATE, AuditResource.PATIENT)
async def undo_problems(
    patient_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.undo_problems(patient_id, current_user["_id"])

@router.post("/{patient_id}/problems/redo", response_model=ProblemListState)
@audited(AuditAction.UPDATE, AuditResource.PATIENT)
async def redo_problems(
    patient_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await patient_service.redo_problems(patient_id, current_user["_id"])

# Reviewed extraction results

@router.post("/{patient_id}/reconcile", response_model=ReconcileResponse)
@audited(AuditAction.IMPORT, AuditResource.PATIENT)
async def reconcile_records(
    patient_id: str,
    payload: ReconcileRequest,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    """
    Save reviewed extraction records into the patient

    - **kind**: extraction kind of the records
    - **records** / **record**: the reviewed records (array kinds / object kinds)
    - **fillGrid**: complete lab batches to a full test x date grid
    - **fallbackDate**: date for lab points whose date could not be read
    """
    return await patient_service.reconcile_records(patient_id, payload, current_user["_id"])

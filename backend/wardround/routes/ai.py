# /backend/wardround/routes/ai.py

from fastapi import APIRouter, Depends
from typing import List, Optional
from wardround.models.extraction import (
    EKGScanRequest,
    ImageScanRequest,
    LabScanRequest,
    LabScanResponse,
    RecordResponse,
    RecordsResponse,
    TextScanRequest,
)
from wardround.models.generation import (
    DischargeMedicationAnalysis,
    DrugInteraction,
    DrugInteractionRequest,
    LabInterpretationRequest,
    TextResponse,
)
from wardround.services.extraction_service import Extraction, extraction_service
from wardround.services.generation_service import generation_service
from wardround.services.patient_service import patient_service
from wardround.utils.security import get_current_user

router = APIRouter(prefix="/ai", tags=["AI Extraction"])

# Scan endpoints return reviewed-before-save drafts; nothing here writes to a patient.


def _records_response(extraction: Extraction) -> RecordsResponse:
    return RecordsResponse(
        kind=extraction.kind,
        records=[record.model_dump(by_alias=True, mode="json") for record in extraction.records],
        validation_errors=extraction.validation_errors,
    )


def _record_response(extraction: Extraction) -> RecordResponse:
    record = extraction.record
    return RecordResponse(
        kind=extraction.kind,
        record=record.model_dump(by_alias=True, mode="json") if record is not None else None,
        validation_errors=extraction.validation_errors,
    )


@router.post("/scan/labs", response_model=LabScanResponse)
async def scan_labs(
    scan: LabScanRequest,
    patient_id: Optional[str] = None,
    current_user: dict = Depends(get_current_user)
):
    """
    Extract lab results from lab sheet photos

    - **images**: data URLs or base64 images (1-10)
    - **referenceYear**: year used for dates printed without one
    - **fillGrid**: return a full test x date grid with empty placeholders
    """
    patient = await patient_service.get_patient(patient_id) if patient_id else None
    extraction = await extraction_service.scan_labs(
        scan.images,
        patient=patient,
        patient_name=scan.patient_name,
        reference_year=scan.reference_year,
        fill_grid=scan.fill_grid,
    )
    return LabScanResponse(
        results=extraction.records,
        pbs_text=extraction.pbs_text,
        validation_errors=extraction.validation_errors,
    )

@router.post("/scan/admission-note", response_model=RecordResponse)
async def scan_admission_note(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _record_response(
        await extraction_service.scan_admission_note(scan.images, reference_year=scan.reference_year)
    )

@router.post("/scan/problems", response_model=RecordsResponse)
async def scan_problem_list(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _records_response(await extraction_service.scan_problem_list(scan.images))

@router.post("/scan/medications", response_model=RecordsResponse)
async def scan_medications(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _records_response(
        await extraction_service.scan_medications(scan.images, reference_year=scan.reference_year)
    )

@router.post("/scan/cultures", response_model=RecordsResponse)
async def scan_cultures(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _records_response(
        await extraction_service.scan_cultures(scan.images, reference_year=scan.reference_year)
    )

@router.post("/scan/ekg", response_model=RecordResponse)
async def scan_ekg(
    scan: EKGScanRequest,
    patient_id: Optional[str] = None,
    current_user: dict = Depends(get_current_user)
):
    """Read a 12-lead EKG, compared with the patient's last EKG when one is on file"""
    patient = await patient_service.get_patient(patient_id) if patient_id else None
    return _record_response(
        await extraction_service.scan_ekg(scan.images, patient=patient, previous_context=scan.previous_context)
    )

@router.post("/scan/echo", response_model=RecordResponse)
async def scan_echo(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _record_response(await extraction_service.scan_echo(scan.images))

@router.post("/scan/imaging", response_model=RecordResponse)
async def scan_imaging(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _record_response(await extraction_service.scan_imaging(scan.images))

@router.post("/scan/pbs", response_model=RecordResponse)
async def scan_pbs(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _record_response(await extraction_service.scan_pbs(scan.images))

@router.post("/scan/appointments", response_model=RecordsResponse)
async def scan_appointments(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    return _records_response(
        await extraction_service.scan_appointments(scan.images, reference_year=scan.reference_year)
    )

@router.post("/scan/patient", response_model=RecordResponse)
async def scan_patient_demographics(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    """Read an ID sticker or admission card; save it through the reconcile endpoint"""
    return _record_response(await extraction_service.scan_patient_demographics(scan.images))

@router.post("/scan/vitals", response_model=RecordResponse)
async def scan_vitals(scan: ImageScanRequest, current_user: dict = Depends(get_current_user)):
    """Ranges of Tmax, BP, HR, RR and O2 from a vitals flowsheet; record is null when unreadable"""
    return _record_response(await extraction_service.scan_vitals(scan.images))

@router.post("/parse/handoff", response_model=RecordsResponse)
async def parse_bulk_handoff(payload: TextScanRequest, current_user: dict = Depends(get_current_user)):
    """Split free-text handover notes into per-patient I-PASS updates"""
    return _records_response(await extraction_service.parse_bulk_handoff(payload.text))

@router.post("/parse/tasks", response_model=RecordsResponse)
async def extract_tasks(payload: TextScanRequest, current_user: dict = Depends(get_current_user)):
    return _records_response(await extraction_service.extract_tasks(payload.text))

@router.post("/parse/chronic-diseases", response_model=RecordsResponse)
async def extract_chronic_diseases(payload: TextScanRequest, current_user: dict = Depends(get_current_user)):
    """Chronic diseases with their latest control values from a past-history text"""
    return _records_response(await extraction_service.extract_chronic_diseases(payload.text))

# Generation

@router.post("/patients/{patient_id}/one-liner", response_model=TextResponse)
async def generate_one_liner(patient_id: str, current_user: dict = Depends(get_current_user)):
    patient = await patient_service.get_patient(patient_id)
    return TextResponse(text=await generation_service.one_liner(patient))

@router.post("/patients/{patient_id}/pre-round", response_model=RecordResponse)
async def generate_pre_round_summary(patient_id: str, current_user: dict = Depends(get_current_user)):
    """Draft SOAP note for morning rounds"""
    patient = await patient_service.get_patient(patient_id)
    summary = await generation_service.pre_round_summary(patient)
    return RecordResponse(
        kind="pre_round_summary",
        record=summary.model_dump(by_alias=True, mode="json") if summary else None,
    )

@router.post("/patients/{patient_id}/interpret-labs", response_model=TextResponse)
async def interpret_labs(
    patient_id: str,
    payload: LabInterpretationRequest,
    current_user: dict = Depends(get_current_user)
):
    patient = await patient_service.get_patient(patient_id)
    return TextResponse(text=await generation_service.interpret_labs(patient, payload.tests))

@router.post("/patients/{patient_id}/discharge-summary", response_model=RecordResponse)
async def generate_discharge_summary(patient_id: str, current_user: dict = Depends(get_current_user)):
    """Draft only: save it through the patient's reconcile endpoint"""
    patient = await patient_service.get_patient(patient_id)
    summary = await generation_service.discharge_summary(patient)
    return RecordResponse(
        kind="discharge_summary",
        record=summary.model_dump(by_alias=True, mode="json") if summary else None,
    )

@router.post("/patients/{patient_id}/discharge-medications", response_model=DischargeMedicationAnalysis)
async def analyze_discharge_medications(patient_id: str, current_user: dict = Depends(get_current_user)):
    patient = await patient_service.get_patient(patient_id)
    return await generation_service.analyze_discharge_medications(patient)

@router.post("/drug-interactions", response_model=List[DrugInteraction])
async def check_drug_interactions(payload: DrugInteractionRequest, current_user: dict = Depends(get_current_user)):
    return await generation_service.drug_interactions(payload.medications)

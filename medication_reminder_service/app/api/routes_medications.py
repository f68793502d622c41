from typing import List, Optional
from fastapi import APIRouter, Depends
from app.api.deps import get_service, http_errors, rate_limited
from app.schemas.models import (
    FrequencyUpdateRequest,
    InventoryRecord,
    Medication,
    MedicationCreateRequest,
    MedicationDetail,
    RefillRequest,
    StatusResponse,
)
from app.services.medication_service import MedicationService

router = APIRouter(prefix="/medications", tags=["medications"], dependencies=[Depends(rate_limited)])

@router.post("", response_model=MedicationDetail, status_code=201)
def create_medication(req: MedicationCreateRequest, svc: MedicationService = Depends(get_service)):
    with http_errors():
        return svc.create_medication(req)

@router.get("", response_model=List[Medication])
def list_medications(user_id: Optional[str] = None, include_inactive: bool = False,
                     svc: MedicationService = Depends(get_service)):
    return svc.list_medications(user_id, active_only=not include_inactive)

@router.get("/{medication_id}", response_model=MedicationDetail)
def get_medication(medication_id: str, svc: MedicationService = Depends(get_service)):
    with http_errors():
        return svc.get_detail(medication_id)

@router.delete("/{medication_id}")
def delete_medication(medication_id: str, hard: bool = True, svc: MedicationService = Depends(get_service)):
    with http_errors():
        svc.delete_medication(medication_id, hard=hard)
    return {"ok": True, "medication_id": medication_id, "hard": hard}

@router.put("/{medication_id}/frequency", response_model=MedicationDetail)
def update_frequency(medication_id: str, req: FrequencyUpdateRequest, svc: MedicationService = Depends(get_service)):
    with http_errors():
        return svc.update_frequency(medication_id, req)

@router.get("/{medication_id}/status", response_model=StatusResponse)
def medication_status(medication_id: str, svc: MedicationService = Depends(get_service)):
    with http_errors():
        return svc.status(medication_id)

@router.post("/{medication_id}/refill", response_model=InventoryRecord)
def refill_medication(medication_id: str, req: RefillRequest, svc: MedicationService = Depends(get_service)):
    with http_errors():
        return svc.refill(medication_id, req)

from fastapi import APIRouter, Depends
from app.api.deps import get_service, http_errors, rate_limited
from app.core.settings import DEFAULT_WINDOW_DAYS
from app.schemas.models import ActionRequest, ActionResponse, StreakSummary
from app.services.medication_service import MedicationService

router = APIRouter(prefix="/adherence", tags=["adherence"], dependencies=[Depends(rate_limited)])

@router.post("/action", response_model=ActionResponse)
def record_action(req: ActionRequest, svc: MedicationService = Depends(get_service)):
    with http_errors():
        return svc.record_action(req)

@router.get("/summary", response_model=StreakSummary)
def summary(medication_id: str, days: int = DEFAULT_WINDOW_DAYS, svc: MedicationService = Depends(get_service)):
    with http_errors():
        return svc.streaks(medication_id, window_days=days)

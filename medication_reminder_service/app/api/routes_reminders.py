from typing import List, Optional
from fastapi import APIRouter, Depends
from app.api.deps import get_service, http_errors, rate_limited
from app.schemas.models import DueReminder, NotificationPreferences
from app.services.medication_service import MedicationService

router = APIRouter(tags=["reminders"], dependencies=[Depends(rate_limited)])

@router.get("/reminders/due", response_model=List[DueReminder])
def due(user_id: Optional[str] = None, send: bool = False, svc: MedicationService = Depends(get_service)):
    """Called by the external scheduler; with send=true the reminders are dispatched too."""
    with http_errors():
        return svc.due(user_id, send=send)

@router.post("/reminders/reset-daily")
def reset_daily(svc: MedicationService = Depends(get_service)):
    with http_errors():
        return {"ok": True, "slots_reset": svc.reset_daily()}

@router.get("/preferences/{user_id}", response_model=NotificationPreferences)
def get_preferences(user_id: str, svc: MedicationService = Depends(get_service)):
    return svc.get_preferences(user_id)

@router.put("/preferences/{user_id}", response_model=NotificationPreferences)
def set_preferences(user_id: str, prefs: NotificationPreferences, svc: MedicationService = Depends(get_service)):
    return svc.set_preferences(user_id, prefs)

from typing import Callable, Optional
from datetime import datetime
from fastapi import FastAPI
from app.api.routes_adherence import router as adherence_router
from app.api.routes_medications import router as medications_router
from app.api.routes_reminders import router as reminders_router
from app.core.logging_config import configure_logging
from app.core.settings import DB_PATH, DISPATCH_ENABLED, LOG_FORMAT, LOG_LEVEL
from app.db.store import MedicationStore
from app.services.medication_service import MedicationService
from app.services.notifications import HttpRelayDispatcher, NotificationDispatcher, NullDispatcher
from app.services.rate_limit import RateLimiter
from app.utils.time_utils import utcnow

SERVICE_NAME = "Medication Reminder Service"

def create_app(
    store: Optional[MedicationStore] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    rate_limiter: Optional[RateLimiter] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    app = FastAPI(title=SERVICE_NAME, version="1.0")

    if dispatcher is None:
        dispatcher = HttpRelayDispatcher() if DISPATCH_ENABLED else NullDispatcher()
    app.state.service = MedicationService(store or MedicationStore(DB_PATH), dispatcher, clock=clock)
    app.state.rate_limiter = rate_limiter or RateLimiter()

    app.include_router(medications_router)
    app.include_router(adherence_router)
    app.include_router(reminders_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/")
    def root():
        return {"ok": True, "service": SERVICE_NAME}

    return app

configure_logging(LOG_LEVEL, LOG_FORMAT)
app = create_app()

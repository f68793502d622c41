# app/api/deps.py
from contextlib import contextmanager

from fastapi import HTTPException, Request

from app.core.errors import (
    ConflictError,
    DomainError,
    MedicationNotFoundError,
    MedReminderError,
    RateLimitExceeded,
    ValidationError,
)
from app.services.medication_service import MedicationService

def get_service(request: Request) -> MedicationService:
    return request.app.state.service

def rate_limited(request: Request) -> None:
    limiter = request.app.state.rate_limiter
    client_id = request.client.host if request.client else "anonymous"
    # windows follow the service clock
    with http_errors():
        limiter.check(client_id, get_service(request).clock())

@contextmanager
def http_errors():
    """Translate engine errors into HTTP responses."""
    try:
        yield
    except MedicationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    # UnknownActionError is both; it is a malformed request
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (DomainError, ConflictError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RateLimitExceeded as e:
        raise HTTPException(status_code=429, detail=str(e))
    except MedReminderError as e:
        raise HTTPException(status_code=500, detail=str(e))

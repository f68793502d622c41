"""Inventory ledger: consumption, refills and refill-threshold alerts.

Inventory tracking is opt-in per medication; every function accepts a
missing record and leaves it missing.
"""
import logging
from datetime import datetime
from typing import Optional

from app.core.errors import ValidationError
from app.schemas.models import ConsumeResult, InventoryRecord, RefillResult

logger = logging.getLogger(__name__)

def _below_threshold(record: InventoryRecord, quantity: float) -> bool:
    return record.refill_threshold is not None and quantity <= record.refill_threshold

def consume(
    record: Optional[InventoryRecord],
    amount: float,
    at: Optional[datetime] = None,
) -> ConsumeResult:
    """Take `amount` units out of stock, never going below zero.

    crossed_threshold is edge-triggered: it fires on the consume that brings
    the quantity to or below refill_threshold and then stays quiet (the
    record's refill_alert_sent flag) until a refill re-arms it.
    """
    if record is None:
        return ConsumeResult()
    if amount <= 0:
        raise ValidationError(f"Consumed amount must be positive, got {amount}")

    new_quantity = max(0.0, record.current_quantity - amount)
    crossed = _below_threshold(record, new_quantity) and not record.refill_alert_sent

    updated = record.model_copy(update={
        "current_quantity": new_quantity,
        "refill_alert_sent": record.refill_alert_sent or crossed,
        "last_updated": at or record.last_updated,
    })

    if crossed:
        logger.info(
            "Inventory for %s crossed refill threshold (%s <= %s)",
            record.medication_id, new_quantity, record.refill_threshold,
        )

    return ConsumeResult(
        record=updated,
        new_quantity=new_quantity,
        crossed_threshold=crossed,
        depleted=new_quantity == 0,
        delta=new_quantity - record.current_quantity,
    )

def refill(record: InventoryRecord, amount: float, at: Optional[datetime] = None) -> RefillResult:
    if amount <= 0:
        raise ValidationError(f"Refill quantity must be positive, got {amount}")
    new_quantity = record.current_quantity + amount
    updated = record.model_copy(update={
        "current_quantity": new_quantity,
        "refill_alert_sent": False,
        "last_refill_at": at or record.last_refill_at,
        "last_updated": at or record.last_updated,
    })
    return RefillResult(record=updated, new_quantity=new_quantity)

def days_of_supply(record: Optional[InventoryRecord], doses_per_day: float) -> Optional[float]:
    """Days the current stock lasts; None when it cannot be known."""
    if record is None or doses_per_day <= 0:
        return None
    per_day = (record.dose_amount or 1) * doses_per_day
    return round(record.current_quantity / per_day, 1)

def needs_refill(record: Optional[InventoryRecord]) -> bool:
    if record is None:
        return False
    return record.current_quantity == 0 or _below_threshold(record, record.current_quantity)

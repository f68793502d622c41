"""Notification dispatch glue.

The engine only renders message content and picks channels; delivery,
retries and credentials belong to the dispatcher behind `send()`. A failed
send is logged and reported as a warning, never raised into a status
transition.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import requests

from app.core.errors import DispatchError
from app.core.settings import DISPATCH_RELAY_URL, DISPATCH_TIMEOUT_S
from app.schemas.models import (
    Channel,
    ConsumeResult,
    DispatchResult,
    Medication,
    MessageKind,
    NotificationPreferences,
    RenderedMessage,
)

logger = logging.getLogger(__name__)

class NotificationDispatcher(Protocol):
    def send(self, channel: Channel, target: str, message: RenderedMessage) -> DispatchResult:
        ...

class HttpRelayDispatcher:
    """Hands messages to the notification relay over HTTP.

    The relay owns SMTP/SMS/MQTT/device transports; we POST one JSON payload
    per (channel, target).
    """

    def __init__(self, url: str = DISPATCH_RELAY_URL, timeout_s: int = DISPATCH_TIMEOUT_S, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def send(self, channel: Channel, target: str, message: RenderedMessage) -> DispatchResult:
        payload: Dict[str, Any] = {
            "channel": channel,
            "target": target,
            "message": message.model_dump(mode="json"),
        }
        try:
            r = self.session.post(self.url, json=payload, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise DispatchError(f"Relay unreachable for {channel}: {e}") from e
        if r.status_code >= 400:
            raise DispatchError(f"Relay {r.status_code} for {channel}: {r.text[:200]}")
        return DispatchResult(success=True, channel=channel)

class NullDispatcher:
    """Accepts everything and sends nothing (dispatch disabled)."""

    def send(self, channel: Channel, target: str, message: RenderedMessage) -> DispatchResult:
        return DispatchResult(success=True, channel=channel)

_TEMPLATES = {
    "REMINDER": "Time to take your {dosage} of {name}",
    "TAKEN": "{name} ({dosage}) marked as taken",
    "MISSED": "Missed dose: {name} ({dosage})",
    "SKIPPED": "{name} ({dosage}) skipped",
    "DELAYED": "Reminder for {name} ({dosage}) snoozed",
    "LOW_STOCK": "Running low on {name}: {quantity} left, time to refill",
    "DEPLETED": "You are out of {name}. Please refill as soon as possible",
}

_ACTION_KIND = {"take": "TAKEN", "miss": "MISSED", "skip": "SKIPPED", "delay": "DELAYED"}

def render_message(
    medication: Medication,
    kind: MessageKind,
    scheduled_time: Optional[datetime] = None,
    quantity: Optional[float] = None,
    overdue: bool = False,
) -> RenderedMessage:
    qty = f"{quantity:g}" if quantity is not None else ""
    text = _TEMPLATES[kind].format(name=medication.name, dosage=medication.dosage, quantity=qty)
    if kind == "REMINDER" and overdue:
        text = f"REMINDER: Your {medication.dosage} of {medication.name} is overdue"
    if kind == "REMINDER" and medication.with_food:
        text += " (take with food)"
    urgency = "high" if overdue or kind in ("MISSED", "DEPLETED") else "normal"
    return RenderedMessage(
        kind=kind,
        medication_id=medication.id,
        medication_name=medication.name,
        dosage=medication.dosage,
        instructions=medication.instructions,
        urgency=urgency,
        scheduled_time=scheduled_time.strftime("%H:%M") if scheduled_time else None,
        text=text,
    )

def targets_for(prefs: NotificationPreferences) -> List[tuple]:
    """(channel, target) pairs for every enabled channel that has a target."""
    lookup = {
        "email": prefs.email,
        "sms": prefs.phone_number,
        "esp32_http": prefs.device_id,
        "mqtt": prefs.mqtt_topic,
    }
    return [(ch, lookup[ch]) for ch in prefs.channels if lookup.get(ch)]

def dispatch_safely(
    dispatcher: NotificationDispatcher,
    channel: Channel,
    target: str,
    message: RenderedMessage,
) -> DispatchResult:
    try:
        return dispatcher.send(channel, target, message)
    except DispatchError as e:
        logger.warning("Dispatch of %s via %s failed: %s", message.kind, channel, e)
        return DispatchResult(success=False, channel=channel, error=str(e))
    except Exception as e:
        # third-party transports raise their own errors; a send never fails a transition
        logger.exception("Dispatcher raised while sending %s via %s", message.kind, channel)
        return DispatchResult(success=False, channel=channel, error=f"{type(e).__name__}: {e}")

def broadcast(
    dispatcher: NotificationDispatcher,
    prefs: NotificationPreferences,
    message: RenderedMessage,
) -> List[str]:
    """Send on every configured channel; returns warnings for failed sends."""
    warnings: List[str] = []
    for channel, target in targets_for(prefs):
        res = dispatch_safely(dispatcher, channel, target, message)
        if not res.success:
            warnings.append(f"{channel}: {res.error}")
    return warnings

def _wants(prefs: NotificationPreferences, action: str) -> bool:
    return {
        "take": prefs.confirm_taken,
        "miss": prefs.missed_dose,
        "skip": prefs.skipped_dose,
        "delay": prefs.delayed_dose,
    }.get(action, False)

def notify_for_action(
    dispatcher: NotificationDispatcher,
    prefs: NotificationPreferences,
    medication: Medication,
    action: str,
    scheduled_time: Optional[datetime],
    inventory: ConsumeResult,
) -> List[str]:
    """Status confirmation plus refill alerts after a transition."""
    warnings: List[str] = []
    if _wants(prefs, action):
        msg = render_message(medication, _ACTION_KIND[action], scheduled_time)
        warnings += broadcast(dispatcher, prefs, msg)

    # depletion alerts only on the dose that emptied the stock
    just_depleted = inventory.depleted and inventory.delta < 0
    if prefs.refill_alerts and (inventory.crossed_threshold or just_depleted):
        kind = "DEPLETED" if just_depleted else "LOW_STOCK"
        msg = render_message(medication, kind, quantity=inventory.new_quantity)
        warnings += broadcast(dispatcher, prefs, msg)
    return warnings

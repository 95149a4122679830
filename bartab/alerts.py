"""Trusted-friend alert messages.

Texts are written for the friend, never the drinker, and only ever name the
customer by first name.
"""

from typing import Any, Mapping, Optional

from bartab.models import ALERT_HIGH_RISK, ALERT_KINDS, ALERT_SESSION_ENDED

MAX_CONTACT_CHARS = 40
MAX_NAME_CHARS = 80


def first_name(customer_name: str) -> str:
    parts = customer_name.split()
    return parts[0] if parts else "Your friend"


def validate_alert(data: Mapping[str, Any]) -> Optional[str]:
    """Return an error message for an alert payload, or None when it is valid."""
    to = data.get("to")
    kind = data.get("type")
    customer_name = data.get("customerName")
    if not isinstance(to, str) or not to.strip():
        return "Missing required fields"
    if not isinstance(kind, str) or not kind:
        return "Missing required fields"
    if not isinstance(customer_name, str) or not customer_name.strip():
        return "Missing required fields"
    if kind not in ALERT_KINDS:
        return "type must be high-risk or session-ended"
    if len(to.strip()) > MAX_CONTACT_CHARS:
        return "Contact number is too long"
    if len(customer_name.strip()) > MAX_NAME_CHARS:
        return "Customer name is too long"
    bac = data.get("bac")
    if bac is not None and not isinstance(bac, str):
        return "bac must be a string"
    return None


def compose_message(kind: str, customer_name: str, bac: Optional[str] = None) -> str:
    name = first_name(customer_name)
    if kind == ALERT_HIGH_RISK:
        reading = f" ({bac})" if bac else ""
        return (
            f"⚠️ SOBR Alert: Your friend {name} has reached a high estimated BAC{reading}. "
            "They may need your help getting home safely tonight. Please check in on them."
        )
    if kind == ALERT_SESSION_ENDED:
        return (
            f"🍻 SOBR: Your friend {name} just ended their drinking session. "
            "Please make sure they get home safely. A quick call or text goes a long way!"
        )
    raise ValueError(f"unknown alert kind: {kind}")

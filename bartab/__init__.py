"""
Bar tab tracker: Widmark BAC estimate, tab sessions, friend alerts and Breathy.
Web app: python app.py. CLI estimate: python -m bartab.main
"""

from bartab.calculations import (
    alcohol_grams,
    estimate_bac,
    format_bac,
    hours_until_sober,
    lb_to_kg,
    risk_level,
)
from bartab.context import SessionContext, build_context
from bartab.models import Alert, Customer, Drink, TabSession
from bartab.responder import rule_based_reply

__all__ = [
    "Alert",
    "Customer",
    "Drink",
    "SessionContext",
    "TabSession",
    "alcohol_grams",
    "build_context",
    "estimate_bac",
    "format_bac",
    "hours_until_sober",
    "lb_to_kg",
    "risk_level",
    "rule_based_reply",
]

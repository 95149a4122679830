"""Per-request snapshot of a drinking session, shared by the views and Breathy."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from bartab import calculations
from bartab.models import Customer, TabSession


@dataclass(frozen=True)
class DrinkSummary:
    name: str
    volume_ml: float
    abv: float


@dataclass(frozen=True)
class SessionContext:
    name: str
    bac: float
    drink_count: int
    hours: float
    pacing: float
    risk_level: str
    hours_until_sober: float
    sex: str = "male"
    weight_lb: float = 0.0
    drinks: List[DrinkSummary] = field(default_factory=list)

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else "friend"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "bac": self.bac,
            "bac_display": calculations.format_bac(self.bac),
            "drink_count": self.drink_count,
            "drinks": [{"name": d.name, "volume_ml": d.volume_ml, "abv": d.abv} for d in self.drinks],
            "hours": round(self.hours, 2),
            "pacing": round(self.pacing, 2),
            "risk_level": self.risk_level,
            "hours_until_sober": self.hours_until_sober,
            "sex": self.sex,
            "weight_lb": self.weight_lb,
        }


def build_context(customer: Customer, session: TabSession, now: Optional[datetime] = None) -> SessionContext:
    """Compute BAC and derived figures once; every consumer reads the same numbers."""
    bac = session.bac_now(customer, now=now)
    hours = session.hours_elapsed(now)
    drinks = session.drinks
    return SessionContext(
        name=customer.name,
        bac=bac,
        drink_count=len(drinks),
        hours=hours,
        pacing=calculations.pacing(len(drinks), hours),
        risk_level=calculations.risk_level(bac),
        hours_until_sober=calculations.hours_until_sober(bac),
        sex=customer.sex,
        weight_lb=customer.weight_lb,
        drinks=[DrinkSummary(d.name, d.volume_ml, d.abv) for d in drinks],
    )

"""BAC estimation using the Widmark formula with linear elimination.

Model:
- grams = volume_ml * (abv / 100) * 0.789
- BAC = [total_grams / (body_weight_g * r)] * 100 - 0.015 * hours_since_first_drink
- r = 0.68 (male), 0.55 (female)

Weight is always kilograms here. Customers record pounds; convert with
``lb_to_kg`` before calling ``estimate_bac``.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

# Ethanol density (g/mL).
ETHANOL_DENSITY = 0.789

# Distribution ratio (Widmark r)
R_MALE = 0.68
R_FEMALE = 0.55
WIDMARK_FACTOR = {"male": R_MALE, "female": R_FEMALE}

# Elimination rate (% BAC per hour)
ELIMINATION_PER_HOUR = 0.015

# Risk tiers (legal-limit aligned, not configurable).
CAUTION_BAC = 0.05
DANGER_BAC = 0.08

LB_TO_KG = 0.45359237
MIN_PACING_HOURS = 0.1


def lb_to_kg(weight_lb: float) -> float:
    return weight_lb * LB_TO_KG


def alcohol_grams(volume_ml: float, abv_percent: float) -> float:
    """Grams of pure ethanol in a single drink."""
    return volume_ml * (abv_percent / 100.0) * ETHANOL_DENSITY


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def estimate_bac(
    drinks: Iterable,
    weight_kg: float,
    sex: str = "male",
    now: Optional[datetime] = None,
) -> float:
    """Current BAC (%) for drinks with ``volume_ml``, ``abv`` and ``ordered_at``.

    Returns 0 for an empty list or a non-positive weight. Unknown sex falls
    back to the male factor.
    """
    drinks = list(drinks)
    if not drinks or weight_kg <= 0:
        return 0.0

    now = _utc(now or datetime.now(timezone.utc))
    total_grams = sum(alcohol_grams(d.volume_ml, d.abv) for d in drinks)
    first = min(_utc(d.ordered_at) for d in drinks)
    hours_since_first = (now - first).total_seconds() / 3600.0

    body_weight_g = weight_kg * 1000.0
    r = WIDMARK_FACTOR.get(sex, R_MALE)
    bac = (total_grams / (body_weight_g * r)) * 100.0 - ELIMINATION_PER_HOUR * hours_since_first
    return max(0.0, round(bac, 3))


def risk_level(bac: float) -> str:
    if bac >= DANGER_BAC:
        return "danger"
    if bac >= CAUTION_BAC:
        return "caution"
    return "safe"


def hours_until_sober(bac: float) -> float:
    """Hours until BAC reaches zero at the elimination rate used above."""
    if bac <= 0:
        return 0.0
    return round(bac / ELIMINATION_PER_HOUR, 1)


def pacing(drink_count: int, hours: float) -> float:
    """Drinks per hour; very short sessions count as 6 minutes."""
    return drink_count / max(hours, MIN_PACING_HOURS)


def format_bac(bac: float) -> str:
    return f"{bac:.3f}%"

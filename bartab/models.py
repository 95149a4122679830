"""
Records read from the session store.

Rows are validated once, here, so the rest of the code can rely on required
fields being present and typed. Optional fields are ``None`` when absent.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional

from bartab import calculations
from bartab.time_utils import hours_between, parse_iso_datetime, to_iso, utcnow

SEXES = ("male", "female")

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_ENDED = "ended"

ALERT_HIGH_RISK = "high-risk"
ALERT_SESSION_ENDED = "session-ended"
ALERT_KINDS = (ALERT_HIGH_RISK, ALERT_SESSION_ENDED)


def _required(row: Mapping[str, Any], key: str) -> Any:
    value = row[key]
    if value is None:
        raise ValueError(f"{key} is required")
    return value


def _required_ts(row: Mapping[str, Any], key: str) -> datetime:
    ts = parse_iso_datetime(_required(row, key))
    if ts is None:
        raise ValueError(f"{key} is required")
    return ts


@dataclass
class Customer:
    id: int
    user_id: int
    name: str
    weight_lb: float
    sex: str
    emergency_phone: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Customer":
        weight = float(_required(row, "weight_lb"))
        if weight <= 0:
            raise ValueError("weight_lb must be positive")
        sex = str(_required(row, "sex"))
        if sex not in SEXES:
            raise ValueError("sex must be male or female")
        return cls(
            id=int(row["id"]),
            user_id=int(_required(row, "user_id")),
            name=str(_required(row, "name")),
            weight_lb=weight,
            sex=sex,
            emergency_phone=row["emergency_phone"] or None,
        )

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else "friend"

    @property
    def weight_kg(self) -> float:
        return calculations.lb_to_kg(self.weight_lb)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "weight_lb": self.weight_lb,
            "sex": self.sex,
            "emergency_phone": self.emergency_phone,
        }


@dataclass(frozen=True)
class Drink:
    id: int
    session_id: int
    name: str
    volume_ml: float
    abv: float
    ordered_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Drink":
        volume = float(_required(row, "volume_ml"))
        abv = float(_required(row, "abv"))
        if volume <= 0:
            raise ValueError("volume_ml must be positive")
        if abv < 0 or abv > 100:
            raise ValueError("abv must be between 0 and 100")
        return cls(
            id=int(row["id"]),
            session_id=int(_required(row, "session_id")),
            name=str(_required(row, "name")),
            volume_ml=volume,
            abv=abv,
            ordered_at=_required_ts(row, "ordered_at"),
        )

    @property
    def grams(self) -> float:
        return calculations.alcohol_grams(self.volume_ml, self.abv)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "volume_ml": self.volume_ml,
            "abv": self.abv,
            "grams": round(self.grams, 1),
            "ordered_at": to_iso(self.ordered_at),
        }


@dataclass
class TabSession:
    id: int
    join_token: str
    started_at: datetime
    customer_id: Optional[int] = None
    ended_at: Optional[datetime] = None
    is_active: bool = True
    chat_turn: int = 0
    drinks: List[Drink] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TabSession":
        return cls(
            id=int(row["id"]),
            join_token=str(_required(row, "join_token")),
            started_at=_required_ts(row, "started_at"),
            customer_id=row["customer_id"],
            ended_at=parse_iso_datetime(row["ended_at"]),
            is_active=bool(row["is_active"]),
            chat_turn=int(row["chat_turn"] or 0),
        )

    @property
    def status(self) -> str:
        if self.ended_at is not None or not self.is_active:
            return STATUS_ENDED
        if self.customer_id is None:
            return STATUS_PENDING
        return STATUS_ACTIVE

    def hours_elapsed(self, now: Optional[datetime] = None) -> float:
        end = self.ended_at or now or utcnow()
        return max(0.0, hours_between(self.started_at, end))

    def bac_now(self, customer: Optional[Customer], now: Optional[datetime] = None) -> float:
        if customer is None:
            return 0.0
        return calculations.estimate_bac(self.drinks, customer.weight_kg, customer.sex, now=now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "join_token": self.join_token,
            "status": self.status,
            "is_active": self.is_active,
            "started_at": to_iso(self.started_at),
            "ended_at": to_iso(self.ended_at),
            "drinks": [d.to_dict() for d in self.drinks],
        }


@dataclass(frozen=True)
class Alert:
    id: int
    contact: str
    kind: str
    customer_name: str
    body: str
    created_at: datetime
    session_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Alert":
        kind = str(_required(row, "kind"))
        if kind not in ALERT_KINDS:
            raise ValueError(f"unknown alert kind: {kind}")
        return cls(
            id=int(row["id"]),
            contact=str(_required(row, "contact")),
            kind=kind,
            customer_name=str(_required(row, "customer_name")),
            body=str(_required(row, "body")),
            created_at=_required_ts(row, "created_at"),
            session_id=row["session_id"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contact": self.contact,
            "kind": self.kind,
            "customer_name": self.customer_name,
            "body": self.body,
            "session_id": self.session_id,
            "created_at": to_iso(self.created_at),
        }

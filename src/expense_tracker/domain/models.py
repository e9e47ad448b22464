from __future__ import annotations

from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .normalize import as_text, coerce_cost

# Draft attribute -> backend field name
WIRE_NAMES: Dict[str, str] = {
    "type": "type",
    "date": "date",
    "vendor": "vendor",
    "location": "location",
    "trip_name": "tripName",
    "cost": "cost",
    "comments": "comments",
}

EDITABLE_FIELDS: Tuple[str, ...] = tuple(WIRE_NAMES)

# Fields whose presence in an OCR response counts as a recognized receipt
RECOGNIZED_OCR_FIELDS: Tuple[str, ...] = ("type", "date", "cost")


@dataclass(frozen=True)
class User:
    id: str
    username: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "username": self.username}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["User"]:
        uid = data.get("id")
        name = data.get("username")
        if uid in (None, "") or not name:
            return None
        return cls(id=str(uid), username=str(name))


@dataclass(frozen=True)
class Trip:
    id: Optional[str]
    name: str
    description: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Trip":
        raw_id = data.get("id")
        return cls(
            id=None if raw_id in (None, "") else str(raw_id),
            name=as_text(data.get("name")),
            description=data.get("description") or None,
            created_at=data.get("createdAt"),
        )


@dataclass(frozen=True)
class Expense:
    id: Optional[str]
    type: str
    date: str
    vendor: str
    location: str
    trip_name: str
    cost: Decimal
    comments: str = ""
    receipt_path: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Expense":
        raw_id = data.get("id")
        raw_date = as_text(data.get("date"))
        return cls(
            id=None if raw_id in (None, "") else str(raw_id),
            type=as_text(data.get("type")),
            # Backends serialising dates as timestamps send "2024-01-05T00:00:00.000Z"
            date=raw_date[:10] if len(raw_date) > 10 and raw_date[10] == "T" else raw_date,
            vendor=as_text(data.get("vendor")),
            location=as_text(data.get("location")),
            trip_name=as_text(data.get("tripName")),
            cost=coerce_cost(data.get("cost")),
            comments=as_text(data.get("comments")),
            receipt_path=data.get("receiptPath") or None,
        )


@dataclass
class Draft:
    """Editable, never-persisted projection of an Expense. Values are kept as entered."""

    id: Optional[str] = None
    type: str = ""
    date: str = ""
    vendor: str = ""
    location: str = ""
    trip_name: str = ""
    cost: str = ""
    comments: str = ""

    @property
    def is_new(self) -> bool:
        return not self.id

    def is_blank(self) -> bool:
        return self.id is None and not any(getattr(self, name) for name in EDITABLE_FIELDS)

    def copy(self) -> "Draft":
        return replace(self)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_expense(cls, expense: Expense) -> "Draft":
        return cls(
            id=expense.id,
            type=expense.type,
            date=expense.date,
            vendor=expense.vendor,
            location=expense.location,
            trip_name=expense.trip_name,
            cost=format(expense.cost, "f"),
            comments=expense.comments,
        )


def expenses_from_api(payload: Any) -> List[Expense]:
    if not isinstance(payload, list):
        return []
    return [Expense.from_api(item) for item in payload if isinstance(item, dict)]


def trips_from_api(payload: Any) -> List[Trip]:
    if not isinstance(payload, list):
        return []
    return [Trip.from_api(item) for item in payload if isinstance(item, dict)]

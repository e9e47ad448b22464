from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .models import Draft
from .normalize import is_iso_date, parse_cost


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


def validate_draft(draft: Draft) -> List[FieldError]:
    """Check a draft before submit and report every violated rule.

    Trip name is only required for new expenses; an existing expense keeps
    the trip it was filed under.
    """
    errors: List[FieldError] = []

    if draft.is_new and not draft.trip_name.strip():
        errors.append(FieldError("trip_name", "Trip Name is required."))

    if not draft.type.strip():
        errors.append(FieldError("type", "Type is required."))

    date = draft.date.strip()
    if not date:
        errors.append(FieldError("date", "Date is required."))
    elif not is_iso_date(date):
        errors.append(FieldError("date", "Date must be in YYYY-MM-DD format."))

    if not draft.vendor.strip():
        errors.append(FieldError("vendor", "Vendor is required."))

    if not draft.location.strip():
        errors.append(FieldError("location", "Location is required."))

    cost = draft.cost.strip()
    if not cost:
        errors.append(FieldError("cost", "Cost is required."))
    else:
        parsed = parse_cost(cost)
        if parsed is None or parsed <= 0:
            errors.append(FieldError("cost", "Cost must be a positive number."))

    return errors


def validate_trip_name(name: str) -> List[FieldError]:
    if not (name or "").strip():
        return [FieldError("name", "Trip name cannot be empty.")]
    return []


def validate_password(password: str) -> List[FieldError]:
    if len(password or "") < 6:
        return [FieldError("password", "Password must be at least 6 characters long.")]
    return []

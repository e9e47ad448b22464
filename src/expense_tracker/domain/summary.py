"""Totals shown on the dashboard and the per-type expense chart."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Tuple

from .models import Expense
from .normalize import CENTS


@dataclass
class ExpenseSummary:
    total_cost: Decimal = Decimal("0.00")
    count: int = 0
    by_type: List[Tuple[str, Decimal]] = field(default_factory=list)
    by_trip: List[Tuple[str, Decimal]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "total_cost": str(self.total_cost),
            "count": self.count,
            "by_type": {k: str(v) for k, v in self.by_type},
            "by_trip": {k: str(v) for k, v in self.by_trip},
        }


def _ranked(totals: Dict[str, Decimal]) -> List[Tuple[str, Decimal]]:
    return sorted(
        ((k, v.quantize(CENTS, rounding=ROUND_HALF_UP)) for k, v in totals.items()),
        key=lambda kv: (-kv[1], kv[0]),
    )


def summarize(expenses: Iterable[Expense]) -> ExpenseSummary:
    total = Decimal("0")
    count = 0
    by_type: Dict[str, Decimal] = {}
    by_trip: Dict[str, Decimal] = {}
    for e in expenses:
        count += 1
        total += e.cost
        type_key = e.type or "Uncategorized"
        trip_key = e.trip_name or "Uncategorized"
        by_type[type_key] = by_type.get(type_key, Decimal("0")) + e.cost
        by_trip[trip_key] = by_trip.get(trip_key, Decimal("0")) + e.cost
    return ExpenseSummary(
        total_cost=total.quantize(CENTS, rounding=ROUND_HALF_UP),
        count=count,
        by_type=_ranked(by_type),
        by_trip=_ranked(by_trip),
    )

"""Client-side list model for expenses and trips."""

from __future__ import annotations

from typing import List, Optional

from ..api.client import ExpenseApiClient
from ..domain.models import Expense, Trip
from ..domain.summary import ExpenseSummary, summarize
from ..domain.validation import validate_trip_name
from ..errors import NotFoundError, ValidationError
from ..logging import get_logger

LOG = get_logger("ledger")


class ExpenseLedger:
    """Holds the last fetched expense list (optionally scoped to one trip) and the trip list.

    Expenses join trips by name, so scoping filters on ``Expense.trip_name``.
    """

    def __init__(self, client: ExpenseApiClient) -> None:
        self.client = client
        self.trip_name: Optional[str] = None
        self.expenses: List[Expense] = []
        self.trips: List[Trip] = []

    def refresh(self, trip_name: Optional[str] = None) -> List[Expense]:
        expenses = self.client.list_expenses()
        if trip_name:
            expenses = [e for e in expenses if e.trip_name == trip_name]
        self.trip_name = trip_name or None
        self.expenses = expenses
        LOG.info(f"Loaded {len(expenses)} expense(s)" + (f" for trip '{trip_name}'" if trip_name else ""))
        return expenses

    def get_expense(self, expense_id: str) -> Expense:
        return self.client.get_expense(expense_id)

    def delete_expense(self, expense_id: str) -> None:
        try:
            self.client.delete_expense(expense_id)
            LOG.info(f"Deleted expense {expense_id}")
        except NotFoundError:
            LOG.warning(f"Expense {expense_id} was already removed; reloading list")
            self.refresh(self.trip_name)
            raise
        self.refresh(self.trip_name)

    def summary(self) -> ExpenseSummary:
        return summarize(self.expenses)

    # ---------- trips ----------
    def refresh_trips(self) -> List[Trip]:
        self.trips = self.client.list_trips()
        return self.trips

    def add_trip(self, name: str, description: Optional[str] = None) -> Trip:
        errors = validate_trip_name(name)
        if errors:
            raise ValidationError([e.message for e in errors])
        trip = self.client.create_trip(name.strip(), (description or "").strip() or None)
        self.trips.append(trip)
        LOG.info(f"Added trip '{trip.name}' (id={trip.id})")
        return trip

    def delete_trip(self, trip_id: str) -> None:
        try:
            self.client.delete_trip(trip_id)
        except NotFoundError:
            LOG.warning(f"Trip {trip_id} was already removed; reloading trips")
            self.refresh_trips()
            raise
        self.trips = [t for t in self.trips if t.id != str(trip_id)]
        LOG.info(f"Deleted trip {trip_id}")

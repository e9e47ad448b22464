"""Expense/trip records, draft validation, value normalization and summaries."""

from .models import Draft, Expense, Trip, User
from .summary import ExpenseSummary, summarize
from .validation import FieldError, validate_draft

__all__ = [
    "Draft",
    "Expense",
    "ExpenseSummary",
    "FieldError",
    "Trip",
    "User",
    "summarize",
    "validate_draft",
]

"""Draft workflow and the list model it refreshes."""

from .draft import DraftState, ExpenseDraftWorkflow, Notice, SubmitResult
from .ledger import ExpenseLedger

__all__ = [
    "DraftState",
    "ExpenseDraftWorkflow",
    "ExpenseLedger",
    "Notice",
    "SubmitResult",
]

"""REST client for the expense-tracker backend."""

from .client import ExpenseApiClient, draft_to_fields, guess_mime, receipt_url

__all__ = ["ExpenseApiClient", "draft_to_fields", "guess_mime", "receipt_url"]

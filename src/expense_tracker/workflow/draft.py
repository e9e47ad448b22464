"""Receipt-to-expense draft workflow.

States::

    EMPTY --upload_receipt--> UPLOADING --> EXTRACTED --edit_field--> EDITING
    EMPTY --begin_edit / begin_manual--> EDITING
    EXTRACTED|EDITING --submit--> SUBMITTING --ok--> EMPTY
                                  SUBMITTING --failure--> EDITING
    any --cancel--> EMPTY

Only ``upload_receipt`` and ``submit`` talk to the backend. Each instance
runs at most one of them at a time; overlapping calls raise
``WorkflowBusyError``.
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Mapping, Optional

from ..api.client import ExpenseApiClient, draft_to_fields, guess_mime
from ..domain.models import EDITABLE_FIELDS, RECOGNIZED_OCR_FIELDS, Draft, Expense
from ..domain.normalize import as_text, format_cost, normalize_date_iso, parse_cost
from ..domain.validation import FieldError, validate_draft
from ..errors import CollaboratorError, ExpenseTrackerError, ValidationError, WorkflowBusyError
from ..logging import get_logger
from .ledger import ExpenseLedger

LOG = get_logger("draft-workflow")

ACCEPTED_PDF_TYPE = "application/pdf"
SAVE_FAILED_MESSAGE = "Failed to save expense."


class DraftState(str, Enum):
    EMPTY = "empty"
    UPLOADING = "uploading"
    EXTRACTED = "extracted"
    EDITING = "editing"
    SUBMITTING = "submitting"


@dataclass(frozen=True)
class Notice:
    level: str  # success | warning | error
    message: str
    error: Optional[ExpenseTrackerError] = None


@dataclass(frozen=True)
class SubmitResult:
    expense: Expense
    trip_name: str
    created: bool


def is_accepted_receipt_type(content_type: str) -> bool:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    return ct.startswith("image/") or ct == ACCEPTED_PDF_TYPE


class ExpenseDraftWorkflow:
    def __init__(
        self,
        client: ExpenseApiClient,
        ledger: Optional[ExpenseLedger] = None,
        *,
        ocr_method: str = "builtin",
        ocr_model: Optional[str] = None,
        default_trip_name: str = "",
    ) -> None:
        self.client = client
        self.ledger = ledger
        self.ocr_method = ocr_method
        self.ocr_model = ocr_model
        self.default_trip_name = default_trip_name
        self.state = DraftState.EMPTY
        self.draft = Draft()
        self.receipt_path: Optional[str] = None
        self.notice: Optional[Notice] = None
        self._inflight = threading.Lock()

    @contextmanager
    def _exclusive(self, action: str) -> Iterator[None]:
        if not self._inflight.acquire(blocking=False):
            raise WorkflowBusyError(f"Cannot {action} while another request is in progress.")
        try:
            yield
        finally:
            self._inflight.release()

    @property
    def busy(self) -> bool:
        return self._inflight.locked()

    def _reset(self) -> None:
        self.state = DraftState.EMPTY
        self.draft = Draft()
        self.receipt_path = None

    def _blank_draft(self) -> Draft:
        return Draft(trip_name=self.default_trip_name)

    # ---------- entry points ----------
    def upload_receipt(self, path: str, content_type: Optional[str] = None) -> Notice:
        ctype = content_type or guess_mime(path)
        if not is_accepted_receipt_type(ctype):
            raise ValidationError("Invalid file type. Please upload an image or PDF.")
        if not os.path.isfile(path):
            raise ValidationError(f"Receipt file not found: {path}")

        with self._exclusive("upload a receipt"):
            self.state = DraftState.UPLOADING
            self.draft = self._blank_draft()
            self.receipt_path = path
            LOG.info(f"Processing receipt {os.path.basename(path)} ({ctype})")
            try:
                result = self.client.process_receipt(
                    path, content_type=ctype, ocr_method=self.ocr_method, model=self.ocr_model
                )
            except (ExpenseTrackerError, OSError) as e:
                err = e if isinstance(e, ExpenseTrackerError) else CollaboratorError(f"Could not read receipt: {e}")
                LOG.error(f"Receipt processing failed: {err}")
                self.state = DraftState.EXTRACTED
                self.notice = Notice("error", f"Could not process receipt. Please fill manually. ({err})", err)
                return self.notice

            if _has_recognized_fields(result):
                self.draft = self._draft_from_ocr(result)
                self.notice = Notice("success", "Receipt processed successfully! Please review.")
            else:
                LOG.warning("OCR returned no usable fields")
                self.notice = Notice("warning", "Could not extract details. Please fill manually.")
            self.state = DraftState.EXTRACTED
            return self.notice

    def begin_edit(self, expense: Expense) -> None:
        if self.busy:
            raise WorkflowBusyError("Cannot start editing while another request is in progress.")
        self.draft = Draft.from_expense(expense)
        self.receipt_path = None
        self.notice = None
        self.state = DraftState.EDITING

    def begin_manual(self) -> None:
        """Start a draft without a receipt scan."""
        if self.busy:
            raise WorkflowBusyError("Cannot start a draft while another request is in progress.")
        self.draft = self._blank_draft()
        self.receipt_path = None
        self.notice = None
        self.state = DraftState.EDITING

    def attach_receipt(self, path: str) -> None:
        """Attach a receipt file to the current draft without running OCR."""
        if self.state not in (DraftState.EXTRACTED, DraftState.EDITING):
            raise ValidationError("There is no draft to attach a receipt to.")
        if not is_accepted_receipt_type(guess_mime(path)):
            raise ValidationError("Invalid file type. Please upload an image or PDF.")
        if not os.path.isfile(path):
            raise ValidationError(f"Receipt file not found: {path}")
        self.receipt_path = path

    # ---------- local edits ----------
    def edit_field(self, name: str, value: Any) -> None:
        if self.state not in (DraftState.EXTRACTED, DraftState.EDITING):
            raise ValidationError(f"Cannot edit while the draft is {self.state.value}.")
        if name not in EDITABLE_FIELDS:
            raise ValidationError(f"Unknown field '{name}'. Editable fields: {', '.join(EDITABLE_FIELDS)}")
        setattr(self.draft, name, as_text(value) if value is not None else "")
        self.state = DraftState.EDITING

    def validate(self) -> List[FieldError]:
        return validate_draft(self.draft)

    def cancel(self) -> None:
        self._reset()
        self.notice = None

    # ---------- submit ----------
    def submit(self) -> SubmitResult:
        if self.busy:
            raise WorkflowBusyError("Cannot submit while another request is in progress.")
        if self.state not in (DraftState.EXTRACTED, DraftState.EDITING):
            raise ValidationError("There is no draft to submit.")
        errors = self.validate()
        if errors:
            messages = [e.message for e in errors]
            self.notice = Notice("error", " ".join(messages))
            raise ValidationError(messages)

        with self._exclusive("submit"):
            draft = self.draft.copy()
            cost = parse_cost(draft.cost)
            fields = draft_to_fields(draft, format_cost(cost))
            created = draft.is_new
            self.state = DraftState.SUBMITTING
            try:
                if created:
                    expense = self.client.create_expense(fields, self.receipt_path)
                else:
                    expense = self.client.update_expense(draft.id, fields, self.receipt_path)
            except (ExpenseTrackerError, OSError) as e:
                err = e if isinstance(e, ExpenseTrackerError) else CollaboratorError(f"Could not read receipt: {e}")
                self.state = DraftState.EDITING
                self.notice = Notice("error", str(err) or SAVE_FAILED_MESSAGE, err)
                LOG.error(f"Saving expense failed: {self.notice.message}")
                if err is e:
                    raise
                raise err from e

            trip_name = draft.trip_name.strip() or expense.trip_name
            LOG.info(f"{'Created' if created else 'Updated'} expense {expense.id} for trip '{trip_name}'")
            self._reset()
            self.notice = Notice("success", f"Expense {'added' if created else 'updated'} successfully")

        if self.ledger is not None:
            try:
                self.ledger.refresh(trip_name or None)
            except ExpenseTrackerError as e:
                LOG.warning(f"Expense saved but reloading the list failed: {e}")
                self.notice = Notice("warning", f"Expense saved, but the list could not be reloaded: {e}", e)
        return SubmitResult(expense=expense, trip_name=trip_name, created=created)

    # ---------- helpers ----------
    def _draft_from_ocr(self, result: Mapping[str, Any]) -> Draft:
        draft = self._blank_draft()
        for name in ("type", "vendor", "location", "comments", "cost"):
            setattr(draft, name, as_text(result.get(name)))
        raw_date = as_text(result.get("date"))
        draft.date = normalize_date_iso(raw_date) or raw_date
        return draft


def _has_recognized_fields(result: Mapping[str, Any]) -> bool:
    return any(as_text(result.get(name)) for name in RECOGNIZED_OCR_FIELDS)

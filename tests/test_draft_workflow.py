from __future__ import annotations

from decimal import Decimal

import pytest
import requests

from conftest import multipart_field
from expense_tracker.domain.models import Draft, Expense, User
from expense_tracker.errors import (
    AuthenticationError,
    CollaboratorError,
    ValidationError,
    WorkflowBusyError,
)
from expense_tracker.workflow import DraftState, ExpenseDraftWorkflow, ExpenseLedger


@pytest.fixture
def ledger(client):
    return ExpenseLedger(client)


@pytest.fixture
def workflow(client, ledger, store):
    store.set_session("tok", User(id="1", username="ada"))
    return ExpenseDraftWorkflow(client, ledger)


def _fill(wf: ExpenseDraftWorkflow, **values):
    base = dict(type="Meals", date="2024-03-01", vendor="Cafe", location="Berlin", trip_name="Berlin", cost="12.50")
    base.update(values)
    for name, value in base.items():
        wf.edit_field(name, value)


def test_rejects_non_image_files_without_calling_ocr(workflow, backend, tmp_path):
    doc = tmp_path / "notes.txt"
    doc.write_text("hello")
    before = workflow.draft.copy()

    with pytest.raises(ValidationError):
        workflow.upload_receipt(str(doc))
    with pytest.raises(ValidationError):
        workflow.upload_receipt(str(doc), content_type="application/zip")

    assert backend.calls("POST", "/ocr/process") == []
    assert workflow.state is DraftState.EMPTY
    assert workflow.draft == before


def test_pdf_receipts_are_accepted(workflow, backend, tmp_path):
    pdf = tmp_path / "r.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    backend.route("POST", "/ocr/process", (200, {"type": "Hotel"}))

    notice = workflow.upload_receipt(str(pdf))

    assert notice.level == "success"
    assert workflow.draft.type == "Hotel"


def test_partial_ocr_result_populates_only_returned_fields(workflow, backend, receipt_file):
    backend.route("POST", "/ocr/process", (200, {"cost": "12.50"}))

    notice = workflow.upload_receipt(str(receipt_file))

    assert workflow.state is DraftState.EXTRACTED
    assert notice.level == "success"
    assert workflow.draft == Draft(cost="12.50")


def test_ocr_fields_are_copied_and_trip_name_left_for_user(workflow, backend, receipt_file):
    backend.route(
        "POST",
        "/ocr/process",
        (200, {"type": "Taxi", "date": "05.02.2024", "vendor": "City Cab", "location": "Paris", "cost": 23.4}),
    )

    workflow.upload_receipt(str(receipt_file))

    d = workflow.draft
    assert (d.type, d.date, d.vendor, d.location, d.cost) == ("Taxi", "2024-02-05", "City Cab", "Paris", "23.4")
    assert d.trip_name == ""
    assert d.comments == ""


def test_pinned_trip_name_prefills_draft(client, ledger, store, backend, receipt_file):
    store.set_session("tok", User(id="1", username="ada"))
    wf = ExpenseDraftWorkflow(client, ledger, default_trip_name="Rome")
    backend.route("POST", "/ocr/process", (200, {"cost": "3"}))

    wf.upload_receipt(str(receipt_file))

    assert wf.draft.trip_name == "Rome"


def test_empty_ocr_result_is_a_warning(workflow, backend, receipt_file):
    backend.route("POST", "/ocr/process", (200, {"vendor": "Somewhere", "comments": ""}))

    notice = workflow.upload_receipt(str(receipt_file))

    assert notice.level == "warning"
    assert notice.error is None
    assert workflow.state is DraftState.EXTRACTED
    assert workflow.draft.is_blank()


def test_failed_ocr_call_is_an_error_but_allows_manual_entry(workflow, backend, receipt_file):
    backend.route("POST", "/ocr/process", requests.ConnectionError("network down"))

    notice = workflow.upload_receipt(str(receipt_file))

    assert notice.level == "error"
    assert isinstance(notice.error, CollaboratorError)
    assert workflow.state is DraftState.EXTRACTED
    assert workflow.draft.is_blank()

    workflow.edit_field("vendor", "Typed by hand")
    assert workflow.state is DraftState.EDITING


def test_ocr_auth_failure_clears_session(workflow, backend, store, receipt_file):
    backend.route("POST", "/ocr/process", (401, {"message": "expired"}))

    notice = workflow.upload_receipt(str(receipt_file))

    assert notice.level == "error"
    assert isinstance(notice.error, AuthenticationError)
    assert not store.is_authenticated
    assert workflow.state is DraftState.EXTRACTED


def test_edit_field_requires_an_open_draft(workflow):
    with pytest.raises(ValidationError):
        workflow.edit_field("vendor", "x")


def test_edit_field_rejects_unknown_fields(workflow):
    workflow.begin_manual()
    with pytest.raises(ValidationError):
        workflow.edit_field("id", "99")


def test_invalid_draft_does_not_submit_or_change_state(workflow, backend):
    workflow.begin_manual()
    workflow.edit_field("vendor", "Cafe")

    with pytest.raises(ValidationError) as exc:
        workflow.submit()

    assert "Trip Name is required." in exc.value.errors
    assert len(exc.value.errors) == 5
    assert workflow.state is DraftState.EDITING
    assert backend.requests == []


def test_submit_new_draft_creates_and_refreshes_trip_list(workflow, backend, receipt_file):
    backend.route("POST", "/ocr/process", (200, {"cost": "12.50"}))
    backend.route(
        "POST",
        "/expenses",
        (201, {"expense": {"id": 7, "type": "Meals", "date": "2024-03-01", "vendor": "Cafe",
                           "location": "Berlin", "tripName": "Berlin", "cost": "12.5"}}),
    )
    backend.route(
        "GET",
        "/expenses",
        (200, [
            {"id": 7, "tripName": "Berlin", "cost": "12.5", "type": "Meals"},
            {"id": 8, "tripName": "Paris", "cost": "3", "type": "Taxi"},
        ]),
    )
    workflow.upload_receipt(str(receipt_file))
    _fill(workflow, cost=" 12.50 ")

    result = workflow.submit()

    assert result.created and result.trip_name == "Berlin"
    assert workflow.state is DraftState.EMPTY
    assert workflow.draft == Draft()
    assert workflow.receipt_path is None
    sent = backend.calls("POST", "/expenses")[0]
    assert multipart_field(sent, "cost") == "12.50"
    assert multipart_field(sent, "tripName") == "Berlin"
    assert b'filename="receipt.jpg"' in sent.body
    assert [e.id for e in workflow.ledger.expenses] == ["7"]
    assert workflow.ledger.trip_name == "Berlin"


def test_submit_with_identifier_updates(workflow, backend):
    backend.route(
        "PUT",
        "/expenses/42",
        (200, {"expense": {"id": 42, "type": "Meals", "tripName": "Berlin", "cost": "30"}}),
    )
    backend.route("GET", "/expenses", (200, []))
    existing = Expense(
        id="42", type="Meals", date="2024-03-01", vendor="Cafe", location="Berlin",
        trip_name="", cost=Decimal("25"),
    )
    workflow.begin_edit(existing)
    workflow.edit_field("cost", "30")

    result = workflow.submit()

    assert not result.created
    assert backend.calls("POST", "/expenses") == []
    sent = backend.calls("PUT", "/expenses/42")[0]
    assert multipart_field(sent, "tripName") is None
    assert result.trip_name == "Berlin"
    assert workflow.state is DraftState.EMPTY


def test_submit_failure_keeps_draft_and_reports_message(workflow, backend):
    backend.route("POST", "/expenses", (400, {"errors": [{"msg": "Invalid vendor."}]}))
    workflow.begin_manual()
    _fill(workflow)
    draft_before = workflow.draft.copy()

    with pytest.raises(CollaboratorError):
        workflow.submit()

    assert workflow.state is DraftState.EDITING
    assert workflow.draft == draft_before
    assert workflow.notice.level == "error"
    assert workflow.notice.message == "Invalid vendor."


def test_submit_auth_failure_clears_session(workflow, backend, store):
    backend.route("POST", "/expenses", (403, {}))
    workflow.begin_manual()
    _fill(workflow)

    with pytest.raises(AuthenticationError):
        workflow.submit()

    assert not store.is_authenticated
    assert workflow.state is DraftState.EDITING


def test_refresh_failure_after_save_is_only_a_warning(workflow, backend):
    backend.route("POST", "/expenses", (201, {"expense": {"id": 1, "tripName": "Berlin", "cost": "1"}}))
    backend.route("GET", "/expenses", (500, {"message": "boom"}))
    workflow.begin_manual()
    _fill(workflow)

    result = workflow.submit()

    assert result.expense.id == "1"
    assert workflow.state is DraftState.EMPTY
    assert workflow.notice.level == "warning"


def test_cancel_discards_draft(workflow, backend, receipt_file):
    backend.route("POST", "/ocr/process", (200, {"cost": "5"}))
    workflow.upload_receipt(str(receipt_file))
    workflow.edit_field("vendor", "x")

    workflow.cancel()

    assert workflow.state is DraftState.EMPTY
    assert workflow.draft == Draft()
    assert workflow.receipt_path is None


def test_overlapping_upload_is_refused(workflow, backend, receipt_file):
    seen = {}

    def reenter(_request):
        with pytest.raises(WorkflowBusyError):
            workflow.upload_receipt(str(receipt_file))
        seen["busy"] = workflow.busy
        return 200, {"cost": "1"}

    backend.route("POST", "/ocr/process", reenter)

    workflow.upload_receipt(str(receipt_file))

    assert seen["busy"] is True
    assert not workflow.busy
    assert len(backend.calls("POST", "/ocr/process")) == 1


def test_second_submit_while_saving_is_refused(workflow, backend):
    seen = {}

    def create(_request):
        seen["state"] = workflow.state
        with pytest.raises(WorkflowBusyError):
            workflow.submit()
        return 201, {"expense": {"id": 8, "tripName": "Berlin", "cost": "12.50"}}

    backend.route("POST", "/expenses", create)
    backend.route("GET", "/expenses", (200, []))
    workflow.begin_manual()
    _fill(workflow)

    workflow.submit()

    assert seen["state"] is DraftState.SUBMITTING
    assert len(backend.calls("POST", "/expenses")) == 1


def test_created_expense_round_trips_through_list(workflow, backend):
    stored = []

    def create(request):
        fields = {k: multipart_field(request, k) for k in
                  ("type", "date", "vendor", "location", "tripName", "cost", "comments")}
        record = {"id": len(stored) + 1, **fields}
        stored.append(record)
        return 201, {"expense": record}

    backend.route("POST", "/expenses", create)
    backend.route("GET", "/expenses", lambda _r: (200, stored))
    workflow.begin_manual()
    _fill(workflow, cost="19.90", comments="team lunch")

    workflow.submit()

    [fetched] = workflow.ledger.expenses
    assert (fetched.type, fetched.date, fetched.vendor, fetched.location, fetched.trip_name, fetched.comments) == (
        "Meals", "2024-03-01", "Cafe", "Berlin", "Berlin", "team lunch",
    )
    assert fetched.cost == Decimal("19.90")

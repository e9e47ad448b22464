from __future__ import annotations

import argparse
import getpass
import json
import os
import sys
from dataclasses import asdict
from typing import Dict, List, Optional, Sequence

from ..api.client import ExpenseApiClient
from ..config import ClientConfig, load_client_config
from ..domain.models import WIRE_NAMES, Expense, Trip
from ..domain.validation import validate_password
from ..errors import AuthenticationError, ExpenseTrackerError, ValidationError
from ..logging import get_logger
from ..paths import expand_abs
from ..session import SessionStore
from ..workflow import ExpenseDraftWorkflow, ExpenseLedger, Notice

LOG = get_logger("cli-main")

# Accept both draft attribute names and backend field names on the command line
_FIELD_ALIASES: Dict[str, str] = {**{k: k for k in WIRE_NAMES}, **{v: k for k, v in WIRE_NAMES.items()}}


class _Context:
    def __init__(self, ns: argparse.Namespace) -> None:
        config = load_client_config(os.getcwd())
        self.config = ClientConfig(
            base_url=(ns.base_url or config.base_url).rstrip("/"),
            timeout=ns.timeout or config.timeout,
            ocr_method=getattr(ns, "ocr_method", None) or config.ocr_method,
            ocr_model=getattr(ns, "ocr_model", None) or config.ocr_model,
            session_file=expand_abs(ns.session_file) if ns.session_file else config.session_file,
        )
        self.store = SessionStore(self.config.session_file)
        self.client = ExpenseApiClient(self.config.base_url, self.store, timeout=self.config.timeout)
        self.ledger = ExpenseLedger(self.client)

    def workflow(self, trip_name: str = "") -> ExpenseDraftWorkflow:
        return ExpenseDraftWorkflow(
            self.client,
            self.ledger,
            ocr_method=self.config.ocr_method,
            ocr_model=self.config.ocr_model,
            default_trip_name=trip_name,
        )


def _expense_json(e: Expense) -> Dict[str, object]:
    out = asdict(e)
    out["cost"] = str(e.cost)
    return out


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _parse_assignments(items: Optional[List[str]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in items or []:
        if "=" not in item:
            raise ValidationError(f"Expected field=value, got '{item}'.")
        key, value = item.split("=", 1)
        name = _FIELD_ALIASES.get(key.strip())
        if not name:
            raise ValidationError(f"Unknown field '{key.strip()}'. Use one of: {', '.join(WIRE_NAMES)}")
        out[name] = value
    return out


def _log_notice(notice: Optional[Notice]) -> None:
    if notice is None:
        return
    if notice.level == "error":
        LOG.error(notice.message)
    elif notice.level == "warning":
        LOG.warning(notice.message)
    else:
        LOG.info(notice.message)


def _finish_draft(ctx: _Context, wf: ExpenseDraftWorkflow, assignments: Dict[str, str]) -> int:
    for name, value in assignments.items():
        wf.edit_field(name, value)
    errors = wf.validate()
    if errors:
        for err in errors:
            LOG.error(f"{err.field}: {err.message}")
        _print_json({"draft": wf.draft.as_dict(), "errors": [e.message for e in errors]})
        return 2
    result = wf.submit()
    _log_notice(wf.notice)
    _print_json(
        {
            "created": result.created,
            "expense": _expense_json(result.expense),
            "trip_expenses": len(ctx.ledger.expenses),
        }
    )
    return 0


# ---------- handlers ----------
def _login(ns: argparse.Namespace) -> int:
    ctx = _Context(ns)
    password = ns.password or getpass.getpass("Password: ")
    user = ctx.client.login(ns.username, password)
    LOG.info(f"Logged in as {user.username}")
    return 0


def _register(ns: argparse.Namespace) -> int:
    password = ns.password or getpass.getpass("Password: ")
    errors = validate_password(password)
    if errors:
        raise ValidationError([e.message for e in errors])
    ctx = _Context(ns)
    ctx.client.register(ns.username, password)
    LOG.info("Registration successful! Please log in.")
    return 0


def _logout(ns: argparse.Namespace) -> int:
    _Context(ns).client.logout()
    LOG.info("Logged out successfully.")
    return 0


def _whoami(ns: argparse.Namespace) -> int:
    token, user = _Context(ns).store.get_session()
    if not token or user is None:
        LOG.info("Not logged in.")
        return 3
    _print_json(user.to_dict())
    return 0


def _trip_json(t: Trip) -> Dict[str, object]:
    return asdict(t)


def _trips_list(ns: argparse.Namespace) -> int:
    trips = _Context(ns).ledger.refresh_trips()
    _print_json([_trip_json(t) for t in trips])
    return 0


def _trips_add(ns: argparse.Namespace) -> int:
    trip = _Context(ns).ledger.add_trip(ns.name, ns.description)
    _print_json(_trip_json(trip))
    return 0


def _trips_delete(ns: argparse.Namespace) -> int:
    _Context(ns).ledger.delete_trip(ns.id)
    return 0


def _expenses_list(ns: argparse.Namespace) -> int:
    expenses = _Context(ns).ledger.refresh(ns.trip)
    _print_json([_expense_json(e) for e in expenses])
    return 0


def _expenses_show(ns: argparse.Namespace) -> int:
    _print_json(_expense_json(_Context(ns).ledger.get_expense(ns.id)))
    return 0


def _expenses_receipt(ns: argparse.Namespace) -> int:
    ctx = _Context(ns)
    expense = ctx.ledger.get_expense(ns.id)
    print(ctx.client.download_receipt(expense, expand_abs(ns.output) if ns.output else None))
    return 0


def _expenses_delete(ns: argparse.Namespace) -> int:
    ctx = _Context(ns)
    ctx.ledger.trip_name = ns.trip
    ctx.ledger.delete_expense(ns.id)
    LOG.info(f"{len(ctx.ledger.expenses)} expense(s) remain")
    return 0


def _scan(ns: argparse.Namespace) -> int:
    ctx = _Context(ns)
    wf = ctx.workflow(ns.trip or "")
    notice = wf.upload_receipt(ns.receipt, content_type=ns.content_type)
    _log_notice(notice)
    if isinstance(notice.error, AuthenticationError):
        return 3
    return _finish_draft(ctx, wf, _parse_assignments(ns.set))


def _add(ns: argparse.Namespace) -> int:
    ctx = _Context(ns)
    wf = ctx.workflow(ns.trip or "")
    wf.begin_manual()
    if ns.receipt:
        wf.attach_receipt(ns.receipt)
    return _finish_draft(ctx, wf, _parse_assignments(ns.set))


def _edit(ns: argparse.Namespace) -> int:
    ctx = _Context(ns)
    wf = ctx.workflow()
    wf.begin_edit(ctx.ledger.get_expense(ns.id))
    if ns.receipt:
        wf.attach_receipt(ns.receipt)
    return _finish_draft(ctx, wf, _parse_assignments(ns.set))


def _summary(ns: argparse.Namespace) -> int:
    ctx = _Context(ns)
    ctx.ledger.refresh(ns.trip)
    _print_json(ctx.ledger.summary().as_dict())
    return 0


def _export(ns: argparse.Namespace) -> int:
    path = _Context(ns).client.export_expenses(ns.trip, expand_abs(ns.output) if ns.output else None)
    print(path)
    return 0


def _settings(ns: argparse.Namespace) -> int:
    message = _Context(ns).client.update_env_settings(
        {
            "GEMINI_API_KEY": ns.gemini_key or "",
            "OPENAI_API_KEY": ns.openai_key or "",
            "CLAUDE_API_KEY": ns.claude_key or "",
            "OPENROUTER_API_KEY": ns.openrouter_key or "",
        }
    )
    LOG.info(message)
    return 0


# ---------- parser ----------
def _add_draft_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--set",
        action="append",
        metavar="FIELD=VALUE",
        help="Set a draft field before submitting (type, date, vendor, location, tripName, cost, comments)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expense-tracker",
        description="Record trips and expenses against the expense-tracker backend.",
    )
    parser.add_argument("--base-url", help="Override API base URL (defaults to EXPENSE_API_URL / .env)")
    parser.add_argument("--timeout", type=float, help="HTTP timeout in seconds")
    parser.add_argument("--session-file", help="Where the login session is kept")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Log in and store the session token")
    login.add_argument("--username", required=True)
    login.add_argument("--password", help="Prompted for when omitted")
    login.set_defaults(handler=_login)

    register = subparsers.add_parser("register", help="Create a new account")
    register.add_argument("--username", required=True)
    register.add_argument("--password", help="Prompted for when omitted")
    register.set_defaults(handler=_register)

    subparsers.add_parser("logout", help="Forget the stored session").set_defaults(handler=_logout)
    subparsers.add_parser("whoami", help="Show the logged-in user").set_defaults(handler=_whoami)

    trips = subparsers.add_parser("trips", help="Manage trips")
    trips_sub = trips.add_subparsers(dest="trips_command", required=True)
    trips_sub.add_parser("list", help="List trips").set_defaults(handler=_trips_list)
    trips_add = trips_sub.add_parser("add", help="Add a trip")
    trips_add.add_argument("--name", required=True)
    trips_add.add_argument("--description")
    trips_add.set_defaults(handler=_trips_add)
    trips_del = trips_sub.add_parser("delete", help="Delete a trip")
    trips_del.add_argument("id")
    trips_del.set_defaults(handler=_trips_delete)

    expenses = subparsers.add_parser("expenses", help="Browse and delete expenses")
    exp_sub = expenses.add_subparsers(dest="expenses_command", required=True)
    exp_list = exp_sub.add_parser("list", help="List expenses, optionally for one trip")
    exp_list.add_argument("--trip")
    exp_list.set_defaults(handler=_expenses_list)
    exp_show = exp_sub.add_parser("show", help="Show one expense")
    exp_show.add_argument("id")
    exp_show.set_defaults(handler=_expenses_show)
    exp_receipt = exp_sub.add_parser("receipt", help="Download the stored receipt of an expense")
    exp_receipt.add_argument("id")
    exp_receipt.add_argument("--output", help="Destination file (default: the receipt's file name)")
    exp_receipt.set_defaults(handler=_expenses_receipt)
    exp_del = exp_sub.add_parser("delete", help="Delete an expense")
    exp_del.add_argument("id")
    exp_del.add_argument("--trip", help="Trip whose list is reloaded afterwards")
    exp_del.set_defaults(handler=_expenses_delete)

    scan = subparsers.add_parser("scan", help="Run OCR on a receipt, review fields and save the expense")
    scan.add_argument("--receipt", required=True, help="Receipt image or PDF")
    scan.add_argument("--content-type", help="Override the guessed MIME type")
    scan.add_argument("--trip", help="Trip name for the new expense")
    scan.add_argument("--ocr-method", help="OCR backend (defaults to EXPENSE_OCR_METHOD or builtin)")
    scan.add_argument("--ocr-model", help="Model name passed to the OCR backend")
    _add_draft_args(scan)
    scan.set_defaults(handler=_scan)

    add = subparsers.add_parser("add", help="Enter an expense manually")
    add.add_argument("--trip", help="Trip name for the new expense")
    add.add_argument("--receipt", help="Attach a receipt file without OCR")
    _add_draft_args(add)
    add.set_defaults(handler=_add)

    edit = subparsers.add_parser("edit", help="Edit an existing expense")
    edit.add_argument("id")
    edit.add_argument("--receipt", help="Replace the stored receipt")
    _add_draft_args(edit)
    edit.set_defaults(handler=_edit)

    summary = subparsers.add_parser("summary", help="Totals by type and by trip")
    summary.add_argument("--trip")
    summary.set_defaults(handler=_summary)

    export = subparsers.add_parser("export", help="Download the spreadsheet export for a trip")
    export.add_argument("--trip", required=True)
    export.add_argument("--output", help="Destination file (default: <trip>_expenses.xlsx)")
    export.set_defaults(handler=_export)

    settings = subparsers.add_parser("settings", help="Update OCR provider API keys on the server")
    settings.add_argument("--gemini-key")
    settings.add_argument("--openai-key")
    settings.add_argument("--claude-key")
    settings.add_argument("--openrouter-key")
    settings.set_defaults(handler=_settings)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(provided)
    LOG.debug(f"CLI invoked with command: {args.command}")

    try:
        code = args.handler(args)
    except ValidationError as e:
        for message in e.errors:
            LOG.error(message)
        code = 2
    except AuthenticationError as e:
        LOG.error(f"{e} Run 'expense-tracker login' to continue.")
        code = 3
    except ExpenseTrackerError as e:
        LOG.error(str(e))
        code = 1
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())

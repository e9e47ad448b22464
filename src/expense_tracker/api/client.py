import mimetypes
import os
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import requests

from ..domain.models import WIRE_NAMES, Draft, Expense, Trip, User, expenses_from_api, trips_from_api
from ..domain.validation import validate_password
from ..errors import AuthenticationError, CollaboratorError, NotFoundError, ValidationError
from ..logging import get_logger
from ..session import SessionStore

SETTINGS_KEYS = ("GEMINI_API_KEY", "OPENAI_API_KEY", "CLAUDE_API_KEY", "OPENROUTER_API_KEY")


class ExpenseApiClient:
    """Client for the expense-tracker REST backend with timeouts and logging.

    Every call except login/register goes through ``authenticated_request``,
    which attaches the bearer token from the shared ``SessionStore`` and
    clears that store on 401/403. Transport and HTTP failures leave this
    class only as ``expense_tracker.errors`` kinds.
    """

    def __init__(
        self,
        base_url: str,
        session_store: SessionStore,
        *,
        timeout: float = 30,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.store = session_store
        self.log = get_logger("api-client")
        self.s = http or requests.Session()
        self.s.headers.update({"Accept": "application/json"})

    # ---------- helpers ----------
    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base}{path}"

    def _send(
        self,
        method: str,
        path: str,
        *,
        auth: bool,
        json: Any = None,
        data: Any = None,
        files: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        headers: Dict[str, str] = {}
        if auth:
            token = self.store.token
            if not token:
                self.log.warning(f"{method} {path} rejected locally: no active session")
                raise AuthenticationError("Not logged in. Please log in first.")
            headers["Authorization"] = f"Bearer {token}"

        self.log.debug(f"{method} {path}")
        try:
            r = self.s.request(
                method,
                self._url(path),
                headers=headers,
                json=json,
                data=data,
                files=files,
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            self.log.error(f"{method} {path} timed out after {self.timeout:g}s")
            raise CollaboratorError(f"The server did not respond within {self.timeout:g} seconds.") from e
        except requests.RequestException as e:
            self.log.error(f"{method} {path} failed: {e}")
            raise CollaboratorError(f"Could not reach the expense service: {e}") from e

        if r.status_code in (401, 403):
            self.log.warning(f"{method} {path} -> {r.status_code}; clearing session")
            self.store.clear_session()
            message = "Session expired or invalid. Please log in again."
            if not auth:
                message = _error_message(r, default=message)
            raise AuthenticationError(message, status_code=r.status_code)
        if r.status_code == 404:
            raise NotFoundError(_error_message(r, default="Not found."), status_code=404)
        if not r.ok:
            message = _error_message(r)
            self.log.error(f"{method} {path} -> {r.status_code}: {message}")
            raise CollaboratorError(message, status_code=r.status_code)
        return r

    def _json(self, r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            preview = (r.text or "")[:200]
            self.log.error(f"Expected JSON from {r.url}, got: {preview!r}")
            raise CollaboratorError("Malformed response from server.", status_code=r.status_code) from e

    def authenticated_request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Send a request carrying the current bearer token.

        JSON bodies go in ``json=``, multipart bodies in ``files=``/``data=``;
        requests picks the matching Content-Type for each.
        """
        return self._send(method, path, auth=True, **kwargs)

    # ---------- auth ----------
    def login(self, username: str, password: str) -> User:
        try:
            r = self._send("POST", "/auth/login", auth=False, json={"username": username, "password": password})
            body = self._json(r)
            token = body.get("token") if isinstance(body, dict) else None
            user_id = body.get("userId") if isinstance(body, dict) else None
            name = body.get("username") if isinstance(body, dict) else None
            if not token or user_id in (None, "") or not name:
                raise CollaboratorError("Invalid login response from server.", status_code=r.status_code)
        except Exception:
            self.store.clear_session()
            raise
        user = User(id=str(user_id), username=str(name))
        self.store.set_session(str(token), user)
        return user

    def register(self, username: str, password: str) -> None:
        errors = validate_password(password)
        if errors:
            raise ValidationError([e.message for e in errors])
        self._send("POST", "/auth/register", auth=False, json={"username": username, "password": password})
        self.log.info(f"Registered user '{username}'")

    def logout(self) -> None:
        self.store.clear_session()

    # ---------- trips ----------
    def list_trips(self) -> List[Trip]:
        return trips_from_api(self._json(self.authenticated_request("GET", "/trips")))

    def create_trip(self, name: str, description: Optional[str] = None) -> Trip:
        payload: Dict[str, str] = {"name": name}
        if description:
            payload["description"] = description
        body = self._json(self.authenticated_request("POST", "/trips", json=payload))
        return Trip.from_api(_unwrap(body, "trip"))

    def delete_trip(self, trip_id: str) -> None:
        self.authenticated_request("DELETE", f"/trips/{trip_id}")

    # ---------- expenses ----------
    def list_expenses(self) -> List[Expense]:
        return expenses_from_api(self._json(self.authenticated_request("GET", "/expenses")))

    def get_expense(self, expense_id: str) -> Expense:
        body = self._json(self.authenticated_request("GET", f"/expenses/{expense_id}"))
        return Expense.from_api(_unwrap(body, "expense"))

    def create_expense(self, fields: Dict[str, str], receipt_path: Optional[str] = None) -> Expense:
        return self._send_expense("POST", "/expenses", fields, receipt_path)

    def update_expense(self, expense_id: str, fields: Dict[str, str], receipt_path: Optional[str] = None) -> Expense:
        return self._send_expense("PUT", f"/expenses/{expense_id}", fields, receipt_path)

    def _send_expense(
        self, method: str, path: str, fields: Dict[str, str], receipt_path: Optional[str]
    ) -> Expense:
        data: List[Tuple[str, str]] = [(k, str(v)) for k, v in fields.items() if k != "id" and v is not None]
        self.log.info(f"{method} expense: fields={[k for k, _ in data]}, receipt={receipt_path}")
        if receipt_path:
            with open(receipt_path, "rb") as fh:
                files = {"receipt": (os.path.basename(receipt_path), fh, guess_mime(receipt_path))}
                r = self.authenticated_request(method, path, data=data, files=files)
        else:
            # Filename-less parts keep the body multipart when no receipt is attached
            r = self.authenticated_request(method, path, files=[(k, (None, v)) for k, v in data])
        return Expense.from_api(_unwrap(self._json(r), "expense"))

    def delete_expense(self, expense_id: str) -> None:
        self.authenticated_request("DELETE", f"/expenses/{expense_id}")

    def download_receipt(self, expense: Expense, destination: Optional[str] = None) -> str:
        """Fetch the stored receipt of ``expense`` and write it to ``destination``.

        Without a destination the file keeps the name it has on the server.
        """
        if not expense.receipt_path:
            raise ValidationError("This expense has no stored receipt.")
        url = receipt_url(self.base, expense.receipt_path)
        r = self.authenticated_request("GET", url)
        name = os.path.basename(urlsplit(url).path) or f"receipt_{_safe_filename(expense.id or 'expense')}"
        path = destination or name
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "wb") as f:
            f.write(r.content)
        self.log.info(f"Saved receipt of expense {expense.id} ({len(r.content)} bytes) to {path}")
        return path

    # ---------- ocr ----------
    def process_receipt(
        self,
        receipt_path: str,
        *,
        content_type: Optional[str] = None,
        ocr_method: str = "builtin",
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        data: List[Tuple[str, str]] = [("ocrMethod", ocr_method)]
        if model:
            data.append(("model", model))
        self.log.info(f"OCR request: method={ocr_method}, model={model}, file={receipt_path}")
        with open(receipt_path, "rb") as fh:
            files = {"receipt": (os.path.basename(receipt_path), fh, content_type or guess_mime(receipt_path))}
            r = self.authenticated_request("POST", "/ocr/process", data=data, files=files)
        body = self._json(r)
        if not isinstance(body, dict):
            raise CollaboratorError("Invalid data received from OCR processing.", status_code=r.status_code)
        return body

    # ---------- export / settings ----------
    def export_expenses(self, trip_name: str, destination: Optional[str] = None) -> str:
        r = self.authenticated_request("GET", "/export-expenses", params={"tripName": trip_name})
        path = destination or f"{_safe_filename(trip_name)}_expenses.xlsx"
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "wb") as f:
            f.write(r.content)
        self.log.info(f"Exported {len(r.content)} bytes for trip '{trip_name}' to {path}")
        return path

    def update_env_settings(self, settings: Dict[str, str]) -> str:
        payload = {k: v.strip() for k, v in settings.items() if k in SETTINGS_KEYS and v and v.strip()}
        if not payload:
            raise ValidationError("Please enter at least one API key to update.")
        body = self._json(self.authenticated_request("POST", "/update-env", json=payload))
        message = body.get("message") if isinstance(body, dict) else None
        return message or "API keys updated successfully!"


def draft_to_fields(draft: Draft, cost: str) -> Dict[str, str]:
    """Map a validated draft onto backend form fields; empty trip names are left out."""
    out: Dict[str, str] = {}
    for attr, wire in WIRE_NAMES.items():
        value = cost if attr == "cost" else getattr(draft, attr).strip()
        if attr == "trip_name" and not value:
            continue
        out[wire] = value
    return out


def receipt_url(base_url: str, receipt_path: str) -> str:
    """Resolve a stored ``receiptPath`` against the backend's origin.

    The backend serves uploads next to ``/api``, so ``uploads/a.jpg`` under
    ``http://host/api`` becomes ``http://host/uploads/a.jpg``.
    """
    path = receipt_path.strip().replace("\\", "/")
    if path.startswith(("http://", "https://")):
        return path
    parts = urlsplit(base_url)
    return urljoin(f"{parts.scheme}://{parts.netloc}/", path.lstrip("/"))


def guess_mime(path: str) -> str:
    mt, _ = mimetypes.guess_type(path)
    return mt or "application/octet-stream"


def _unwrap(body: Any, key: str) -> Dict[str, Any]:
    """Pick the ``{key: {...}}`` record out of a response, or the body itself when it is the record."""
    if isinstance(body, dict):
        inner = body.get(key)
        record = inner if isinstance(inner, dict) else body
        if record.get("id") not in (None, ""):
            return record
    raise CollaboratorError(f"Response did not contain a {key} with an id.")


def _error_message(r: requests.Response, default: Optional[str] = None) -> str:
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if isinstance(body.get("message"), str) and body["message"].strip():
            return body["message"].strip()
        errors = body.get("errors")
        if isinstance(errors, list):
            msgs = [str(e.get("msg")) for e in errors if isinstance(e, dict) and e.get("msg")]
            if msgs:
                return " ".join(msgs)
    return default or f"HTTP error! status: {r.status_code}"


def _safe_filename(value: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in value.strip())
    return cleaned.strip("._") or "expenses"

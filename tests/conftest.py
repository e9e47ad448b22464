from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple, Union
from urllib.parse import parse_qs, urlparse

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

# Ensure the repository's src/ is importable when running from a checkout
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from expense_tracker.api.client import ExpenseApiClient  # noqa: E402
from expense_tracker.session import SessionStore  # noqa: E402

BASE_URL = "http://backend.test/api"

Reply = Union[Tuple[int, Any], Callable[[requests.PreparedRequest], Tuple[int, Any]], Exception]


class FakeBackend(BaseAdapter):
    """Transport adapter answering requests from a route table instead of the network."""

    def __init__(self) -> None:
        super().__init__()
        self.routes: Dict[Tuple[str, str], Reply] = {}
        self.requests: List[requests.PreparedRequest] = []

    def route(self, method: str, path: str, reply: Reply) -> None:
        self.routes[(method.upper(), path)] = reply

    def calls(self, method: str, path: str) -> List[requests.PreparedRequest]:
        return [r for r in self.requests if r.method == method.upper() and _api_path(r.url) == path]

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        reply = self.routes.get((request.method, _api_path(request.url)))
        if reply is None:
            reply = (404, {"message": f"No route for {request.method} {_api_path(request.url)}"})
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(request)
        status, body = reply
        return _build_response(request, status, body)

    def close(self) -> None:
        pass


def _api_path(url: str) -> str:
    path = urlparse(url).path
    return path[len("/api"):] if path.startswith("/api") else path


def query_of(request: requests.PreparedRequest) -> Dict[str, List[str]]:
    return parse_qs(urlparse(request.url).query)


def _build_response(request: requests.PreparedRequest, status: int, body: Any) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r.request = request
    r.url = request.url
    if isinstance(body, bytes):
        r._content = body
        r.headers = CaseInsensitiveDict({"Content-Type": "application/octet-stream"})
    elif isinstance(body, str):
        r._content = body.encode("utf-8")
        r.headers = CaseInsensitiveDict({"Content-Type": "text/plain"})
    else:
        r._content = json.dumps(body).encode("utf-8")
        r.headers = CaseInsensitiveDict({"Content-Type": "application/json"})
    r.encoding = "utf-8"
    return r


def multipart_field(request: requests.PreparedRequest, name: str) -> str | None:
    """Return the value of a plain multipart field, or None when absent."""
    body = request.body or b""
    if isinstance(body, str):
        body = body.encode("utf-8")
    marker = f'name="{name}"'.encode("utf-8")
    for part in body.split(b"\r\n--"):
        head, _, value = part.partition(b"\r\n\r\n")
        if marker in head and b"filename=" not in head:
            return value.rstrip(b"\r\n").split(b"\r\n--")[0].decode("utf-8")
    return None


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def http(backend: FakeBackend) -> requests.Session:
    s = requests.Session()
    s.mount("http://", backend)
    return s


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def client(store: SessionStore, http: requests.Session) -> ExpenseApiClient:
    return ExpenseApiClient(BASE_URL, store, timeout=5, http=http)


@pytest.fixture
def receipt_file(tmp_path: Path) -> Path:
    path = tmp_path / "receipt.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
    return path

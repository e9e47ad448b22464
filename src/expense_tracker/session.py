"""Holder of the bearer token and the logged-in user.

One ``SessionStore`` is created by the caller and handed to the API client;
nothing here is module-global. With a ``path`` the session survives process
restarts, which is what the CLI relies on between invocations.
"""

from __future__ import annotations

import json
import os
from typing import Optional, Tuple

from .domain.models import User
from .errors import SessionStorageError
from .logging import get_logger

LOG = get_logger("session")


class SessionStore:
    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._token: Optional[str] = None
        self._user: Optional[User] = None
        if path:
            self._restore()

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def user(self) -> Optional[User]:
        return self._user

    def set_session(self, token: str, user: User) -> None:
        if not token:
            raise ValueError("token must be a non-empty string")
        self._token = token
        self._user = user
        LOG.info(f"Session started for user '{user.username}'")
        self._persist()

    def get_session(self) -> Tuple[Optional[str], Optional[User]]:
        return self._token, self._user

    def clear_session(self) -> None:
        had_session = self._token is not None
        self._token = None
        self._user = None
        if self.path and os.path.exists(self.path):
            try:
                os.remove(self.path)
            except OSError as e:
                LOG.warning(f"Could not remove session file {self.path}: {e}")
        if had_session:
            LOG.info("Session cleared")

    # ---------- persistence ----------
    def _persist(self) -> None:
        if not self.path:
            return
        payload = {"token": self._token, "user": self._user.to_dict() if self._user else None}
        tmp = f"{self.path}.tmp"
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp, self.path)
        except OSError as e:
            LOG.error(f"Could not write session file {self.path}: {e}")
            raise SessionStorageError(f"Could not save the session to {self.path}: {e}") from e
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            LOG.debug(f"Could not restrict permissions on {self.path}")

    def _restore(self) -> None:
        if not self.path or not os.path.isfile(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            LOG.warning(f"Ignoring unreadable session file {self.path}: {e}")
            self.clear_session()
            return
        token = data.get("token") if isinstance(data, dict) else None
        user_data = data.get("user") if isinstance(data, dict) else None
        user = User.from_dict(user_data) if isinstance(user_data, dict) else None
        if not token or user is None:
            # A token without a user cannot be verified locally
            LOG.warning("Stored session is incomplete; discarding it")
            self.clear_session()
            return
        self._token = str(token)
        self._user = user
        LOG.debug(f"Restored session for user '{user.username}' from {self.path}")

import os
from dataclasses import dataclass
from typing import Dict, Optional

from .logging import get_logger
from .paths import default_session_file, expand_abs, find_project_root

log = get_logger("config")

DEFAULT_API_URL = "http://localhost:3000/api"
DEFAULT_TIMEOUT = 30.0
DEFAULT_OCR_METHOD = "builtin"


@dataclass
class ClientConfig:
    base_url: str
    timeout: float
    ocr_method: str
    ocr_model: Optional[str]
    session_file: str


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    Running the CLI from a subdirectory still finds the project-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Minimal .env reader.

    - Reads key=value pairs, ignores comments (#/;) and blank lines.
    - Trims single/double quotes around the value.
    - Returns mapping; does not mutate environment.
    """
    env: Dict[str, str] = {}
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return env
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#") or line.startswith(";"):
                    continue
                if "=" not in line:
                    continue
                k, v = line.split("=", 1)
                k = k.strip()
                v = v.strip()
                if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
                    v = v[1:-1]
                env[k] = v.strip()
        log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    except (OSError, UnicodeDecodeError) as e:
        log.warning(f"Failed reading .env: {e}")
    return env


def _lookup(key: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(key)
    if v and v.strip():
        return v.strip()
    v = env.get(key)
    return v.strip() if v and v.strip() else None


def load_base_url(dotenv_dir: str, fallback: str = DEFAULT_API_URL) -> str:
    return (_lookup("EXPENSE_API_URL", _read_dotenv(dotenv_dir)) or fallback).rstrip("/")


def load_timeout(dotenv_dir: str, fallback: float = DEFAULT_TIMEOUT) -> float:
    raw = _lookup("EXPENSE_API_TIMEOUT", _read_dotenv(dotenv_dir))
    if raw is None:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        log.warning(f"EXPENSE_API_TIMEOUT={raw!r} is not a number; using {fallback}s")
        return fallback
    if value <= 0:
        log.warning(f"EXPENSE_API_TIMEOUT must be positive; using {fallback}s")
        return fallback
    return value


def load_ocr(dotenv_dir: str) -> tuple[str, Optional[str]]:
    """Return (ocr_method, ocr_model); the model is only sent when set."""
    env = _read_dotenv(dotenv_dir)
    method = _lookup("EXPENSE_OCR_METHOD", env) or DEFAULT_OCR_METHOD
    model = _lookup("EXPENSE_OCR_MODEL", env)
    return method, model


def load_session_file(dotenv_dir: str) -> str:
    v = _lookup("EXPENSE_SESSION_FILE", _read_dotenv(dotenv_dir))
    if v:
        return expand_abs(v)
    return default_session_file(find_project_root(dotenv_dir))


def load_client_config(dotenv_dir: str) -> ClientConfig:
    method, model = load_ocr(dotenv_dir)
    config = ClientConfig(
        base_url=load_base_url(dotenv_dir),
        timeout=load_timeout(dotenv_dir),
        ocr_method=method,
        ocr_model=model,
        session_file=load_session_file(dotenv_dir),
    )
    log.debug(
        "Client config: base_url=%s timeout=%ss ocr=%s/%s session_file=%s",
        config.base_url,
        config.timeout,
        config.ocr_method,
        config.ocr_model,
        config.session_file,
    )
    return config

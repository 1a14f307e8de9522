import os
import re
from typing import Any, Dict, Optional, Tuple

import yaml

ROOT_DIR = os.path.dirname(__file__)

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _parse_dotenv_line(raw_line: str) -> Optional[Tuple[str, str]]:
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):].strip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        value = value[1:-1]
    return key, value


def _load_dotenv(path: str, protected: set[str], allow_override: bool = False) -> None:
    """Copy `KEY=value` lines into os.environ; non-empty process variables always win."""
    if not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as handle:
            pairs = [item for item in (_parse_dotenv_line(line) for line in handle) if item is not None]
    except OSError:
        return
    for key, value in pairs:
        current = str(os.environ.get(key, "") or "").strip()
        if current and (key in protected or not allow_override):
            continue
        os.environ[key] = value


_PROCESS_ENV = set(os.environ.keys())
_load_dotenv(os.path.join(ROOT_DIR, ".env"), _PROCESS_ENV)
_load_dotenv(os.path.join(ROOT_DIR, ".env.local"), _PROCESS_ENV, allow_override=True)

APP_ENV = os.getenv("APP_ENV", "dev")
CONFIG_PATH = os.getenv("CONFIG_PATH", os.path.join(ROOT_DIR, "config.yaml"))

# Connection strings carry credentials and are never read from config.yaml.
_ENV_ONLY_KEYS = {
    "DATABASE_URL",
    "REDIS_URL",
}


def _load_config(path: str, env: str) -> Dict[str, Any]:
    """Read config.yaml; a mapping keyed by APP_ENV selects that section."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data: Any = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(data, dict):
        return {}
    section = data.get(env)
    return dict(section) if isinstance(section, dict) else dict(data)


_CONFIG = _load_config(CONFIG_PATH, APP_ENV)


def _get(name: str, default: Any) -> Any:
    if name in os.environ:
        return os.environ[name]
    if name in _ENV_ONLY_KEYS:
        return default
    for key in (name, name.lower()):
        if key in _CONFIG:
            return _CONFIG[key]
    return default


def _get_str(name: str, default: str) -> str:
    return str(_get(name, default) or "").strip() or default


def _get_bool(name: str, default: bool) -> bool:
    value = _get(name, None)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes"}


def _get_hhmm(name: str, default: str) -> str:
    value = _get_str(name, default)
    return value if _HHMM_PATTERN.match(value) else default


LOG_LEVEL = _get_str("LOG_LEVEL", "INFO").upper()

DATABASE_URL = _get_str("DATABASE_URL", f"sqlite:///{os.path.join(ROOT_DIR, '.trackhub', 'trackhub.db')}")
DATABASE_ECHO = _get_bool("DATABASE_ECHO", False)

REDIS_URL = _get_str("REDIS_URL", "redis://localhost:6379/0")
REDIS_DISABLED = _get_bool("REDIS_DISABLED", False)
# Redis list consumed by the change-data-capture pipeline.
CDC_REDIS_KEY = _get_str("CDC_REDIS_KEY", "cdc:device-events")
TRACKER_STATUS_KEY_PREFIX = _get_str("TRACKER_STATUS_KEY_PREFIX", "tracker:realtime:")

# Coupons are only consumed on renewal when they belong to this promotion.
RENEWAL_COUPON_ACTIVITY = _get_str("RENEWAL_COUPON_ACTIVITY", "double_twelve").lower()

# Default phone/SMS alarm window written into new notification configs.
NOTIFICATION_WINDOW_START = _get_hhmm("NOTIFICATION_WINDOW_START", "00:00")
NOTIFICATION_WINDOW_END = _get_hhmm("NOTIFICATION_WINDOW_END", "23:59")

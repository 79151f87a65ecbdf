from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parents[1]
_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    pass


def load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def bootstrap_local_env() -> None:
    for candidate in (BACKEND_DIR.parent / ".env", BACKEND_DIR / ".env"):
        if candidate.exists():
            load_local_env_file(candidate)


def _positive_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _zone_key_from_path(path: str) -> str | None:
    marker = "/zoneinfo/"
    if marker in path:
        return path.split(marker, 1)[1]
    return None


def host_zone_key() -> str | None:
    """IANA key of the host zone, from ``TZ``, ``/etc/localtime`` or ``/etc/timezone``."""
    tz_env = (os.getenv("TZ") or "").strip().lstrip(":")
    if tz_env:
        return _zone_key_from_path(tz_env) or tz_env
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        key = _zone_key_from_path(str(localtime.resolve()))
        if key:
            return key
    try:
        key = Path("/etc/timezone").read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return key or None


def host_local_zone() -> tzinfo:
    # Must be a DST-aware zone, never the fixed offset in effect at startup.
    key = host_zone_key()
    if not key:
        raise ConfigError("Could not determine the host IANA timezone; set REMINDERS_FACILITY_TZ")
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Host timezone {key!r} is not a known IANA zone; set REMINDERS_FACILITY_TZ") from exc


@dataclass(frozen=True)
class EngineSettings:
    db_path: str
    tick_seconds: float = 60.0
    dispatch_timeout_seconds: float = 10.0
    facility_timezone: str | None = None
    directory_path: str | None = None
    webhook_url: str | None = None
    autostart: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            db_path=os.getenv("REMINDERS_DB_PATH", str(BACKEND_DIR / "reminders.sqlite")),
            tick_seconds=_positive_float("REMINDERS_TICK_SECONDS", "60"),
            dispatch_timeout_seconds=_positive_float("REMINDERS_DISPATCH_TIMEOUT_SECONDS", "10"),
            facility_timezone=(os.getenv("REMINDERS_FACILITY_TZ") or "").strip() or None,
            directory_path=(os.getenv("REMINDERS_DIRECTORY_PATH") or "").strip() or None,
            webhook_url=(os.getenv("REMINDERS_WEBHOOK_URL") or "").strip() or None,
            autostart=os.getenv("REMINDERS_AUTOSTART", "true").strip().lower() in _TRUTHY,
            log_level=(os.getenv("REMINDERS_LOG_LEVEL") or "INFO").strip().upper(),
        )

    def facility_zone(self) -> tzinfo:
        if not self.facility_timezone:
            zone = host_local_zone()
            logger.info("REMINDERS_FACILITY_TZ not set; appointments are read in host zone %s", zone)
            return zone
        try:
            return ZoneInfo(self.facility_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown REMINDERS_FACILITY_TZ: {self.facility_timezone!r}") from exc

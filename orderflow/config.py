import os
from dataclasses import dataclass, replace
from pathlib import Path
import json
from typing import Dict, List, Optional

from dotenv import load_dotenv


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    log_level: str
    currency: str
    mapbox_access_token: str
    mapbox_base_url: str
    payment_gateway_url: str
    admin_token: str
    shipper_radius_km: float = 5.0
    payment_timeout_minutes: int = 15
    assignment_timeout_minutes: int = 30
    temp_address_ttl_hours: int = 24
    sweep_interval_seconds: int = 600
    gc_interval_seconds: int = 3600
    scheduler_enabled: bool = True


ALLOWED_HOT_KEYS = {
    "CURRENCY",
    "SHIPPER_RADIUS_KM",
    "PAYMENT_TIMEOUT_MINUTES",
    "ASSIGNMENT_TIMEOUT_MINUTES",
    "TEMP_ADDRESS_TTL_HOURS",
}
SENSITIVE_KEYS = {"SECRET_KEY", "MAPBOX_ACCESS_TOKEN", "ADMIN_TOKEN", "DATABASE_URL", "PAYMENT_GATEWAY_URL"}


def validate_currency(value: Optional[str]) -> str:
    v = (value or "VND").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def _positive_number(value, field: str, cast=float):
    try:
        v = cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a number")
    if v <= 0:
        raise ValueError(f"{field} must be > 0")
    return v


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _load_settings_file(path: Optional[Path] = None) -> dict:
    try:
        path = path or Path(__file__).resolve().parents[1] / "data" / "settings.json"
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
    except (OSError, ValueError):
        pass
    return {}


def load_env(settings_path: Optional[Path] = None) -> AppConfig:
    # data/settings.json overrides non-secret keys; .env and the process environment supply the rest
    load_dotenv()
    s = _load_settings_file(settings_path)

    def pick(key: str, default: str) -> str:
        if key not in SENSITIVE_KEYS and s.get(key) not in (None, ""):
            return str(s[key])
        return os.getenv(key, default)

    return AppConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=os.getenv("SECRET_KEY", "dev_secret"),
        log_level=pick("LOG_LEVEL", "INFO").upper(),
        currency=validate_currency(pick("CURRENCY", "VND")),
        mapbox_access_token=os.getenv("MAPBOX_ACCESS_TOKEN", ""),
        mapbox_base_url=pick("MAPBOX_BASE_URL", "https://api.mapbox.com").rstrip("/"),
        payment_gateway_url=os.getenv("PAYMENT_GATEWAY_URL", "http://127.0.0.1:7000").rstrip("/"),
        admin_token=os.getenv("ADMIN_TOKEN", ""),
        shipper_radius_km=_positive_number(pick("SHIPPER_RADIUS_KM", "5"), "SHIPPER_RADIUS_KM"),
        payment_timeout_minutes=_positive_number(pick("PAYMENT_TIMEOUT_MINUTES", "15"), "PAYMENT_TIMEOUT_MINUTES", int),
        assignment_timeout_minutes=_positive_number(
            pick("ASSIGNMENT_TIMEOUT_MINUTES", "30"), "ASSIGNMENT_TIMEOUT_MINUTES", int
        ),
        temp_address_ttl_hours=_positive_number(pick("TEMP_ADDRESS_TTL_HOURS", "24"), "TEMP_ADDRESS_TTL_HOURS", int),
        sweep_interval_seconds=_positive_number(pick("SWEEP_INTERVAL_SECONDS", "600"), "SWEEP_INTERVAL_SECONDS", int),
        gc_interval_seconds=_positive_number(pick("GC_INTERVAL_SECONDS", "3600"), "GC_INTERVAL_SECONDS", int),
        scheduler_enabled=_flag(pick("SCHEDULER_ENABLED", ""), True),
    )


def refresh_non_sensitive(overrides: Dict[str, str], current: AppConfig) -> AppConfig:
    updates = {k: v for k, v in (overrides or {}).items() if k in ALLOWED_HOT_KEYS}
    return replace(
        current,
        currency=validate_currency(updates.get("CURRENCY", current.currency)),
        shipper_radius_km=_positive_number(
            updates.get("SHIPPER_RADIUS_KM", current.shipper_radius_km), "SHIPPER_RADIUS_KM"
        ),
        payment_timeout_minutes=_positive_number(
            updates.get("PAYMENT_TIMEOUT_MINUTES", current.payment_timeout_minutes), "PAYMENT_TIMEOUT_MINUTES", int
        ),
        assignment_timeout_minutes=_positive_number(
            updates.get("ASSIGNMENT_TIMEOUT_MINUTES", current.assignment_timeout_minutes),
            "ASSIGNMENT_TIMEOUT_MINUTES",
            int,
        ),
        temp_address_ttl_hours=_positive_number(
            updates.get("TEMP_ADDRESS_TTL_HOURS", current.temp_address_ttl_hours), "TEMP_ADDRESS_TTL_HOURS", int
        ),
    )


def requires_restart(changed_keys: List[str]) -> bool:
    if not changed_keys:
        return False
    return any(k in SENSITIVE_KEYS for k in changed_keys)

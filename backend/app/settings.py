import os
from pathlib import Path
from typing import List

DEFAULT_TRIAGE_CONSULTATION_TYPES = "Triage SOAP Review,Triage Consultation"


def parse_csv_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def read_positive_int_env(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def read_positive_float_env(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def cases_db_path() -> str:
    default_db = str(Path(__file__).resolve().parents[1] / "data" / "cases.sqlite3")
    return os.getenv("CASES_DB_PATH", default_db)


def triage_consultation_types() -> List[str]:
    configured = parse_csv_env("TRIAGE_CONSULTATION_TYPES", DEFAULT_TRIAGE_CONSULTATION_TYPES)
    # An empty override would silently turn every booking into a consultation.
    return configured or [item.strip() for item in DEFAULT_TRIAGE_CONSULTATION_TYPES.split(",")]


def adapter_timeout_seconds() -> float:
    return read_positive_float_env("CASE_ADAPTER_TIMEOUT_SECONDS", 10.0)


def telemetry_enabled() -> bool:
    return read_bool_env("CASE_TELEMETRY_ENABLED", True)


def case_board_max_actors() -> int:
    return read_positive_int_env("CASE_BOARD_MAX_ACTORS", 256)

from __future__ import annotations

import os
from dataclasses import dataclass

from backend.fieldops.services.dedupe import (
    DEFAULT_ADDRESS_THRESHOLD,
    DEFAULT_NAME_THRESHOLD,
    DuplicateThresholds,
)
from backend.fieldops.services.numbering import DEFAULT_RECENT_WINDOW


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _ratio(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str
    duplicate_name_threshold: float
    duplicate_address_threshold: float
    sequence_recent_window: int
    number_allocation_max_retries: int

    @property
    def duplicate_thresholds(self) -> DuplicateThresholds:
        return DuplicateThresholds(
            name=self.duplicate_name_threshold,
            address=self.duplicate_address_threshold,
        )


def load_settings() -> Settings:
    persistence_db_path = os.getenv("PERSISTENCE_DB_PATH", "data/fieldops.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
        duplicate_name_threshold=_ratio(
            _float_env("DUPLICATE_NAME_THRESHOLD", DEFAULT_NAME_THRESHOLD)
        ),
        duplicate_address_threshold=_ratio(
            _float_env("DUPLICATE_ADDRESS_THRESHOLD", DEFAULT_ADDRESS_THRESHOLD)
        ),
        sequence_recent_window=max(
            1, min(500, _int_env("SEQUENCE_RECENT_WINDOW", DEFAULT_RECENT_WINDOW))
        ),
        number_allocation_max_retries=max(
            1, min(50, _int_env("NUMBER_ALLOCATION_MAX_RETRIES", 5))
        ),
    )

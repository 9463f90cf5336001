from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent

DEFAULT_WELCOME = "Bienvenue 👋 ! Dis-moi ce que tu cherches 😊"


@dataclass(frozen=True)
class MatchPolicy:
    """Scoring and relaxation knobs for the catalog matcher."""
    add_threshold: int = 3
    around_delta: float = 10.0
    suggestion_delta: float = 20.0
    min_results: int = 3
    suggestion_limit: int = 6
    result_limit: int = 12


@dataclass(frozen=True)
class Settings:
    """Configuration container for catalog sources, storage, and runtime limits."""
    catalog_path: Path
    partner_catalog_path: Path
    static_dir: Path
    data_dir: Path
    storage_path: Path
    welcome_message: str
    fetch_timeout: float
    fetch_max_bytes: int
    listen_idle_timeout: float
    policy: MatchPolicy
    max_sessions: int = 1000
    log_level: str = "INFO"
    default_catalog_url: Optional[str] = None


def _env_path(name: str, default: Path) -> Path:
    # Resolve an optional path override from the environment.
    value = os.getenv(name)
    return Path(value).expanduser().resolve() if value else default


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values (VOCALSHOP_FETCH_TIMEOUT, ...) raise ValueError.
    If Removed: App cannot locate catalogs/storage and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve catalog, storage, and static paths, then build Settings.
    data_dir = _env_path("VOCALSHOP_DATA_DIR", (BASE_DIR / "data").resolve())
    policy = MatchPolicy(
        add_threshold=int(os.getenv("VOCALSHOP_ADD_THRESHOLD", "3")),
        around_delta=float(os.getenv("VOCALSHOP_AROUND_DELTA", "10")),
        suggestion_delta=float(os.getenv("VOCALSHOP_SUGGESTION_DELTA", "20")),
        min_results=int(os.getenv("VOCALSHOP_MIN_RESULTS", "3")),
        suggestion_limit=int(os.getenv("VOCALSHOP_SUGGESTION_LIMIT", "6")),
        result_limit=int(os.getenv("VOCALSHOP_RESULT_LIMIT", "12")),
    )
    return Settings(
        catalog_path=_env_path("VOCALSHOP_CATALOG_PATH", data_dir / "products.json"),
        partner_catalog_path=_env_path("VOCALSHOP_PARTNER_CATALOG_PATH", data_dir / "partner_products.json"),
        static_dir=(BASE_DIR / "static").resolve(),
        data_dir=data_dir,
        storage_path=_env_path("VOCALSHOP_STORAGE_PATH", data_dir / "storage.json"),
        welcome_message=os.getenv("VOCALSHOP_WELCOME", DEFAULT_WELCOME),
        fetch_timeout=float(os.getenv("VOCALSHOP_FETCH_TIMEOUT", "8")),
        fetch_max_bytes=int(os.getenv("VOCALSHOP_FETCH_MAX_BYTES", "2000000")),
        listen_idle_timeout=float(os.getenv("VOCALSHOP_LISTEN_IDLE_TIMEOUT", "8")),
        policy=policy,
        max_sessions=int(os.getenv("VOCALSHOP_MAX_SESSIONS", "1000")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        default_catalog_url=os.getenv("VOCALSHOP_CATALOG_URL") or None,
    )

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_out_dir() -> str:
    # Keep logs in backend/out by default to avoid polluting source assets.
    return "/app/out" if _running_in_docker() else str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping tuning constants out of code."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" (docker compose) and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Graph construction. Both thresholds were tuned empirically for one campus's
    # path density, so they stay configurable.
    merge_threshold_m: float = Field(default=10.0, ge=0.0, le=100.0, alias="MERGE_THRESHOLD_M")
    turn_threshold_deg: float = Field(default=20.0, gt=0.0, lt=180.0, alias="TURN_THRESHOLD_DEG")
    accessible_connection_threshold_m: float = Field(
        default=3.0,
        ge=0.0,
        le=500.0,
        alias="ACCESSIBLE_CONNECTION_THRESHOLD_M",
    )

    # Route policy
    parking_far_warning_m: float = Field(default=500.0, ge=0.0, alias="PARKING_FAR_WARNING_M")
    walking_speed_mps: float = Field(default=1.4, gt=0.0, le=5.0, alias="WALKING_SPEED_MPS")
    driving_speed_mps: float = Field(default=10.0, gt=0.0, le=60.0, alias="DRIVING_SPEED_MPS")
    alternative_routes_k: int = Field(default=3, ge=1, le=10, alias="ALTERNATIVE_ROUTES_K")
    alternative_max_detour_ratio: float = Field(
        default=2.5,
        ge=1.0,
        le=8.0,
        alias="ALTERNATIVE_MAX_DETOUR_RATIO",
    )

    # Graph cache (keyed by segment-collection signature, so stale entries are never served)
    graph_cache_enabled: bool = Field(default=True, alias="GRAPH_CACHE_ENABLED")
    graph_cache_ttl_s: int = Field(default=600, ge=1, alias="GRAPH_CACHE_TTL_S")
    graph_cache_max_entries: int = Field(default=16, ge=1, le=1024, alias="GRAPH_CACHE_MAX_ENTRIES")

    # Campus data source: a local JSON export, or the admin store's HTTP API.
    campus_data_path: str = Field(default="", alias="CAMPUS_DATA_PATH")
    campus_data_url: str = Field(default="", alias="CAMPUS_DATA_URL")
    campus_data_timeout_s: float = Field(default=10.0, ge=1.0, le=120.0, alias="CAMPUS_DATA_TIMEOUT_S")
    campus_data_max_retries: int = Field(default=3, ge=1, le=10, alias="CAMPUS_DATA_MAX_RETRIES")

    # Fixed kiosk origin
    kiosk_lat: float = Field(default=0.0, ge=-90, le=90, alias="KIOSK_LAT")
    kiosk_lng: float = Field(default=0.0, ge=-180, le=180, alias="KIOSK_LNG")
    kiosk_name: str = Field(default="Your Location (Kiosk)", alias="KIOSK_NAME")

    @model_validator(mode="after")
    def _normalise_strings(self) -> "Settings":
        self.campus_data_url = self.campus_data_url.strip().rstrip("/")
        self.campus_data_path = self.campus_data_path.strip()
        self.kiosk_name = self.kiosk_name.strip() or "Your Location (Kiosk)"
        return self


settings = Settings()

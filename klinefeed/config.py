"""Configuration loading for the kline acquisition service."""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_SETTINGS_PATH = PROJECT_ROOT / "configs" / "settings.yaml"

DEFAULT_ENDPOINTS = [
    "https://fapi.binance.com/fapi/v1",
    "https://fapi1.binance.com/fapi/v1",
    "https://fapi2.binance.com/fapi/v1",
    "https://fapi3.binance.com/fapi/v1",
]

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class FetchSettings(BaseModel):
    endpoints: List[str] = Field(default_factory=lambda: list(DEFAULT_ENDPOINTS), min_length=1)
    batch_limit: int = Field(1500, ge=1, le=1500)
    max_candles: int = Field(20_000, ge=1)
    max_attempts: int = Field(3, ge=1)
    timeout_ms: int = Field(30_000, gt=0)
    backoff_ms: int = Field(1_000, ge=0)
    cooldown_ms: int = Field(200, ge=0)
    user_agent: str = DEFAULT_USER_AGENT

    @field_validator("endpoints")
    @classmethod
    def _strip_endpoints(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip().rstrip("/") for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("at least one endpoint is required")
        return cleaned


class BacktestSettings(BaseModel):
    display_candles: int = Field(500, ge=0)


class Settings(BaseModel):
    log_level: str = "INFO"
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    fetch = dict(raw.get("fetch") or {})
    endpoints = os.getenv("KLINEFEED_ENDPOINTS")
    if endpoints:
        fetch["endpoints"] = [item for item in endpoints.split(",") if item.strip()]
    timeout_ms = os.getenv("KLINEFEED_TIMEOUT_MS")
    if timeout_ms:
        fetch["timeout_ms"] = int(timeout_ms)
    raw["fetch"] = fetch
    log_level = os.getenv("KLINEFEED_LOG_LEVEL")
    if log_level:
        raw["log_level"] = log_level
    return raw


def _default_settings_path() -> Path | None:
    for candidate in (Path("configs") / "settings.yaml", DEFAULT_SETTINGS_PATH):
        if candidate.exists():
            return candidate
    return None


def load_settings(path: Path | str | None = None) -> Settings:
    """Load settings from YAML, then apply environment overrides.

    Without an explicit ``path`` the working directory's ``configs/settings.yaml``
    is tried first, then the one shipped next to the package; when neither
    exists the built-in defaults apply. An explicit path must exist.
    """
    load_dotenv()
    if path is None:
        path = _default_settings_path()
    raw = dict(_load_yaml(Path(path))) if path is not None else {}
    return Settings.model_validate(_apply_env_overrides(raw))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()

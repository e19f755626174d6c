"""Orchestrator configuration from YAML files and environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from cartmerge.models.slots import SlotPreferences
from cartmerge.utils.yaml_io import load_yaml

# Defaults
DEFAULT_ORDER_LIMIT = 3
DEFAULT_HISTORY_LIMIT = 10
DEFAULT_PHASE_TIMEOUT = 120.0
DEFAULT_OPERATION_TIMEOUT = 30.0
DEFAULT_MAX_ERROR_COUNT = 3
DEFAULT_SETTLE_DELAY = 1.5
DEFAULT_STATE_DIR = Path.home() / ".cartmerge" / "state"
DEFAULT_LOG_LEVEL = "INFO"

_ENV_FLOATS = {
    "CARTMERGE_PHASE_TIMEOUT": "phase_timeout",
    "CARTMERGE_OPERATION_TIMEOUT": "operation_timeout",
    "CARTMERGE_SETTLE_DELAY": "settle_delay",
}
_ENV_INTS = {
    "CARTMERGE_ORDER_LIMIT": "order_limit",
}


class Thresholds(BaseModel):
    """Heuristic cutoffs. None of these has a derivation; keep them tunable."""
    price_tolerance: float = Field(0.001, description="Prices closer than this are equal")
    price_alert_threshold: float = Field(
        5.0, description="Cart total increase that requires attention at review"
    )
    max_price_increase_percent: float = Field(
        20.0, description="Largest acceptable substitute price increase"
    )
    store_brand_bonus_percent: float = Field(
        5.0, description="Extra increase allowed when switching to a store brand"
    )


class SiteConfig(BaseModel):
    base_url: str = "https://www.auchan.pt"
    order_history_path: str = "/pt/historico-encomendas"
    cart_path: str = "/pt/cart"
    delivery_slots_path: str = "/pt/checkout/delivery"

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return self.base_url.rstrip("/") + "/" + path.lstrip("/")

    @property
    def host(self) -> str:
        return self.base_url.split("://", 1)[-1].split("/", 1)[0]


class OrchestratorConfig(BaseModel):
    order_limit: int = Field(DEFAULT_ORDER_LIMIT, ge=1)
    history_limit: int = Field(DEFAULT_HISTORY_LIMIT, ge=1)
    phase_timeout: float = Field(DEFAULT_PHASE_TIMEOUT, gt=0)
    operation_timeout: float = Field(DEFAULT_OPERATION_TIMEOUT, gt=0)
    max_error_count: int = Field(DEFAULT_MAX_ERROR_COUNT, ge=0)
    settle_delay: float = Field(DEFAULT_SETTLE_DELAY, ge=0)
    max_substitute_candidates: int = 10
    site: SiteConfig = Field(default_factory=SiteConfig)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    slot_preferences: SlotPreferences = Field(default_factory=SlotPreferences)


def load_config(path: Path | None = None) -> OrchestratorConfig:
    """Build the orchestrator config.

    Values come from the YAML file at *path* (if given), then
    ``CARTMERGE_*`` environment variables override individual settings.

    Raises:
        ValueError: If an environment override is not a number.
    """
    data: dict[str, Any] = {}
    if path is not None:
        data = load_yaml(path) or {}
    for var, key in _ENV_FLOATS.items():
        raw = os.environ.get(var)
        if raw:
            data[key] = _parse_number(var, raw, float)
    for var, key in _ENV_INTS.items():
        raw = os.environ.get(var)
        if raw:
            data[key] = _parse_number(var, raw, int)
    return OrchestratorConfig.model_validate(data)


def get_state_dir() -> Path:
    """Return the state directory from ``CARTMERGE_STATE_DIR``."""
    raw = os.environ.get("CARTMERGE_STATE_DIR")
    return Path(raw) if raw else DEFAULT_STATE_DIR


def get_log_level() -> str:
    return os.environ.get("CARTMERGE_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()


def get_log_file() -> Path | None:
    raw = os.environ.get("CARTMERGE_LOG_FILE")
    return Path(raw) if raw else None


def _parse_number(var: str, raw: str, kind: type) -> Any:
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{var} must be a number, got {raw!r}") from None

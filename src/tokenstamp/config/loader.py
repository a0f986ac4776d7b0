from __future__ import annotations

import logging
from importlib.resources import files as resource_files
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from platformdirs import user_config_dir
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "TokenStamp"
CONFIG_FILENAME = "placement.yaml"


class RotationConfig(BaseModel):
    wheel_step_deg: float = Field(15.0, gt=0, le=180)
    fine_step_deg: float = Field(5.0, gt=0, le=180)
    default_random_strength_deg: float = Field(45.0, ge=0, le=180)
    max_random_strength_deg: float = Field(180.0, gt=0, le=180)


class ZoomConfig(BaseModel):
    wheel_factor: float = Field(1.25, gt=1.0, description="Scale multiplier per wheel notch")


class ScoringWeights(BaseModel):
    """Additive fuzzy-ranking weights. Empirically tuned; keep them stable."""

    exact: float = 50
    candidate_prefix: float = 20
    query_prefix: float = 12
    substring: float = 10
    token: float = 12
    token_substring: float = 6
    source_token: float = 3
    pack_token: float = 2
    all_tokens: float = 8
    token_count_penalty: float = 1.5
    world: float = 2
    source_label: float = 4


class MatchingConfig(BaseModel):
    auto_select_min_score: float = Field(35, ge=0)
    max_suggestions: int = Field(10, ge=1)
    max_results: int = Field(60, ge=1)
    min_containment_length: int = Field(3, ge=1)
    refresh_debounce_s: float = Field(0.15, ge=0)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)


class HPConfig(BaseModel):
    default_percent: int = Field(20, ge=0, le=500)
    max_percent: int = Field(500, ge=0)
    static_max_length: int = Field(120, ge=1)


class PlacementConfig(BaseModel):
    """Tunable constants for a placement session."""

    asset_kind: str = Field("tokens", description="Content kind passed to the download service")
    prefetch_count: int = Field(4, ge=1, le=64)
    strict_invariants: bool = Field(False, description="Raise on internal invariant violations")
    rotation: RotationConfig = Field(default_factory=RotationConfig)
    zoom: ZoomConfig = Field(default_factory=ZoomConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    hp: HPConfig = Field(default_factory=HPConfig)

    @field_validator("asset_kind")
    @classmethod
    def ensure_kind_not_blank(cls, v: str) -> str:
        value = str(v or "").strip()
        if not value:
            raise ValueError("asset_kind must not be empty")
        return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(text: str, origin: str) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {origin}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a mapping at the top of {origin}")
    return raw


def default_user_config_path() -> Path:
    return Path(user_config_dir(appname=APP_NAME)) / CONFIG_FILENAME


def load_placement_config(
    path: Optional[Union[str, Path]] = None,
    *,
    include_user: bool = True,
) -> PlacementConfig:
    """Load placement configuration from YAML.

    The embedded default resource ``tokenstamp/config/placement.yaml`` is
    always read first. When ``path`` is None and ``include_user`` is set, an
    optional ``placement.yaml`` in the user config directory is merged on top;
    otherwise the explicit ``path`` is merged.
    """
    data = resource_files("tokenstamp.config").joinpath(CONFIG_FILENAME).read_text(encoding="utf-8")
    merged = _read_yaml(data, "embedded placement config")
    logger.debug("Loaded embedded placement config resource")

    override_path: Optional[Path] = None
    if path is not None:
        override_path = Path(path)
        if not override_path.exists():
            raise ConfigError(f"Config file not found: {override_path}")
    elif include_user:
        candidate = default_user_config_path()
        if candidate.exists():
            override_path = candidate

    if override_path is not None:
        merged = _deep_merge(merged, _read_yaml(override_path.read_text(encoding="utf-8"), str(override_path)))
        logger.debug("Merged placement config override from path: %s", override_path)

    try:
        cfg = PlacementConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid placement config: {exc}") from exc
    logger.info(
        "Placement config: prefetch=%d | auto_select>=%s | strict=%s",
        cfg.prefetch_count,
        cfg.matching.auto_select_min_score,
        cfg.strict_invariants,
    )
    return cfg

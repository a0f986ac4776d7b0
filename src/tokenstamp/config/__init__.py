from .loader import (
    HPConfig,
    MatchingConfig,
    PlacementConfig,
    RotationConfig,
    ScoringWeights,
    ZoomConfig,
    default_user_config_path,
    load_placement_config,
)

__all__ = [
    "HPConfig",
    "MatchingConfig",
    "PlacementConfig",
    "RotationConfig",
    "ScoringWeights",
    "ZoomConfig",
    "default_user_config_path",
    "load_placement_config",
]

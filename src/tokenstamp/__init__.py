"""
Token Stamp package root.

Headless placement-session engine for stamping token assets onto a 2-D
scene. Rendering, pointer plumbing and storage are supplied by the owner
through the collaborator protocols in :mod:`tokenstamp.collaborators`.
"""
from importlib.metadata import PackageNotFoundError, version

from .entries import PlacementEntry, normalize
from .errors import (
    ConfigError,
    DownloadError,
    EntityImportError,
    FormulaError,
    InvariantViolation,
    TokenStampError,
)
from .hp import HPOverride, HPResolver
from .matching import EntityMatcher, MatchCandidate
from .prefetch import PrefetchQueue
from .session import PlacementSession

try:
    __version__ = version("tokenstamp")
except PackageNotFoundError:  # pragma: no cover - during tests without packaging
    __version__ = "0.0.0"

__all__ = [
    "__version__",
    "ConfigError",
    "DownloadError",
    "EntityImportError",
    "EntityMatcher",
    "FormulaError",
    "HPOverride",
    "HPResolver",
    "InvariantViolation",
    "MatchCandidate",
    "PlacementEntry",
    "PlacementSession",
    "PrefetchQueue",
    "TokenStampError",
    "normalize",
]

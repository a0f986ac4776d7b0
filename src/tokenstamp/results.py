from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Literal, TypeVar, Union

T = TypeVar("T")


class FailureKind(str, Enum):
    """Why a commit sub-step could not complete."""

    DOWNLOAD = "download"
    ASSET_UNAVAILABLE = "asset-unavailable"
    NO_COORDINATES = "no-coordinates"
    IMPORT = "import"
    MISSING_TARGET = "missing-target"
    FACTORY = "factory"
    STALE = "stale"

    @property
    def fatal(self) -> bool:
        """Fatal failures end the session; the rest leave it active for a retry."""
        return self not in (FailureKind.IMPORT, FailureKind.MISSING_TARGET, FailureKind.STALE)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    ok: Literal[False] = False


StepResult = Union[Ok[T], Failure]


class CommitOutcome(str, Enum):
    """Result of a single pointer-down as seen by the session owner."""

    PLACED_SCENE = "scene"
    PLACED_ENTITY = "entity"
    IGNORED = "ignored"
    FAILED = "failed"
    STALE = "stale"


__all__ = ["CommitOutcome", "Failure", "FailureKind", "Ok", "StepResult"]

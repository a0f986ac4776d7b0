from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Iterator

logger = logging.getLogger(__name__)


class PlacementContext:
    """Flags shared between the placement session and sibling subsystems.

    Lifecycle: created by the owner, passed to every session it starts and
    to the hover-preview / floating-text renderers that read it. Both flags
    are reference counted so nested holders never clear each other.

    - ``hover_suppressed``: hover previews of asset cards must stay hidden
      while a placement session is active.
    - ``scrolling_text_suppressed``: HP writes made by a commit must not
      spawn floating damage/heal text on the scene.
    """

    def __init__(self) -> None:
        self._hover_holds = 0
        self._scrolling_text_holds = 0

    @property
    def hover_suppressed(self) -> bool:
        return self._hover_holds > 0

    @property
    def scrolling_text_suppressed(self) -> bool:
        return self._scrolling_text_holds > 0

    def acquire_hover_suppression(self) -> None:
        self._hover_holds += 1
        logger.debug("Hover suppression acquired (holds=%d)", self._hover_holds)

    def release_hover_suppression(self) -> None:
        if self._hover_holds == 0:
            return
        self._hover_holds -= 1
        logger.debug("Hover suppression released (holds=%d)", self._hover_holds)

    @contextmanager
    def hover_suppression(self) -> Iterator[None]:
        self.acquire_hover_suppression()
        try:
            yield
        finally:
            self.release_hover_suppression()

    @asynccontextmanager
    async def suppress_scrolling_text(self) -> AsyncIterator[None]:
        self._scrolling_text_holds += 1
        try:
            yield
        finally:
            self._scrolling_text_holds -= 1

"""Tile dispatch: which tile to render next and which are done.

Every tile is in exactly one of three states:

- *remaining*: not yet handed out,
- *taken*: handed to the renderer, result not yet blended,
- *submitted*: blended into the accumulation buffer.

A taken tile can be returned to the front of the queue with ``cancel``
when its result is discarded, and ``cancel_all`` rebuilds the queue
from everything that was never submitted.
"""

from __future__ import annotations

import logging
import random
from collections import deque

from errors import TileStateError
from seamtile.geometry import Tile, TileGrid

logger = logging.getLogger(__name__)


class TileDispatcher:
    """Hands out the tiles of one grid.

    Args:
        grid: Geometry of the render.
        rng: Random source for ``take_random``; a private one by default.
    """

    def __init__(self, grid: TileGrid, rng: random.Random | None = None) -> None:
        self.grid = grid
        self._all: list[Tile] = list(grid.tiles())
        self._remaining: deque[Tile] = deque(self._all)
        self._taken: set[Tile] = set()
        self._submitted: set[Tile] = set()
        self._rng = rng or random.Random()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def tiles_total(self) -> int:
        return len(self._all)

    @property
    def remaining(self) -> list[Tile]:
        return list(self._remaining)

    @property
    def taken(self) -> set[Tile]:
        return set(self._taken)

    @property
    def submitted(self) -> set[Tile]:
        return set(self._submitted)

    # ── Selection ────────────────────────────────────────────────────

    def _take_at(self, index: int) -> Tile:
        tile = self._remaining[index]
        del self._remaining[index]
        self._taken.add(tile)
        return tile

    def take_next(self) -> Tile | None:
        """First remaining tile in queue order."""
        if not self._remaining:
            return None
        tile = self._remaining.popleft()
        self._taken.add(tile)
        return tile

    def take_random(self) -> Tile | None:
        """A uniformly chosen remaining tile."""
        if not self._remaining:
            return None
        return self._take_at(self._rng.randrange(len(self._remaining)))

    def take_nearest(self, focus: tuple[float, float]) -> Tile | None:
        """The remaining tile whose center is closest to ``focus``.

        ``focus`` is an ``(x, y)`` point in output image coordinates; it
        is divided by the scale to compare against tile centers in the
        unpadded input image. Ties go to the tile found first in queue
        order.
        """
        if not self._remaining:
            return None
        focus_x = focus[0] / self.grid.scale
        focus_y = focus[1] / self.grid.scale
        closest_index = 0
        closest_distance = float("inf")
        for index, tile in enumerate(self._remaining):
            center_x, center_y = self.grid.image_center(tile)
            distance = (center_x - focus_x) ** 2 + (center_y - focus_y) ** 2
            if distance < closest_distance:
                closest_distance = distance
                closest_index = index
        return self._take_at(closest_index)

    def take(
        self,
        random_order: bool = False,
        focus: tuple[float, float] | None = None,
    ) -> Tile | None:
        """Pick a tile using the strategy selected by live parameters."""
        if focus is not None:
            return self.take_nearest(focus)
        if random_order:
            return self.take_random()
        return self.take_next()

    # ── State transitions ────────────────────────────────────────────

    def submit(self, tile: Tile) -> None:
        """Mark a taken tile as blended.

        Raises:
            TileStateError: If the tile was already submitted or never taken.
        """
        if tile in self._submitted:
            raise TileStateError(f"Tile ({tile.row}, {tile.col}) was already submitted")
        if tile not in self._taken:
            raise TileStateError(f"Tile ({tile.row}, {tile.col}) was not taken")
        self._taken.remove(tile)
        self._submitted.add(tile)

    def cancel(self, tile: Tile) -> None:
        """Return a taken tile to the front of the queue."""
        if tile not in self._taken:
            raise TileStateError(f"Tile ({tile.row}, {tile.col}) is not in flight")
        self._taken.remove(tile)
        self._remaining.appendleft(tile)
        logger.debug("Tile (%d, %d) returned to queue", tile.row, tile.col)

    def cancel_all(self) -> None:
        """Reset the queue to every tile that was never submitted."""
        self._taken.clear()
        self._remaining = deque(tile for tile in self._all if tile not in self._submitted)

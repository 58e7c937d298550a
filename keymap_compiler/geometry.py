"""
Module containing classes pertaining to the geometry of a target board, i.e. a sequence of keys
each represented by its electrical matrix position, its addressable light (if any) and its
visual coordinates, dimensions and rotation.
"""

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Literal

from pydantic import BaseModel, model_validator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, order=True)
class Position:
    """Electrical matrix coordinate of a key."""

    row: int
    col: int

    def __str__(self) -> str:
        return f"({self.row}, {self.col})"


@dataclass(slots=True)
class KeyGeometry:
    """
    Represents a physical key, in terms of its matrix position, light index and its top left
    coordinates, width, height and rotation in key units.
    """

    position: Position
    light_index: int | None = None
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0
    rotation: float = 0.0  # CW if positive

    @property
    def center_x(self) -> float:
        """Horizontal center of the key."""
        return self.x + self.width / 2


class SplitSpec(BaseModel):
    """
    Describes how a split board's matrix is divided into two halves. `boundary` is the first matrix row
    (or column, for `axis: col`) of the right half; if it is not given, the halves are told apart by the
    widest horizontal gap between key centers. `reverse_columns` states that the right half enumerates
    its matrix columns starting from the outer edge, so they need to be mirrored for display.
    """

    reverse_columns: bool = False
    axis: Literal["row", "col"] = "row"
    boundary: int | None = None


class BoardGeometry(BaseModel):
    """Geometry of a single board: its keys in layout macro order, matrix size and lighting facts."""

    keys: list[KeyGeometry]
    matrix_rows: int
    matrix_cols: int
    encoder_count: int = 0
    split: SplitSpec | None = None
    has_lighting: bool = False

    # number of addressable lights declared by the board, including decorative lights without a key
    light_count: int | None = None

    # number of described lights that do not sit under any key
    decorative_lights: int = 0

    @model_validator(mode="after")
    def check_keys(self):
        """Check that matrix positions and light indices are unique and in range."""
        positions = [k.position for k in self.keys]
        assert len(set(positions)) == len(positions), "Board geometry contains duplicate matrix positions"
        for pos in positions:
            assert 0 <= pos.row < self.matrix_rows and 0 <= pos.col < self.matrix_cols, (
                f"Matrix position {pos} is outside of the {self.matrix_rows}x{self.matrix_cols} matrix"
            )
        lights = [k.light_index for k in self.keys if k.light_index is not None]
        assert len(set(lights)) == len(lights), "Board geometry assigns the same light index to multiple keys"
        assert all(light >= 0 for light in lights), "Light indices cannot be negative"
        if self.light_count is not None and lights:
            assert max(lights) < self.light_count, (
                f"Light index {max(lights)} is outside of the declared light count {self.light_count}"
            )
        return self

    @property
    def total_lights(self) -> int:
        """Number of addressable lights, either declared or implied by the highest light index."""
        if self.light_count is not None:
            return self.light_count
        lights = [k.light_index for k in self.keys if k.light_index is not None]
        return max(lights) + 1 if lights else 0

    @property
    def keyed_lights(self) -> int:
        """Number of lights that sit under a key."""
        return sum(1 for k in self.keys if k.light_index is not None)

    @cached_property
    def halves(self) -> list[int]:
        """
        Half membership of every key in `keys` order, 0 for left and 1 for right.
        Unibody boards have all keys in half 0.
        """
        if self.split is None:
            return [0] * len(self.keys)

        if self.split.boundary is not None:
            boundary = self.split.boundary
            if self.split.axis == "row":
                return [int(k.position.row >= boundary) for k in self.keys]
            return [int(k.position.col >= boundary) for k in self.keys]

        centers = sorted({k.center_x for k in self.keys})
        if len(centers) < 2:
            return [0] * len(self.keys)
        gap, split_x = max((b - a, (a + b) / 2) for a, b in zip(centers, centers[1:]))
        logger.debug("inferred split boundary at x=%s from a gap of %s units", split_x, gap)
        return [int(k.center_x > split_x) for k in self.keys]

    def positions(self) -> list[Position]:
        """Matrix positions of all keys in layout macro order."""
        return [k.position for k in self.keys]

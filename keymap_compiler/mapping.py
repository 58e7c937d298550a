"""
Module containing the CoordinateMapper class, which translates between the three coordinate systems
of a board: visual slots (reading order on screen), matrix positions (electrical wiring) and light
indices (order in the addressable light chain).
"""

import logging

from keymap_compiler.geometry import BoardGeometry, KeyGeometry, Position

logger = logging.getLogger(__name__)


class CoordinateMapper:
    """
    Bidirectional lookup tables between visual slots, matrix positions, light indices and the
    layout macro (emission) order, built once from a BoardGeometry.

    Visual slots follow reading order: keys are grouped by row within their half and ordered by their
    display column. On split boards the right half follows the left half on the same visual row and,
    if the board declares reversed columns, its matrix columns are mirrored so that the column nearest
    to the split gap comes first. Light indices always stay in wiring order.

    All lookups of coordinates that are not part of the geometry return None.
    """

    def __init__(self, geometry: BoardGeometry):
        self.geometry = geometry

        self._matrix_to_visual: dict[Position, int] = {}
        self._visual_to_matrix: list[Position] = []
        self._matrix_to_light: dict[Position, int] = {}
        self._light_to_matrix: dict[int, Position] = {}
        self._matrix_to_emission: dict[Position, int] = {}
        self._emission_to_matrix: list[Position] = []

        cells = self._visual_cells()
        for emission_index, key in enumerate(geometry.keys):
            self._matrix_to_emission[key.position] = emission_index
            self._emission_to_matrix.append(key.position)
            if key.light_index is not None:
                self._matrix_to_light[key.position] = key.light_index
                self._light_to_matrix[key.light_index] = key.position

        for slot, (_, pos) in enumerate(sorted(zip(cells, geometry.positions()))):
            self._matrix_to_visual[pos] = slot
            self._visual_to_matrix.append(pos)

        logger.debug(
            "built coordinate mapper for %d keys and %d lights", len(self._visual_to_matrix), self.light_count
        )

    def _visual_cells(self) -> list[tuple[int, int]]:
        """Calculate (visual row, display column) of every key in geometry order."""
        keys, halves = self.geometry.keys, self.geometry.halves
        if self.geometry.split is None:
            return [(k.position.row, k.position.col) for k in keys]

        # normalize each half so that its top left matrix cell is (0, 0)
        origins = {}
        for half in (0, 1):
            members = [k for k, h in zip(keys, halves) if h == half]
            if members:
                origins[half] = (min(k.position.row for k in members), min(k.position.col for k in members))

        def local(key: KeyGeometry, half: int) -> tuple[int, int]:
            row_0, col_0 = origins[half]
            return key.position.row - row_0, key.position.col - col_0

        widths = {half: 0 for half in (0, 1)}
        for key, half in zip(keys, halves):
            widths[half] = max(widths[half], local(key, half)[1] + 1)

        cells = []
        for key, half in zip(keys, halves):
            row, col = local(key, half)
            if half == 1:
                if self.geometry.split.reverse_columns:
                    col = widths[1] - 1 - col
                col += widths[0]
            cells.append((row, col))
        return cells

    @property
    def key_count(self) -> int:
        """Number of keys on the board."""
        return len(self._visual_to_matrix)

    @property
    def light_count(self) -> int:
        """Number of addressable lights on the board, including the ones without keys."""
        return self.geometry.total_lights

    def __contains__(self, pos: Position) -> bool:
        return pos in self._matrix_to_visual

    def matrix_to_visual(self, pos: Position) -> int | None:
        """Get the visual slot of the key at the given matrix position."""
        return self._matrix_to_visual.get(pos)

    def visual_to_matrix(self, slot: int) -> Position | None:
        """Get the matrix position of the key at the given visual slot."""
        if 0 <= slot < len(self._visual_to_matrix):
            return self._visual_to_matrix[slot]
        return None

    def matrix_to_light(self, pos: Position) -> int | None:
        """Get the light index under the key at the given matrix position, if it has one."""
        return self._matrix_to_light.get(pos)

    def light_to_matrix(self, light: int) -> Position | None:
        """Get the matrix position of the key over the given light, if there is one."""
        return self._light_to_matrix.get(light)

    def visual_to_light(self, slot: int) -> int | None:
        """Get the light index under the key at the given visual slot."""
        if (pos := self.visual_to_matrix(slot)) is None:
            return None
        assert pos in self._matrix_to_emission, f"Mapper lost track of its own position {pos}"
        return self._matrix_to_light.get(pos)

    def matrix_to_emission(self, pos: Position) -> int | None:
        """Get the index of the key in the board's layout macro argument order."""
        return self._matrix_to_emission.get(pos)

    def emission_order(self) -> list[Position]:
        """Matrix positions in the order the board's layout macro expects its arguments."""
        return list(self._emission_to_matrix)

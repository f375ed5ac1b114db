"""Cell store and merge engine.

Each cell is a last-writer-wins register: a (value, timestamp) pair. The
newer timestamp wins; equal timestamps are resolved by tie_break so that
replicas converge regardless of delivery order or duplication.
"""

import logging
from typing import Iterator, NamedTuple

from .marks import EMPTY, Mark, tie_break

logger = logging.getLogger(__name__)


class Cell(NamedTuple):
    """A single register."""

    value: Mark = EMPTY
    timestamp: int = 0


EMPTY_CELL = Cell()


def merge_cell(cell: Cell, value: Mark, timestamp: int) -> Cell:
    """Merge an incoming write into a register.

    Args:
        cell: Current register state.
        value: Incoming value.
        timestamp: Incoming logical timestamp.

    Returns:
        The merged register. Stale writes return ``cell`` unchanged.
    """
    if timestamp > cell.timestamp:
        return Cell(value, timestamp)
    if timestamp == cell.timestamp:
        return Cell(tie_break(cell.value, value), timestamp)
    return cell


class Grid:
    """Fixed-size W x H grid of registers addressed by offset = y * W + x."""

    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ValueError(f"Grid dimensions must be positive, got {width}x{height}")
        self._width = width
        self._height = height
        self._cells: list[Cell] = [EMPTY_CELL] * (width * height)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def size(self) -> int:
        return self._width * self._height

    def offset(self, x: int, y: int) -> int:
        if not self.in_bounds(x, y):
            raise IndexError(f"Cell ({x}, {y}) outside {self._width}x{self._height} grid")
        return y * self._width + x

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self._width and 0 <= y < self._height

    def valid_offset(self, offset: int) -> bool:
        return (
            isinstance(offset, int)
            and not isinstance(offset, bool)
            and 0 <= offset < self.size
        )

    def __getitem__(self, offset: int) -> Cell:
        return self._cells[offset]

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[Cell]:
        return iter(self._cells)

    def apply(self, offset: int, value: Mark, timestamp: int) -> bool:
        """Merge a write into one cell.

        Returns:
            True if the cell changed.
        """
        current = self._cells[offset]
        merged = merge_cell(current, value, timestamp)
        if merged == current:
            return False
        self._cells[offset] = merged
        return True

    def load_cells(self, cells: list[Cell]) -> None:
        """Replace every register, e.g. from a snapshot."""
        if len(cells) != self.size:
            raise ValueError(f"Expected {self.size} cells, got {len(cells)}")
        self._cells = list(cells)

    def values(self) -> list[Mark]:
        return [cell.value for cell in self._cells]

    def rows(self) -> list[list[Mark]]:
        """Values row by row, for rendering."""
        values = self.values()
        return [
            values[y * self._width:(y + 1) * self._width]
            for y in range(self._height)
        ]

    def painted_count(self) -> int:
        return sum(1 for cell in self._cells if not cell.value.is_empty)

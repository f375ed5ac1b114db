"""Cell payloads.

A deployment picks one MarkKind; every non-empty Mark in that grid is of
that kind. EMPTY is shared by all kinds.
"""

from dataclasses import dataclass
from enum import Enum


class MarkKind(Enum):
    """The kind of mark a grid stores."""

    BOOL = "bool"
    INTENSITY = "intensity"
    COLOR = "color"

    @property
    def rank(self) -> int:
        return _KIND_RANK[self]

    def parse(self, text: str) -> "Mark":
        """Parse the text form used in config files and the CLI."""
        text = text.strip()
        if self is MarkKind.COLOR:
            return Mark.of_color(text)
        try:
            number = int(text)
        except ValueError as e:
            raise ValueError(f"Invalid {self.value} mark: {text!r}") from e
        if self is MarkKind.BOOL:
            if number not in (0, 1):
                raise ValueError(f"Invalid bool mark: {text!r}")
            return Mark.of_bool(bool(number))
        return Mark.of_intensity(number)

    def to_wire(self, mark: "Mark") -> int | str:
        """Convert a mark to its wire value (0 / "" for EMPTY)."""
        if mark.is_empty:
            return "" if self is MarkKind.COLOR else 0
        if mark.kind is not self:
            raise ValueError(f"Mark {mark} is not of kind {self.value}")
        if self is MarkKind.BOOL:
            return 1
        return mark.value

    def from_wire(self, raw: int | str) -> "Mark":
        """Convert a wire value back to a mark."""
        if self is MarkKind.COLOR:
            if not isinstance(raw, str):
                raise ValueError(f"Expected color id, got {raw!r}")
            return Mark.of_color(raw)
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValueError(f"Expected integer mark, got {raw!r}")
        if self is MarkKind.BOOL:
            if raw not in (0, 1):
                raise ValueError(f"Invalid bool mark value: {raw}")
            return Mark.of_bool(raw == 1)
        return Mark.of_intensity(raw)


@dataclass(frozen=True)
class Mark:
    """A cell value. Use the constructors, which normalize zero to EMPTY."""

    kind: MarkKind | None = None
    value: int | str | None = None

    @classmethod
    def of_bool(cls, flag: bool) -> "Mark":
        return cls(MarkKind.BOOL, 1) if flag else EMPTY

    @classmethod
    def of_intensity(cls, level: int) -> "Mark":
        if not 0 <= level <= 255:
            raise ValueError(f"Intensity out of range: {level}")
        return cls(MarkKind.INTENSITY, level) if level else EMPTY

    @classmethod
    def of_color(cls, color_id: str) -> "Mark":
        return cls(MarkKind.COLOR, color_id) if color_id else EMPTY

    @property
    def is_empty(self) -> bool:
        return self.kind is None

    def sort_key(self) -> tuple:
        """Total order used by tie_break."""
        if self.kind is None:
            return (0, 0)
        return (self.kind.rank, self.value)

    def __str__(self) -> str:
        if self.kind is None:
            return "empty"
        return f"{self.kind.value}:{self.value}"


EMPTY = Mark()

_KIND_RANK = {
    MarkKind.BOOL: 1,
    MarkKind.INTENSITY: 2,
    MarkKind.COLOR: 3,
}


def tie_break(a: Mark, b: Mark) -> Mark:
    """Resolve two values written with the same timestamp.

    Picks the larger mark under a fixed total order, so the result depends
    only on the two values and never on delivery order. For integer kinds
    this is the numeric max; a set cell beats an erased one.
    """
    return a if a.sort_key() >= b.sort_key() else b


class BrushMode(Enum):
    TOGGLE = "toggle"
    FIXED = "fixed"


@dataclass(frozen=True)
class Brush:
    """Chooses the paint value when a stroke starts."""

    mark: Mark
    mode: BrushMode = BrushMode.TOGGLE

    def paint_value(self, current: Mark) -> Mark:
        if self.mode is BrushMode.FIXED:
            return self.mark
        # Toggle: pressing on a painted cell erases for the whole stroke
        return EMPTY if not current.is_empty else self.mark

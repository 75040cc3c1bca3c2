"""Geometry data model for power-grid layout snapshots.

All coordinates are integer database units (DBU). Routing layers are
identified by their routing level, 1 being the lowest metal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

Point = Tuple[int, int]


class SigType(Enum):
    """Signal type of a supply net."""
    POWER = 'power'
    GROUND = 'ground'


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle (xlo, ylo) - (xhi, yhi), edges inclusive."""
    xlo: int
    ylo: int
    xhi: int
    yhi: int

    def __post_init__(self):
        if self.xhi < self.xlo or self.yhi < self.ylo:
            raise ValueError(f"Malformed rectangle {self}")

    @property
    def dx(self) -> int:
        return self.xhi - self.xlo

    @property
    def dy(self) -> int:
        return self.yhi - self.ylo

    @property
    def center(self) -> Point:
        return ((self.xlo + self.xhi) // 2, (self.ylo + self.yhi) // 2)

    @property
    def is_horizontal(self) -> bool:
        """True if the long axis runs along x (squares count as horizontal)."""
        return self.dx >= self.dy

    def contains(self, x: int, y: int) -> bool:
        return self.xlo <= x <= self.xhi and self.ylo <= y <= self.yhi

    def overlaps(self, other: Rect) -> bool:
        return not (other.xhi < self.xlo or other.xlo > self.xhi
                    or other.yhi < self.ylo or other.ylo > self.yhi)

    def intersection(self, other: Rect) -> Optional[Rect]:
        if not self.overlaps(other):
            return None
        return Rect(max(self.xlo, other.xlo), max(self.ylo, other.ylo),
                    min(self.xhi, other.xhi), min(self.yhi, other.yhi))

    def bloat(self, amount: int) -> Rect:
        return Rect(self.xlo - amount, self.ylo - amount,
                    self.xhi + amount, self.yhi + amount)

    @classmethod
    def around(cls, x: int, y: int, size: int) -> Rect:
        """Square of side `size` centred on (x, y)."""
        half = size // 2
        return cls(x - half, y - half, x + half, y + half)

    @classmethod
    def bounding(cls, rects: List[Rect]) -> Rect:
        return cls(min(r.xlo for r in rects), min(r.ylo for r in rects),
                   max(r.xhi for r in rects), max(r.yhi for r in rects))


@dataclass(frozen=True)
class NodeEnclosure:
    """Metal overlap around a via cut on one layer, relative to the cut location."""
    neg_x: int
    pos_x: int
    neg_y: int
    pos_y: int

    @classmethod
    def from_rect(cls, loc: Point, rect: Rect) -> NodeEnclosure:
        x, y = loc
        return cls(x - rect.xlo, rect.xhi - x, y - rect.ylo, rect.yhi - y)

    def to_rect(self, loc: Point) -> Rect:
        x, y = loc
        return Rect(x - self.neg_x, y - self.neg_y, x + self.pos_x, y + self.pos_y)

    def covers(self, loc: Point, point: Point) -> bool:
        """True if `point` lies on the metal of this enclosure anchored at `loc`."""
        return self.to_rect(loc).contains(*point)


@dataclass(frozen=True)
class ViaCut:
    """Via location with the bottom and top layer metal enclosures."""
    loc: Point
    bot_encl: NodeEnclosure
    top_encl: NodeEnclosure
    cut_count: int = 1


@dataclass(frozen=True)
class ViaParams:
    """Regular cut array description of a generated via."""
    rows: int
    cols: int
    cut_width: int
    cut_height: int
    spacing_x: int = 0
    spacing_y: int = 0

    def cut_rects(self, x: int, y: int) -> List[Rect]:
        """Cut boxes of the array centred on (x, y)."""
        step_x = self.cut_width + self.spacing_x
        step_y = self.cut_height + self.spacing_y
        x0 = x - ((self.cols - 1) * step_x) // 2
        y0 = y - ((self.rows - 1) * step_y) // 2
        cuts = []
        for r in range(self.rows):
            for c in range(self.cols):
                cx = x0 + c * step_x
                cy = y0 + r * step_y
                cuts.append(Rect(cx - self.cut_width // 2, cy - self.cut_height // 2,
                                 cx + self.cut_width // 2, cy + self.cut_height // 2))
        return cuts


@dataclass(frozen=True)
class Wire:
    """Rectangular special-wire shape of a supply net on one routing layer."""
    layer: int
    rect: Rect

    @property
    def width(self) -> int:
        """Metal width across the current flow direction."""
        return self.rect.dy if self.rect.is_horizontal else self.rect.dx


@dataclass(frozen=True)
class Via:
    """Via instance between `bottom_layer` and `top_layer` centred at (x, y).

    Attributes:
        cuts: Explicit cut boxes; ignored when `params` is given
        params: Cut array description for generated vias
        enclosures: Metal box per routing level, when the via carries them
    """
    x: int
    y: int
    bottom_layer: int
    top_layer: int
    cuts: Tuple[Rect, ...] = ()
    params: Optional[ViaParams] = None
    enclosures: Dict[int, Rect] = field(default_factory=dict, hash=False, compare=False)

    @property
    def loc(self) -> Point:
        return (self.x, self.y)

    def cut_rects(self) -> List[Rect]:
        if self.params is not None:
            return self.params.cut_rects(self.x, self.y)
        if self.cuts:
            return list(self.cuts)
        return [Rect(self.x, self.y, self.x, self.y)]


@dataclass(frozen=True)
class MacroBlockage:
    """Placed hard macro; nets in `pass_through_nets` may place nodes above it."""
    name: str
    rect: Rect
    pass_through_nets: FrozenSet[str] = frozenset()

    def blocks(self, net: str, x: int, y: int) -> bool:
        return net not in self.pass_through_nets and self.rect.contains(x, y)


@dataclass(frozen=True)
class LayerTech:
    """Per-routing-layer technology constants.

    Attributes:
        name: Layer name, e.g. "metal1"
        level: Routing level (1 = lowest)
        sheet_resistance: Ohm per square
        via_resistance: Ohm per cut of the cut layer above this level
        pitch: Routing pitch in DBU (0 if unknown)
        em_limit: Electromigration limit in A per micron of width (None = unchecked)
    """
    name: str
    level: int
    sheet_resistance: float
    via_resistance: float = 0.0
    pitch: int = 0
    em_limit: Optional[float] = None


@dataclass(frozen=True)
class Pin:
    """Placed chip I/O pin shape of a supply net."""
    name: str
    rect: Rect
    layer: int


@dataclass(frozen=True)
class Instance:
    """Placed leaf cell instance.

    `supply_nets` lists the supply nets the instance draws from; an empty
    tuple means the instance belongs to every supply domain.
    """
    name: str
    bbox: Rect
    supply_nets: Tuple[str, ...] = ()

    @property
    def location(self) -> Point:
        return self.bbox.center

    def on_net(self, net: str) -> bool:
        return not self.supply_nets or net in self.supply_nets

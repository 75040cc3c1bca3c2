"""Translation of supply-net wire and via geometry into a resistor mesh.

Each routing layer is discretized independently into a `LayerPlan`: the node
locations on that layer and the wire resistors between consecutive nodes of
every wire. Nodes sit at wire ends, at via junctions, at contacts between
overlapping or abutting shapes of the layer, and (on the bottom
layer only, where instance current is attached) every `node_density` DBU
along each wire, except under macros the net may not cross. Via junctions
then tie layer plans together.

Plans are independent, so they may be computed by a thread pool; node
indices are assigned afterwards in ascending layer order, which keeps the
mesh identical for any worker count.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigurationError, GeometryError
from .geometry import LayerTech, MacroBlockage, NodeEnclosure, Point, Rect, Via, ViaCut, Wire
from .gmat import EdgeKind, GMat, check_valid_resistance

logger = logging.getLogger(__name__)

DEFAULT_NODE_DENSITY_FACTOR = 5


@dataclass(frozen=True)
class ViaJunction:
    """One electrical via connection between adjacent routing levels."""
    cut: ViaCut
    bottom_layer: int
    bottom: Point
    top: Point
    resistance: float

    @property
    def top_layer(self) -> int:
        return self.bottom_layer + 1


@dataclass
class LayerPlan:
    """Node locations and wire resistors of one routing layer."""
    layer: int
    points: List[Point] = field(default_factory=list)
    # (point_a, point_b, resistance, width)
    segments: List[Tuple[Point, Point, float, int]] = field(default_factory=list)
    wires_skipped: int = 0


def compute_node_density(
    node_density_um: float,
    node_density_factor: int,
    bottom_tech: LayerTech,
    dbu_per_micron: int,
    bump_pitch_um: float,
) -> int:
    """Spacing in DBU between current-attachment nodes on the bottom layer.

    An absolute density in microns wins. Otherwise the density is the
    bottom-layer pitch times the factor (user value or 5), or, when the
    bottom layer has no pitch, the bump pitch divided by the factor.

    Raises:
        ConfigurationError: If the resulting density is not positive.
    """
    if node_density_um is not None and node_density_um > 0:
        density = int(round(node_density_um * dbu_per_micron))
        source = f"{node_density_um} um"
    else:
        factor = node_density_factor if node_density_factor and node_density_factor > 0 \
            else DEFAULT_NODE_DENSITY_FACTOR
        if bottom_tech.pitch > 0:
            density = bottom_tech.pitch * factor
            source = f"{factor} x {bottom_tech.name} pitch"
        else:
            density = int(round(bump_pitch_um * dbu_per_micron / factor))
            source = f"bump pitch / {factor}"
    if density <= 0:
        raise ConfigurationError(f"Invalid node density {density} DBU ({source})")
    logger.debug(f"Node density: {density} DBU ({source})")
    return density


def _centreline_point(rect: Rect, x: int, y: int) -> Point:
    """Point of the centreline of `rect` closest to (x, y)."""
    cx, cy = rect.center
    if rect.is_horizontal:
        return (min(max(x, rect.xlo), rect.xhi), cy)
    return (cx, min(max(y, rect.ylo), rect.yhi))


def _wire_contacts(wires: List[Wire]) -> Tuple[Dict[int, set], List[Tuple[Point, Point, int]]]:
    """Contact nodes between same-layer wires whose shapes overlap or abut.

    A crossing pair meets at the crossing of the two centrelines, a parallel
    pair at the middle of the overlap. Each wire receives that location
    projected onto its own centreline. When the two projections differ (offset
    parallel shapes, or a wire ending against the side of another) they are
    returned as a strap (p, q, width) whose width is the overlap extent across
    the strap.

    Returns:
        (wire index -> contact points, straps)
    """
    contacts: Dict[int, set] = {}
    straps: List[Tuple[Point, Point, int]] = []
    order = sorted(range(len(wires)), key=lambda k: wires[k].rect.xlo)
    for pos, i in enumerate(order):
        a = wires[i].rect
        for j in order[pos + 1:]:
            b = wires[j].rect
            if b.xlo > a.xhi:
                break
            overlap = a.intersection(b)
            if overlap is None:
                continue
            if a.is_horizontal != b.is_horizontal:
                h, v = (a, b) if a.is_horizontal else (b, a)
                x, y = v.center[0], h.center[1]
            else:
                x, y = overlap.center
            p = _centreline_point(a, x, y)
            q = _centreline_point(b, x, y)
            if p != q:
                across = overlap.dx if p[0] == q[0] else overlap.dy if p[1] == q[1] else 0
                width = across or max(overlap.dx, overlap.dy)
                if width <= 0:
                    # Corner-to-corner touch carries no current
                    continue
                straps.append((p, q, width))
            contacts.setdefault(i, set()).add(p)
            contacts.setdefault(j, set()).add(q)
    return contacts, straps


class MeshBuilder:
    """Builds the resistor mesh of one supply net into a `GMat`.

    Args:
        layout: Layout provider (see `pdn_ir.snapshot.DesignSnapshot`)
        net: Supply net name
        node_density: Bottom-layer node spacing in DBU
        parasitics: Optional provider of extracted per-layer resistance
        corner: Analysis corner forwarded to the parasitics provider
        workers: Thread count for per-layer discretization
    """

    def __init__(
        self,
        layout: Any,
        net: str,
        node_density: int,
        parasitics: Any = None,
        corner: Optional[str] = None,
        workers: int = 1,
    ):
        self.layout = layout
        self.net = net
        self.node_density = int(node_density)
        self.parasitics = parasitics
        self.corner = corner
        self.workers = max(1, int(workers))

        self.top_layer: Optional[int] = None
        self.bottom_layer: Optional[int] = None
        self.junctions: List[ViaJunction] = []
        self.macros: List[MacroBlockage] = []
        self._wires_by_layer: Dict[int, List[Wire]] = {}

    def build(self, gmat: GMat, connection_only: bool = False) -> GMat:
        """Populate `gmat` with the nodes and resistors of the net.

        With `connection_only` the bottom layer is not sampled at the node
        density; only wire ends and via junctions become nodes.
        """
        start = time.time()
        wires = self.layout.net_wires(self.net)
        if not wires:
            raise ConfigurationError(f"No power grid wires found for net {self.net}")

        self._wires_by_layer = {}
        for wire in sorted(wires, key=lambda w: (w.layer, w.rect.xlo, w.rect.ylo, w.rect.xhi, w.rect.yhi)):
            self._wires_by_layer.setdefault(wire.layer, []).append(wire)
        self.bottom_layer = min(self._wires_by_layer)
        self.top_layer = max(self._wires_by_layer)
        self.macros = self.layout.macro_blockages()
        logger.info(f"Net {self.net}: {len(wires)} wires on layers "
                    f"{self.bottom_layer}..{self.top_layer}, {len(self.macros)} macros")

        self.junctions = self._via_junctions(self.layout.net_vias(self.net))

        junction_points: Dict[int, set] = {}
        for j in self.junctions:
            junction_points.setdefault(j.bottom_layer, set()).add(j.bottom)
            junction_points.setdefault(j.top_layer, set()).add(j.top)

        levels = sorted(set(self._wires_by_layer) | set(junction_points))
        density = 0 if connection_only else self.node_density
        plans = self._plan_layers(levels, junction_points, density)

        for layer in levels:
            plan = plans[layer]
            for x, y in plan.points:
                gmat.add_node(x, y, layer)
            for a, b, resistance, width in plan.segments:
                u = gmat.node_index(a[0], a[1], layer)
                v = gmat.node_index(b[0], b[1], layer)
                gmat.add_resistance(u, v, resistance, EdgeKind.WIRE, layer, width)
            if plan.wires_skipped:
                logger.debug(f"Layer {layer}: skipped {plan.wires_skipped} wires without extent")

        for j in self.junctions:
            u = gmat.add_node(j.bottom[0], j.bottom[1], j.bottom_layer)
            v = gmat.add_node(j.top[0], j.top[1], j.top_layer)
            gmat.add_resistance(u, v, j.resistance, EdgeKind.VIA, j.bottom_layer, j.cut.cut_count)

        logger.info(f"Mesh for {self.net}: {gmat.num_nodes} nodes, {gmat.num_resistors} resistors, "
                    f"{len(self.junctions)} via junctions ({time.time() - start:.3f}s)")
        return gmat

    # =========================================================================
    # Layer discretization
    # =========================================================================

    def _plan_layers(self, levels: Sequence[int], junction_points: Dict[int, set],
                     density: int) -> Dict[int, LayerPlan]:
        def args_for(layer):
            return (layer, self._wires_by_layer.get(layer, []),
                    sorted(junction_points.get(layer, ())),
                    density if layer == self.bottom_layer else 0)

        plans: Dict[int, LayerPlan] = {}
        if self.workers == 1 or len(levels) == 1:
            for layer in levels:
                plans[layer] = self._plan_layer(*args_for(layer))
            return plans

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {executor.submit(self._plan_layer, *args_for(layer)): layer
                       for layer in levels}
            for future in as_completed(futures):
                layer = futures[future]
                try:
                    plans[layer] = future.result()
                except Exception as e:
                    logger.error(f"Discretization of layer {layer} failed: {e}")
                    raise
        return plans

    def _plan_layer(self, layer: int, wires: List[Wire], junction_points: List[Point],
                    density: int) -> LayerPlan:
        tech = self.layout.layer_tech(layer)
        r_per_um = None
        if self.parasitics is not None:
            r_per_um = self.parasitics.layer_resistance_per_micron(tech.name, self.corner)
        dbu = self.layout.dbu_per_micron

        def segment_resistance(p, q, length, width):
            if r_per_um is not None:
                resistance = r_per_um * length / dbu
            else:
                resistance = tech.sheet_resistance * length / width
            if not check_valid_resistance(resistance):
                raise GeometryError(
                    f"Non-positive resistance {resistance} on {tech.name} between {p} and {q}"
                )
            return resistance

        plan = LayerPlan(layer)
        points = set(junction_points)
        contacts, straps = _wire_contacts(wires)
        for i, wire in enumerate(wires):
            rect = wire.rect
            width = wire.width
            if width <= 0:
                raise GeometryError(f"Wire {rect} on layer {tech.name} has no width")
            if rect.is_horizontal:
                lo, hi, cross = rect.xlo, rect.xhi, rect.center[1]

                def make(a, c=cross):
                    return (a, c)

                def axial(p):
                    return (p[0], p[1])
            else:
                lo, hi, cross = rect.ylo, rect.yhi, rect.center[0]

                def make(a, c=cross):
                    return (c, a)

                def axial(p):
                    return (p[1], p[0])

            wire_points = {make(lo), make(hi)}
            wire_points.update(p for p in junction_points if rect.contains(*p))
            wire_points.update(contacts.get(i, ()))
            if density > 0:
                a = lo + density
                while a < hi:
                    p = make(a)
                    if not self._blocked(*p):
                        wire_points.add(p)
                    a += density
            if len(wire_points) < 2:
                plan.wires_skipped += 1
                continue

            ordered = sorted(wire_points, key=axial)
            for p, q in zip(ordered, ordered[1:]):
                ap, aq = axial(p), axial(q)
                # Coincident axial positions only occur for off-centre junctions
                length = abs(aq[0] - ap[0]) or abs(aq[1] - ap[1])
                plan.segments.append((p, q, segment_resistance(p, q, length, width), width))
            points.update(wire_points)

        # Shapes that touch without sharing a centreline point are joined across the overlap
        for p, q, width in straps:
            length = abs(p[0] - q[0]) + abs(p[1] - q[1])
            plan.segments.append((p, q, segment_resistance(p, q, length, width), width))
            points.update((p, q))

        plan.points = sorted(points)
        return plan

    def _blocked(self, x: int, y: int) -> bool:
        return any(m.blocks(self.net, x, y) for m in self.macros)

    # =========================================================================
    # Vias
    # =========================================================================

    def _via_junctions(self, vias: List[Via]) -> List[ViaJunction]:
        junctions = []
        for via in sorted(vias, key=lambda v: (v.bottom_layer, v.top_layer, v.x, v.y)):
            if via.top_layer <= via.bottom_layer:
                raise GeometryError(
                    f"Via at ({via.x}, {via.y}) has top layer {via.top_layer} "
                    f"not above bottom layer {via.bottom_layer}"
                )
            cuts = via.cut_rects()
            for lower in range(via.bottom_layer, via.top_layer):
                junctions.append(self._junction(via, cuts, lower))
        return junctions

    def _junction(self, via: Via, cuts: List[Rect], lower: int) -> ViaJunction:
        upper = lower + 1
        cut_box = Rect.bounding(cuts)
        bot_rect = self.via_enclosure(via, lower, cut_box)
        top_rect = self.via_enclosure(via, upper, cut_box)

        bot_encl = NodeEnclosure.from_rect(via.loc, bot_rect)
        top_encl = NodeEnclosure.from_rect(via.loc, top_rect)
        conducting = [c for c in cuts
                      if bot_encl.covers(via.loc, c.center) and top_encl.covers(via.loc, c.center)]
        if not conducting:
            raise GeometryError(
                f"Via at ({via.x}, {via.y}) between layers {lower} and {upper}: "
                f"no cut is covered by both enclosures"
            )
        tech = self.layout.layer_tech(lower)
        resistance = tech.via_resistance / len(conducting)
        if not check_valid_resistance(resistance):
            raise GeometryError(
                f"Non-positive via resistance {tech.via_resistance} above layer {tech.name}"
            )
        cut = ViaCut(
            loc=via.loc,
            bot_encl=bot_encl,
            top_encl=top_encl,
            cut_count=len(conducting),
        )
        return ViaJunction(
            cut=cut,
            bottom_layer=lower,
            bottom=self._snap(via.loc, lower),
            top=self._snap(via.loc, upper),
            resistance=resistance,
        )

    def via_enclosure(self, via: Via, layer: int, cut_box: Rect) -> Rect:
        """Metal covering the via cuts on `layer`.

        Explicit via enclosures win. Otherwise the enclosure is taken from the
        first net wire on that layer containing the via centre, clipped to the
        cut box grown by the wire width. Intermediate levels of a stacked via
        default to a landing pad the size of the cut box.

        Raises:
            GeometryError: If no metal can be found for the via on `layer`.
        """
        if layer in via.enclosures:
            return via.enclosures[layer]
        for wire in self._wires_by_layer.get(layer, []):
            if wire.rect.contains(via.x, via.y):
                return wire.rect.intersection(cut_box.bloat(wire.width))
        if via.bottom_layer < layer < via.top_layer:
            return cut_box
        raise GeometryError(
            f"Unable to map enclosure of via at ({via.x}, {via.y}) on layer {layer}: "
            f"no {self.net} metal overlaps it"
        )

    def _snap(self, loc: Point, layer: int) -> Point:
        """Project a via location onto the centreline of the wire carrying it."""
        x, y = loc
        for wire in self._wires_by_layer.get(layer, []):
            if wire.rect.contains(x, y):
                cx, cy = wire.rect.center
                return (x, cy) if wire.rect.is_horizontal else (cx, y)
        return loc

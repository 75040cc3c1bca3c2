"""Voltage source resolution and attachment.

Sources come from one of three origins, in priority order:

  1. A user source file (`SourceKind.USER_SPECIFIED`)
  2. Chip I/O pins placed on the supply net (`SourceKind.PIN`)
  3. A synthesized uniform bump grid over the die (`SourceKind.BUMP_GRID`)

Each resolved source is snapped to mesh nodes on the top routing layer of
the net; those nodes become fixed-voltage (Dirichlet) boundary nodes.

Source file format, one source per line (comma or whitespace separated):

    # x_um  y_um  size_um  [voltage  [layer]]
    100.0  100.0  10.0
    240.0  100.0  10.0  1.05
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigurationError
from .geometry import Rect, SigType
from .gmat import GMat

logger = logging.getLogger(__name__)

DEFAULT_BUMP_PITCH_UM = 140.0
DEFAULT_BUMP_SIZE_UM = 10.0


class SourceKind(Enum):
    """Origin of a voltage source."""
    USER_SPECIFIED = 'user'
    PIN = 'pin'
    BUMP_GRID = 'bump'


@dataclass(frozen=True)
class SourceData:
    """Voltage source contact.

    Attributes:
        x, y: Contact centre in DBU
        size: Contact square side in DBU
        voltage: Fixed voltage (V)
        layer: Routing level the contact lands on
        kind: Where the source came from
    """
    x: int
    y: int
    size: int
    voltage: float
    layer: int
    kind: SourceKind = SourceKind.USER_SPECIFIED

    @property
    def user_specified(self) -> bool:
        return self.kind == SourceKind.USER_SPECIFIED

    @property
    def contact(self) -> Rect:
        return Rect.around(self.x, self.y, self.size)


def read_source_file(
    path: Union[str, Path],
    dbu_per_micron: int,
    default_voltage: Optional[float],
    default_layer: int,
    layer_names: Optional[Dict[str, int]] = None,
) -> List[SourceData]:
    """Parse a user source file into `SourceData` records.

    Args:
        path: Source file
        dbu_per_micron: Conversion from file microns to DBU
        default_voltage: Voltage used when a line has none
        default_layer: Routing level used when a line has none
        layer_names: Layer name -> routing level, for named layers

    Raises:
        ConfigurationError: On unreadable files, malformed lines, or a line
            without voltage when no default voltage exists.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Voltage source file {path} does not exist")
    layer_names = layer_names or {}
    sources = []
    with open(path) as f:
        for lineno, raw in enumerate(f, 1):
            line = raw.split('#', 1)[0].strip()
            if not line:
                continue
            fields = [t for t in re.split(r'[,\s]+', line) if t]
            if len(fields) < 3 or len(fields) > 5:
                raise ConfigurationError(f"{path}:{lineno}: expected 'x y size [voltage [layer]]'")
            try:
                x_um, y_um, size_um = (float(t) for t in fields[:3])
                voltage = float(fields[3]) if len(fields) > 3 else default_voltage
            except ValueError:
                raise ConfigurationError(f"{path}:{lineno}: malformed number in '{line}'") from None
            if voltage is None:
                raise ConfigurationError(f"{path}:{lineno}: no voltage given and no default voltage for the net")
            layer = default_layer
            if len(fields) > 4:
                token = fields[4]
                if token in layer_names:
                    layer = layer_names[token]
                elif token.isdigit():
                    layer = int(token)
                else:
                    raise ConfigurationError(f"{path}:{lineno}: unknown layer '{token}'")
            sources.append(SourceData(
                x=int(round(x_um * dbu_per_micron)),
                y=int(round(y_um * dbu_per_micron)),
                size=int(round(size_um * dbu_per_micron)),
                voltage=voltage,
                layer=layer,
                kind=SourceKind.USER_SPECIFIED,
            ))
    logger.info(f"Read {len(sources)} voltage sources from {path}")
    return sources


class SourceManager:
    """Resolves the voltage sources of a net and marks them in the mesh.

    Args:
        layout: Layout provider
        power: Power provider (supplies the corner VDD/VSS)
        net: Analyzed supply net
        net_voltage_map: Per-net voltage overrides
        corner: Analysis corner
        vsrc_file: Optional user source file
        bump_pitch_x, bump_pitch_y: Bump grid pitch (um); 0 selects the default
        bump_size: Bump contact size (um)
    """

    def __init__(
        self,
        layout: Any,
        power: Any,
        net: str,
        net_voltage_map: Optional[Dict[str, float]] = None,
        corner: Optional[str] = None,
        vsrc_file: Optional[Union[str, Path]] = None,
        bump_pitch_x: float = 0.0,
        bump_pitch_y: float = 0.0,
        bump_size: float = DEFAULT_BUMP_SIZE_UM,
    ):
        if not layout.has_net(net):
            raise ConfigurationError(f"Cannot find net {net} in the design")
        self.layout = layout
        self.power = power
        self.net = net
        self.net_voltage_map = dict(net_voltage_map or {})
        self.corner = corner
        self.vsrc_file = vsrc_file
        self.bump_pitch_x = bump_pitch_x if bump_pitch_x > 0 else DEFAULT_BUMP_PITCH_UM
        self.bump_pitch_y = bump_pitch_y if bump_pitch_y > 0 else DEFAULT_BUMP_PITCH_UM
        self.bump_size = bump_size
        self.sig_type: SigType = layout.net_sig_type(net)
        self.sources: List[SourceData] = []
        self.voltage: Optional[float] = None

    # =========================================================================
    # Voltages
    # =========================================================================

    def supply_voltages(self):
        """(VDD, VSS) of the analysis corner, or None when unknown."""
        if self.power is None:
            return None
        return self.power.supply_voltage(self.corner)

    def resolve_voltage(self, require_voltage: bool = True) -> Optional[float]:
        """Source voltage of the net.

        Resolution order: per-net override, the net's declared pin/pad
        voltage, then the corner supply voltage matching the net type.

        Raises:
            ConfigurationError: If `require_voltage` is set and nothing resolves,
                or a power net resolves to a non-positive voltage.
        """
        voltage = self.net_voltage_map.get(self.net)
        origin = 'net voltage override'
        if voltage is None:
            voltage = self.layout.net_voltage(self.net)
            origin = 'net declaration'
        if voltage is None:
            supply = self.supply_voltages()
            if supply is not None:
                voltage = supply[0] if self.sig_type == SigType.POWER else supply[1]
                origin = 'corner supply'
        if voltage is None:
            if require_voltage:
                logger.error(f"Voltage on net {self.net} is not explicitly set")
                raise ConfigurationError(
                    f"Voltage on net {self.net} is not set: add a net voltage override "
                    f"or a supply voltage for the corner"
                )
            return None
        voltage = float(voltage)
        if require_voltage and self.sig_type == SigType.POWER and not voltage > 0.0:
            raise ConfigurationError(f"Power net {self.net} has non-positive voltage {voltage}")
        logger.info(f"Voltage of net {self.net}: {voltage} V ({origin})")
        return voltage

    def conversion_voltage(self, source_voltage: float) -> float:
        """Voltage used to turn instance power into current.

        Power nets use their own source voltage. Ground nets carry the return
        current of the VDD domain, so the corner VDD (or an override for a
        power net of the design) is used.

        Raises:
            ConfigurationError: If no positive supply voltage can be found.
        """
        if self.sig_type == SigType.POWER:
            return source_voltage
        supply = self.supply_voltages()
        if supply is not None and supply[0] > 0:
            return float(supply[0])
        for name, value in sorted(self.net_voltage_map.items()):
            if self.layout.has_net(name) and self.layout.net_sig_type(name) == SigType.POWER and value > 0:
                return float(value)
        raise ConfigurationError(
            f"Cannot determine supply voltage for ground net {self.net}: "
            f"no corner VDD and no power net voltage override"
        )

    # =========================================================================
    # Source resolution
    # =========================================================================

    def resolve(self, top_layer: int, require_voltage: bool = True) -> List[SourceData]:
        """Build the source list of the net (user file, pins, then bump grid).

        The resolved net voltage is kept on `self.voltage` (None when it could
        not be resolved and `require_voltage` is off).
        """
        voltage = self.resolve_voltage(require_voltage)
        self.voltage = voltage
        if voltage is None:
            # Connection-only analysis does not need a voltage
            voltage = 0.0
        dbu = self.layout.dbu_per_micron

        if self.vsrc_file:
            levels = self.layout.routing_levels()
            names = {self.layout.layer_tech(level).name: level for level in levels}
            sources = read_source_file(self.vsrc_file, dbu, voltage, top_layer, names)
        else:
            sources = self._sources_from_pins(voltage)
            if sources:
                logger.info(f"Using {len(sources)} I/O pins of {self.net} as voltage sources")
            else:
                sources = self._sources_from_bumps(voltage, top_layer)
                logger.info(f"Using a {self.bump_pitch_x} um x {self.bump_pitch_y} um bump grid: "
                            f"{len(sources)} candidate bumps")

        if require_voltage and self.sig_type == SigType.POWER:
            for src in sources:
                if not src.voltage > 0.0:
                    raise ConfigurationError(
                        f"Source at ({src.x}, {src.y}) on {self.net} has non-positive voltage {src.voltage}"
                    )
        self.sources = sources
        return sources

    def _sources_from_pins(self, voltage: float) -> List[SourceData]:
        sources = []
        for pin in sorted(self.layout.net_pins(self.net),
                          key=lambda p: (p.layer, p.rect.xlo, p.rect.ylo, p.name)):
            x, y = pin.rect.center
            sources.append(SourceData(x, y, min(pin.rect.dx, pin.rect.dy), voltage,
                                      pin.layer, SourceKind.PIN))
        return sources

    def _sources_from_bumps(self, voltage: float, top_layer: int) -> List[SourceData]:
        dbu = self.layout.dbu_per_micron
        pitch_x = int(round(self.bump_pitch_x * dbu))
        pitch_y = int(round(self.bump_pitch_y * dbu))
        size = int(round(self.bump_size * dbu))
        if pitch_x <= 0 or pitch_y <= 0:
            raise ConfigurationError(f"Invalid bump pitch {self.bump_pitch_x} x {self.bump_pitch_y} um")
        die = self.layout.die_area
        # Ground bumps sit half a pitch off the power bumps
        offset_x = pitch_x // 2 if self.sig_type == SigType.GROUND else 0
        offset_y = pitch_y // 2 if self.sig_type == SigType.GROUND else 0
        sources = []
        y = die.ylo + pitch_y - offset_y
        while y < die.yhi:
            x = die.xlo + pitch_x - offset_x
            while x < die.xhi:
                sources.append(SourceData(x, y, size, voltage, top_layer, SourceKind.BUMP_GRID))
                x += pitch_x
            y += pitch_y
        return sources

    # =========================================================================
    # Attachment
    # =========================================================================

    def attach(self, gmat: GMat, top_layer: int, sources: Optional[List[SourceData]] = None) -> Dict[int, float]:
        """Snap sources to top-layer nodes and mark them as fixed-voltage nodes.

        User and pin sources attach to every top-layer node inside their
        contact square, else to the nearest top-layer node. Bump-grid sources
        fall back to the nearest node only within half a bump pitch and are
        dropped otherwise.

        Returns:
            Mapping of source node index -> fixed voltage.
        """
        sources = self.sources if sources is None else sources
        dbu = self.layout.dbu_per_micron
        bump_reach = 0.5 * min(self.bump_pitch_x, self.bump_pitch_y) * dbu
        source_nodes: Dict[int, float] = {}
        dropped = 0
        for src in sources:
            layer = src.layer if src.layer in gmat.layers else top_layer
            hits = gmat.nodes_in_rect(src.contact, layer)
            if not hits:
                nearest = gmat.nearest_node(src.x, src.y, layer)
                if nearest is None:
                    dropped += 1
                    continue
                node = gmat.node(nearest)
                if src.kind == SourceKind.BUMP_GRID and math.hypot(node.x - src.x, node.y - src.y) > bump_reach:
                    dropped += 1
                    continue
                hits = [nearest]
            for idx in hits:
                previous = source_nodes.get(idx)
                if previous is None:
                    source_nodes[idx] = src.voltage
                    gmat.mark_source(idx, src.voltage)
                    node = gmat.node(idx)
                    logger.debug(f"Source {src.kind.value} ({src.x}, {src.y}) -> node {idx} "
                                 f"({node.x}, {node.y}, L{node.layer}) at {src.voltage} V")
                elif previous != src.voltage:
                    node = gmat.node(idx)
                    logger.warning(f"Node ({node.x}, {node.y}, L{node.layer}) is claimed by sources "
                                   f"at {previous} V and {src.voltage} V; keeping {previous} V")
        if dropped:
            logger.warning(f"{dropped} voltage source(s) of {self.net} have no top-layer metal nearby and were dropped")
        logger.info(f"Attached {len(sources) - dropped} sources to {len(source_nodes)} nodes of {self.net}")
        return source_nodes

"""In-memory design snapshot acting as the layout, power and parasitics provider.

The IR solver only talks to its collaborators through a handful of duck-typed
methods (see `DesignSnapshot`). Any object exposing the same methods, for
example an adapter over a physical design database, can be passed instead.

JSON layout (all geometry in DBU, rectangles as [xlo, ylo, xhi, yhi]):

    {
      "dbu_per_micron": 1000,
      "die_area": [0, 0, 200000, 200000],
      "layers": [{"name": "metal1", "level": 1, "sheet_resistance": 0.08,
                  "via_resistance": 2.0, "pitch": 400}],
      "nets": {"VDD": {"sig_type": "power", "voltage": 1.1,
                       "wires": [{"layer": 1, "rect": [...]}],
                       "vias": [{"x": 0, "y": 0, "bottom_layer": 1, "top_layer": 2,
                                 "params": {"rows": 2, "cols": 2, ...}}],
                       "pins": [{"name": "VDD", "layer": 2, "rect": [...]}]}},
      "macros": [{"name": "ram0", "rect": [...], "pass_through_nets": []}],
      "instances": [{"name": "u1", "bbox": [...], "power": 1e-4}],
      "corners": {"slow": {"u1": 1.2e-4}},
      "supply_voltage": [1.1, 0.0],
      "layer_resistance": {"metal1": 0.4}
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ConfigurationError
from .geometry import (
    Instance, LayerTech, MacroBlockage, Pin, Rect, SigType, Via, ViaParams, Wire,
)

logger = logging.getLogger(__name__)


@dataclass
class NetGeometry:
    """Special (power/ground) wiring of one supply net."""
    name: str
    sig_type: SigType = SigType.POWER
    voltage: Optional[float] = None
    wires: List[Wire] = field(default_factory=list)
    vias: List[Via] = field(default_factory=list)
    pins: List[Pin] = field(default_factory=list)


@dataclass
class DesignSnapshot:
    """Layout + power + parasitics snapshot of a placed design.

    Attributes:
        die_area: Die outline in DBU
        layers: Routing level -> technology constants
        nets: Supply net name -> wiring
        macros: Hard macro placements
        instances: Leaf cell instances
        power: Instance name -> total power (W) for the default corner
        corner_power: Corner name -> (instance name -> power) overrides
        supply: (VDD, VSS) supply voltages of the timing corner, if known
        layer_resistance: Extracted wire resistance per layer name (ohm/um)
    """
    die_area: Rect
    layers: Dict[int, LayerTech]
    nets: Dict[str, NetGeometry]
    dbu_per_micron: int = 1000
    macros: List[MacroBlockage] = field(default_factory=list)
    instances: List[Instance] = field(default_factory=list)
    power: Dict[str, float] = field(default_factory=dict)
    corner_power: Dict[str, Dict[str, float]] = field(default_factory=dict)
    supply: Optional[Tuple[float, float]] = None
    layer_resistance: Dict[str, float] = field(default_factory=dict)

    # =========================================================================
    # Layout provider
    # =========================================================================

    def has_net(self, net: str) -> bool:
        return net in self.nets

    def net_sig_type(self, net: str) -> SigType:
        return self.nets[net].sig_type

    def net_voltage(self, net: str) -> Optional[float]:
        return self.nets[net].voltage

    def net_wires(self, net: str) -> List[Wire]:
        return list(self.nets[net].wires)

    def net_vias(self, net: str) -> List[Via]:
        return list(self.nets[net].vias)

    def net_pins(self, net: str) -> List[Pin]:
        return list(self.nets[net].pins)

    def macro_blockages(self) -> List[MacroBlockage]:
        return list(self.macros)

    def routing_levels(self) -> List[int]:
        return sorted(self.layers)

    def layer_tech(self, level: int) -> LayerTech:
        try:
            return self.layers[level]
        except KeyError:
            raise ConfigurationError(f"No technology data for routing level {level}") from None

    # =========================================================================
    # Power provider
    # =========================================================================

    def instance_powers(self, corner: Optional[str] = None) -> List[Tuple[Instance, float]]:
        """Total power of every leaf instance at `corner` (default corner if None)."""
        table = self.power
        if corner is not None:
            if corner not in self.corner_power:
                raise ConfigurationError(f"Unknown analysis corner '{corner}'")
            table = {**self.power, **self.corner_power[corner]}
        report = []
        total = 0.0
        for inst in self.instances:
            value = float(table.get(inst.name, 0.0))
            report.append((inst, value))
            total += value
            logger.debug(f"Power of instance {inst.name} is {value}")
        logger.debug(f"Total power: {total}")
        return report

    def supply_voltage(self, corner: Optional[str] = None) -> Optional[Tuple[float, float]]:
        return self.supply

    # =========================================================================
    # Parasitics provider
    # =========================================================================

    def layer_resistance_per_micron(self, layer_name: str, corner: Optional[str] = None) -> Optional[float]:
        return self.layer_resistance.get(layer_name)

    # =========================================================================
    # Serialization
    # =========================================================================

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DesignSnapshot:
        layers = {}
        for entry in data.get('layers', []):
            tech = LayerTech(
                name=entry['name'],
                level=int(entry['level']),
                sheet_resistance=float(entry['sheet_resistance']),
                via_resistance=float(entry.get('via_resistance', 0.0)),
                pitch=int(entry.get('pitch', 0)),
                em_limit=entry.get('em_limit'),
            )
            layers[tech.level] = tech

        nets = {}
        for name, entry in data.get('nets', {}).items():
            nets[name] = NetGeometry(
                name=name,
                sig_type=SigType(entry.get('sig_type', 'power')),
                voltage=entry.get('voltage'),
                wires=[Wire(int(w['layer']), _rect(w['rect'])) for w in entry.get('wires', [])],
                vias=[_via(v) for v in entry.get('vias', [])],
                pins=[Pin(p.get('name', name), _rect(p['rect']), int(p['layer']))
                      for p in entry.get('pins', [])],
            )

        macros = [
            MacroBlockage(m['name'], _rect(m['rect']), frozenset(m.get('pass_through_nets', [])))
            for m in data.get('macros', [])
        ]
        instances = []
        power = {}
        for entry in data.get('instances', []):
            instances.append(Instance(entry['name'], _rect(entry['bbox']),
                                      tuple(entry.get('supply_nets', ()))))
            if 'power' in entry:
                power[entry['name']] = float(entry['power'])

        supply = data.get('supply_voltage')
        return cls(
            die_area=_rect(data['die_area']),
            layers=layers,
            nets=nets,
            dbu_per_micron=int(data.get('dbu_per_micron', 1000)),
            macros=macros,
            instances=instances,
            power=power,
            corner_power={c: {k: float(v) for k, v in table.items()}
                          for c, table in data.get('corners', {}).items()},
            supply=tuple(supply) if supply is not None else None,
            layer_resistance={k: float(v) for k, v in data.get('layer_resistance', {}).items()},
        )


def _rect(values) -> Rect:
    xlo, ylo, xhi, yhi = (int(v) for v in values)
    return Rect(xlo, ylo, xhi, yhi)


def _via(entry: Dict[str, Any]) -> Via:
    params = entry.get('params')
    return Via(
        x=int(entry['x']),
        y=int(entry['y']),
        bottom_layer=int(entry['bottom_layer']),
        top_layer=int(entry['top_layer']),
        cuts=tuple(_rect(c) for c in entry.get('cuts', [])),
        params=ViaParams(**params) if params else None,
        enclosures={int(k): _rect(v) for k, v in entry.get('enclosures', {}).items()},
    )


def load_snapshot(path: Union[str, Path]) -> DesignSnapshot:
    """Load a `DesignSnapshot` from a JSON file."""
    path = Path(path)
    logger.info(f"Loading design snapshot from {path}")
    with open(path) as f:
        data = json.load(f)
    snapshot = DesignSnapshot.from_dict(data)
    logger.info(f"Loaded {len(snapshot.nets)} supply net(s), {len(snapshot.instances)} instances, "
                f"{len(snapshot.macros)} macros")
    return snapshot

"""Test fixtures for the IR-drop pipeline unit tests.

Provides factory functions for small hand-built design snapshots whose
electrical behaviour can be checked by hand.
"""

from typing import Dict, List, Optional, Tuple

from pdn_ir.geometry import Instance, LayerTech, MacroBlockage, Pin, Rect, SigType, Via, ViaParams, Wire
from pdn_ir.snapshot import DesignSnapshot, NetGeometry


GRID_DIE = Rect(0, 0, 200000, 200000)
M1_STRIPES_Y = [20000, 60000, 100000, 140000, 180000]
M2_STRIPES_X = [20000, 100000, 180000]
LOAD_POWER = 1e-3


def straight_wire_design(with_pin: bool = True, voltage: Optional[float] = 1.0) -> DesignSnapshot:
    """One metal1 wire, 100 DBU long and 1 DBU wide, sheet resistance 0.1.

    A pin sits on the left end (A) and a 1 W instance on the right end (B),
    so with a 1.0 V supply the wire carries 1 A through 10 ohm.
    Use node_density_um >= 100 (dbu_per_micron is 1) to keep two nodes.
    """
    wire = Wire(1, Rect(0, 0, 100, 1))
    pins = [Pin('VDD', Rect.around(0, 0, 2), 1)] if with_pin else []
    net = NetGeometry('VDD', SigType.POWER, voltage, wires=[wire], pins=pins)
    return DesignSnapshot(
        die_area=Rect(0, 0, 200, 200),
        layers={1: LayerTech('metal1', 1, 0.1)},
        nets={'VDD': net},
        dbu_per_micron=1,
        instances=[Instance('u_load', Rect(99, -1, 101, 1))],
        power={'u_load': 1.0},
    )


def grid_layers() -> Dict[int, LayerTech]:
    return {
        1: LayerTech('metal1', 1, 0.1, via_resistance=1.0, pitch=2000, em_limit=1e-4),
        2: LayerTech('metal2', 2, 0.05, via_resistance=0.5, pitch=10000),
        3: LayerTech('metal3', 3, 0.02, pitch=20000),
    }


def grid_net(name: str, sig_type: SigType, voltage: Optional[float]) -> NetGeometry:
    """Horizontal metal1 stripes, vertical metal2 stripes, a via at every crossing.

    Two metal2 pins sit on the top end of the left stripe and the bottom end
    of the right stripe.
    """
    wires: List[Wire] = []
    for y in M1_STRIPES_Y:
        wires.append(Wire(1, Rect(0, y - 500, 200000, y + 500)))
    for x in M2_STRIPES_X:
        wires.append(Wire(2, Rect(x - 1000, 0, x + 1000, 200000)))
    vias = [Via(x, y, 1, 2) for x in M2_STRIPES_X for y in M1_STRIPES_Y]
    pins = [
        Pin(name, Rect.around(20000, 200000, 2000), 2),
        Pin(name, Rect.around(180000, 0, 2000), 2),
    ]
    return NetGeometry(name, sig_type, voltage, wires=wires, vias=vias, pins=pins)


def grid_instances() -> List[Instance]:
    locations = [(50000, 60000), (140000, 100000), (60000, 180000), (160000, 20000)]
    return [Instance(f'u{i}', Rect.around(x, y, 2000)) for i, (x, y) in enumerate(locations)]


def grid_design(floating_island: bool = False) -> DesignSnapshot:
    """Two-layer VDD/VSS grid with four 1 mW loads.

    With `floating_island` a metal1 wire without any via is added to VDD,
    with a load sitting on it.
    """
    vdd = grid_net('VDD', SigType.POWER, 1.0)
    vss = grid_net('VSS', SigType.GROUND, 0.0)
    instances = grid_instances()
    if floating_island:
        vdd.wires.append(Wire(1, Rect(40000, 189500, 80000, 190500)))
        instances.append(Instance('u_float', Rect.around(60000, 190000, 2000), ('VDD',)))
    return DesignSnapshot(
        die_area=GRID_DIE,
        layers=grid_layers(),
        nets={'VDD': vdd, 'VSS': vss},
        instances=instances,
        power={inst.name: LOAD_POWER for inst in instances},
        corner_power={'slow': {'u0': 2 * LOAD_POWER}},
        supply=(1.0, 0.0),
        layer_resistance={},
    )


def single_wire_design(macros: Optional[List[MacroBlockage]] = None) -> DesignSnapshot:
    """A 100 um metal1 wire, 1 um wide, along y = 0 (dbu_per_micron 1000)."""
    net = NetGeometry('VDD', SigType.POWER, 1.0, wires=[Wire(1, Rect(0, -500, 100000, 500))])
    return DesignSnapshot(
        die_area=Rect(0, -50000, 100000, 50000),
        layers=grid_layers(),
        nets={'VDD': net},
        macros=list(macros or []),
    )


def via_design(via: Via, top_wire: bool = True) -> DesignSnapshot:
    """Crossing metal1/metal3 wires at (10000, 10000) joined by `via`."""
    wires = [Wire(1, Rect(0, 9500, 20000, 10500))]
    if top_wire:
        wires.append(Wire(3, Rect(9000, 0, 11000, 20000)))
    net = NetGeometry('VDD', SigType.POWER, 1.0, wires=wires, vias=[via])
    return DesignSnapshot(
        die_area=Rect(0, 0, 20000, 20000),
        layers=grid_layers(),
        nets={'VDD': net},
    )


def via_array(rows: int, cols: int) -> ViaParams:
    return ViaParams(rows=rows, cols=cols, cut_width=100, cut_height=100, spacing_x=100, spacing_y=100)


def design_dict() -> dict:
    """JSON-shaped description of a small VDD grid."""
    return {
        'dbu_per_micron': 1000,
        'die_area': [0, 0, 100000, 100000],
        'layers': [
            {'name': 'metal1', 'level': 1, 'sheet_resistance': 0.1, 'via_resistance': 1.0, 'pitch': 2000},
            {'name': 'metal2', 'level': 2, 'sheet_resistance': 0.05, 'pitch': 10000, 'em_limit': 0.5},
        ],
        'nets': {
            'VDD': {
                'sig_type': 'power',
                'voltage': 1.1,
                'wires': [
                    {'layer': 1, 'rect': [0, 19500, 100000, 20500]},
                    {'layer': 1, 'rect': [0, 79500, 100000, 80500]},
                    {'layer': 2, 'rect': [49000, 0, 51000, 100000]},
                ],
                'vias': [
                    {'x': 50000, 'y': 20000, 'bottom_layer': 1, 'top_layer': 2,
                     'params': {'rows': 1, 'cols': 2, 'cut_width': 100, 'cut_height': 100,
                                'spacing_x': 100}},
                    {'x': 50000, 'y': 80000, 'bottom_layer': 1, 'top_layer': 2},
                ],
                'pins': [{'name': 'VDD', 'layer': 2, 'rect': [49000, 99000, 51000, 101000]}],
            },
        },
        'macros': [{'name': 'ram0', 'rect': [0, 70000, 30000, 90000]}],
        'instances': [
            {'name': 'u1', 'bbox': [69000, 19000, 71000, 21000], 'power': 2e-3},
            {'name': 'u2', 'bbox': [89000, 79000, 91000, 81000], 'power': 1e-3},
        ],
        'corners': {'fast': {'u1': 3e-3}},
        'supply_voltage': [1.1, 0.0],
        'layer_resistance': {},
    }


def same_layer_design(rects: List[Rect], load_at: Optional[Tuple[int, int]] = None) -> DesignSnapshot:
    """metal1-only VDD net drawn as several shapes (dbu_per_micron 1, 0.1 ohm/sq).

    A pin sits at (0, 0); with `load_at` a 1 mW instance is centred there.
    """
    net = NetGeometry('VDD', SigType.POWER, 1.0,
                      wires=[Wire(1, rect) for rect in rects],
                      pins=[Pin('VDD', Rect.around(0, 0, 2), 1)])
    instances = [Instance('u_load', Rect.around(load_at[0], load_at[1], 2))] if load_at else []
    return DesignSnapshot(
        die_area=Rect(0, -200, 400, 400),
        layers={1: LayerTech('metal1', 1, 0.1)},
        nets={'VDD': net},
        dbu_per_micron=1,
        instances=instances,
        power={inst.name: LOAD_POWER for inst in instances},
    )

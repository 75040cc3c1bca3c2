"""Text artifacts of an IR-drop run: report, error file, EM report and SPICE netlist."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Union

import numpy as np

from .gmat import EdgeKind, GMat

if TYPE_CHECKING:
    from .ir_solver import IRDropResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _prepare(path: PathLike) -> Path:
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _fmt_v(value: float, spec: str = '.6f') -> str:
    return 'NaN' if not math.isfinite(value) else format(value, spec)


def write_voltage_report(path: PathLike, result: IRDropResult, gmat: GMat, top_k: int = 100) -> Path:
    """Summary plus per-instance voltage and the top-K worst bottom-layer nodes."""
    path = _prepare(path)
    nominal = result.supply_voltage
    bottom = [i for i in gmat.layer_nodes(result.bottom_layer)
              if math.isfinite(result.voltages[i])]
    worst_nodes = sorted(bottom, key=lambda i: abs(nominal - result.voltages[i]), reverse=True)

    with open(path, 'w') as f:
        f.write("IR Drop Report\n")
        f.write(f"Net: {result.net} ({result.sig_type.value})\n")
        if result.corner:
            f.write(f"Corner: {result.corner}\n")
        f.write(f"{'='*80}\n")
        f.write(f"Supply voltage:        {nominal:.6f} V\n")
        f.write(f"Worst case voltage:    {result.worst_case_voltage:.6f} V\n")
        f.write(f"Average voltage:       {result.average_voltage:.6f} V\n")
        f.write(f"Worst case IR drop:    {result.worst_case_drop*1000:.3f} mV\n")
        f.write(f"Average IR drop:       {result.average_drop*1000:.3f} mV\n")
        f.write(f"Max node current:      {result.max_current:.6e} A\n")
        f.write(f"Average node current:  {result.average_current:.6e} A\n")
        f.write(f"Total load current:    {result.total_current:.6e} A\n")
        f.write(f"Source current:        {result.source_current:.6e} A\n")
        f.write(f"Nodes / resistors:     {result.num_nodes} / {result.num_resistors}\n")
        f.write(f"Source nodes:          {result.num_sources}\n")
        f.write(f"Floating nodes:        {len(result.floating_nodes)}\n")
        f.write(f"{'='*80}\n\n")

        f.write(f"{'Instance':<40} {'Voltage(V)':<14} {'Drop(mV)':<12}\n")
        f.write(f"{'-'*66}\n")
        for name in sorted(result.instance_voltages):
            voltage = result.instance_voltages[name]
            drop = abs(nominal - voltage) * 1000 if math.isfinite(voltage) else math.nan
            f.write(f"{name:<40} {_fmt_v(voltage):<14} {_fmt_v(drop, '.3f'):<12}\n")

        f.write(f"\nTop-{top_k} worst nodes on layer {result.bottom_layer}\n")
        f.write(f"{'Rank':<6} {'X':<12} {'Y':<12} {'Voltage(V)':<14} {'Drop(mV)':<12}\n")
        f.write(f"{'-'*58}\n")
        for rank, idx in enumerate(worst_nodes[:top_k], 1):
            node = gmat.node(idx)
            voltage = result.voltages[idx]
            f.write(f"{rank:<6} {node.x:<12} {node.y:<12} {voltage:<14.6f} "
                    f"{abs(nominal - voltage)*1000:<12.3f}\n")
    logger.info(f"Saved IR drop report: {path}")
    return path


def write_error_file(path: PathLike, net: str, gmat: GMat, floating_nodes: List[int]) -> Path:
    """List of nodes that cannot reach a voltage source."""
    path = _prepare(path)
    with open(path, 'w') as f:
        if not floating_nodes:
            f.write(f"No floating nodes on net {net}\n")
        for idx in floating_nodes:
            node = gmat.node(idx)
            f.write(f"Unconnected PDN node on net {net} at location ({node.x}, {node.y}), "
                    f"layer: {node.layer}\n")
    logger.info(f"Saved connectivity error file: {path} ({len(floating_nodes)} entries)")
    return path


def edge_currents(gmat: GMat, voltages: np.ndarray) -> np.ndarray:
    """Current through every resistor in edge order, from node u to node v (A)."""
    u, v, g = gmat.edge_arrays()
    return (voltages[u] - voltages[v]) * g


def write_em_report(path: PathLike, gmat: GMat, voltages: np.ndarray, layout, dbu_per_micron: int) -> int:
    """Per-resistor current with violations against the layer EM limit.

    Wire current density is current per micron of width. Via current is
    divided evenly over the conducting cuts and the per-cut value is checked
    against the limit of the lower layer.

    Returns:
        Number of violations written.
    """
    path = _prepare(path)
    currents = edge_currents(gmat, voltages)
    violations = 0
    with open(path, 'w') as f:
        f.write(f"{'Kind':<5} {'Layer':<10} {'From':<26} {'To':<26} {'Current(A)':<14} "
                f"{'Density':<14} {'Limit':<12} Status\n")
        for edge, current in zip(gmat.iter_edges(), currents):
            if not math.isfinite(current):
                continue
            tech = layout.layer_tech(edge.layer)
            if edge.kind == EdgeKind.WIRE:
                width_um = edge.width / dbu_per_micron
                density = abs(current) / width_um if width_um > 0 else math.inf
            else:
                density = abs(current) / max(edge.width, 1)
            limit = tech.em_limit
            status = ''
            if limit is not None and density > limit:
                status = 'VIOLATION'
                violations += 1
            a, b = gmat.node(edge.u), gmat.node(edge.v)
            f.write(f"{edge.kind.value:<5} {tech.name:<10} "
                    f"{f'({a.x},{a.y},{a.layer})':<26} {f'({b.x},{b.y},{b.layer})':<26} "
                    f"{current:<14.6e} {density:<14.6e} "
                    f"{'-' if limit is None else f'{limit:.4g}':<12} {status}\n")
    if violations:
        logger.warning(f"{violations} electromigration violations written to {path}")
    else:
        logger.info(f"Saved EM report: {path}")
    return violations


def _spice_node(net: str, gmat: GMat, idx: int) -> str:
    node = gmat.node(idx)
    return f"{net}_{node.layer}_{node.x}_{node.y}"


def write_spice_netlist(path: PathLike, net: str, gmat: GMat, currents: Optional[np.ndarray] = None) -> Path:
    """Dump the resistor mesh with its sources as a SPICE deck.

    Every source node gets a V card to ground; every node with injected
    current gets an I card. SPICE current sources push current from the
    first to the second terminal, so a positive injection J into a node is
    written as `I n 0 -J`.
    """
    path = _prepare(path)
    with open(path, 'w') as f:
        f.write(f"* IR drop mesh of net {net}\n")
        f.write(f"* {gmat.num_nodes} nodes, {gmat.num_resistors} resistors\n")
        for i, edge in enumerate(gmat.iter_edges()):
            f.write(f"R{i} {_spice_node(net, gmat, edge.u)} {_spice_node(net, gmat, edge.v)} "
                    f"{edge.resistance:.9g}\n")
        for i, idx in enumerate(gmat.source_indices()):
            f.write(f"V{i} {_spice_node(net, gmat, idx)} 0 DC {gmat.node(idx).voltage:.9g}\n")
        if currents is not None:
            count = 0
            for idx in np.flatnonzero(currents):
                f.write(f"I{count} {_spice_node(net, gmat, int(idx))} 0 DC {-currents[idx]:.9g}\n")
                count += 1
        f.write(".END\n")
    logger.info(f"Saved SPICE netlist: {path}")
    return path


def voltage_map(gmat: GMat, voltages: np.ndarray) -> Dict[int, float]:
    """Node index -> voltage for every solved node."""
    return {i: float(v) for i, v in enumerate(voltages) if math.isfinite(v)}

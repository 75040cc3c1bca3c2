"""IR-drop analysis of one supply net.

`IRSolver` runs the full static pipeline:

    MeshBuilder -> SourceManager -> CurrentInjector -> ConnectivityChecker
    -> LinearSolver -> extract_metrics

The mesh, current vector and voltages are rebuilt on every call and belong
to the solver instance until the next call. Configuration, geometry and
connectivity failures raise before the linear solver runs; a solver failure
keeps the built mesh on the instance for a diagnostic SPICE dump.

Usage Examples:
    from pdn_ir import IRSolver, IRSolverConfig, load_snapshot

    design = load_snapshot('design.json')
    config = IRSolverConfig(power_net='VDD', out_file='vdd.rpt')
    result = IRSolver(config, design, design).solve()
    print(result.worst_case_drop)
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx
import numpy as np

from .config import IRSolverConfig
from .connectivity import ConnectivityChecker, ConnectivityReport
from .current import CurrentInjector, CurrentVector
from .errors import ConfigurationError, SolverError
from .geometry import Instance, SigType
from .gmat import GMat
from .linear_solver import LinearSolver, extract_metrics, source_currents
from .mesh_builder import MeshBuilder, compute_node_density
from .sources import SourceManager
from . import writers


@dataclass
class IRDropResult:
    """Outcome of one static IR-drop solve.

    Voltages are absolute node voltages (NaN for nodes no source reaches).
    Drops are positive magnitudes relative to the supply voltage.

    Attributes:
        net: Analyzed net
        sig_type: Power or ground
        corner: Analysis corner
        supply_voltage: Nominal source voltage of the net (V)
        bottom_layer: Routing level the metrics are taken on
        voltages: Voltage per node index
        currents: Injected current per node index (J)
        worst_case_voltage: Min (power) / max (ground) reported voltage
        average_voltage: Mean reported voltage
        max_current: Largest |J| at a single node (A)
        average_current: Mean |J| over the reported nodes (A)
        num_resistors: Edge count of the mesh
        num_nodes: Node count of the mesh
        num_sources: Fixed-voltage node count
        total_current: Load current of all analyzed instances (A)
        sourced_current: Load current landing directly on source nodes (A)
        source_current: Current delivered through the source nodes (A)
        floating_nodes: Current-injecting nodes no source reaches
        warnings: Non-fatal findings of the run
        residual: Relative residual of the reduced system
        solve_time: Seconds spent in the linear solver
        instance_voltages: Instance name -> mean voltage of its attachment nodes
    """
    net: str
    sig_type: SigType
    corner: Optional[str]
    supply_voltage: float
    bottom_layer: int
    voltages: np.ndarray
    currents: np.ndarray
    worst_case_voltage: float
    average_voltage: float
    max_current: float
    average_current: float
    num_resistors: int
    num_nodes: int
    num_sources: int
    total_current: float = 0.0
    sourced_current: float = 0.0
    source_current: float = 0.0
    floating_nodes: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    residual: float = 0.0
    solve_time: float = 0.0
    instance_voltages: Dict[str, float] = field(default_factory=dict)

    @property
    def worst_case_drop(self) -> float:
        return abs(self.supply_voltage - self.worst_case_voltage)

    @property
    def average_drop(self) -> float:
        return abs(self.supply_voltage - self.average_voltage)

    @property
    def confident(self) -> bool:
        """False when some current-injecting node could not be solved."""
        return not self.floating_nodes

    @property
    def injected_current(self) -> float:
        """Sum of |J|, the current the mesh itself has to carry (A)."""
        return float(np.abs(self.currents).sum())


class IRSolver:
    """Static IR-drop solver for one supply net.

    Args:
        config: Run configuration
        layout: Layout provider (wires, vias, pins, macros, layer tech)
        power: Power provider (instance power, corner supply voltage)
        parasitics: Optional extracted-resistance provider
    """

    def __init__(self, config: IRSolverConfig, layout: Any, power: Any, parasitics: Any = None):
        self.config = config.validate()
        self.layout = layout
        self.power = power
        self.parasitics = parasitics
        self.logger = logging.getLogger(__name__)

        self.source_manager = SourceManager(
            layout, power, config.power_net,
            net_voltage_map=config.net_voltage_map,
            corner=config.corner,
            vsrc_file=config.vsrc_file,
            bump_pitch_x=config.bump_pitch_x,
            bump_pitch_y=config.bump_pitch_y,
            bump_size=config.bump_size,
        )
        self.sig_type: SigType = self.source_manager.sig_type

        # Per-solve state, replaced on every build
        self.gmat: Optional[GMat] = None
        self.mesh_builder: Optional[MeshBuilder] = None
        self.source_nodes: Dict[int, float] = {}
        self.current_vector: Optional[CurrentVector] = None
        self.connectivity: Optional[ConnectivityReport] = None
        self.supply_voltage: Optional[float] = None
        self.result: Optional[IRDropResult] = None

    @property
    def net(self) -> str:
        return self.config.power_net

    # =========================================================================
    # Collaborator queries
    # =========================================================================

    def get_power(self) -> List[Tuple[Instance, float]]:
        """(instance, watts) for every leaf instance at the configured corner."""
        return self.power.instance_powers(self.config.corner)

    def get_supply_voltage(self) -> Optional[float]:
        """Resolved source voltage of the net, or None if it cannot be resolved."""
        return self.source_manager.resolve_voltage(require_voltage=False)

    def minimum_resolution(self) -> int:
        """Bottom-layer node spacing in DBU used for current attachment."""
        wires = self.layout.net_wires(self.net)
        if not wires:
            raise ConfigurationError(f"No power grid wires found for net {self.net}")
        bottom = min(w.layer for w in wires)
        return compute_node_density(
            self.config.node_density_um,
            self.config.node_density_factor,
            self.layout.layer_tech(bottom),
            self.layout.dbu_per_micron,
            min(self.source_manager.bump_pitch_x, self.source_manager.bump_pitch_y),
        )

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _build_mesh(self, connection_only: bool) -> GMat:
        self.gmat = None
        self.current_vector = None
        self.connectivity = None
        self.result = None

        gmat = GMat()
        self.mesh_builder = MeshBuilder(
            self.layout, self.net,
            node_density=self.minimum_resolution(),
            parasitics=self.parasitics,
            corner=self.config.corner,
            workers=self.config.workers,
        )
        self.mesh_builder.build(gmat, connection_only=connection_only)

        top = self.mesh_builder.top_layer
        self.source_manager.resolve(top, require_voltage=not connection_only)
        self.source_nodes = self.source_manager.attach(gmat, top)

        dangling = gmat.dangling_nodes()
        if dangling:
            self.logger.warning(f"{len(dangling)} nodes of {self.net} have no resistor attached")
        self.gmat = gmat
        return gmat

    def build(self) -> GMat:
        """Build mesh, sources and current vector, then check connectivity.

        Raises:
            ConfigurationError, GeometryError: On invalid inputs.
            ConnectivityError: If no current-injecting node reaches a source.
        """
        start = time.time()
        self.logger.info(f"Building IR drop model of net {self.net}")
        gmat = self._build_mesh(connection_only=False)

        self.supply_voltage = self.source_manager.voltage
        conversion = self.source_manager.conversion_voltage(self.supply_voltage)
        injector = CurrentInjector(self.net, self.sig_type, conversion,
                                   distribution=self.config.current_distribution)
        self.current_vector = injector.create_j(gmat, self.get_power(), self.mesh_builder.bottom_layer)

        checker = ConnectivityChecker(gmat, self.net)
        self.connectivity = checker.check(self.current_vector.J)
        self.logger.info(f"Model of {self.net} built in {time.time() - start:.3f}s")
        return gmat

    def build_connection(self) -> GMat:
        """Build the mesh and sources only, for a connectivity pre-flight.

        No voltage is required and the bottom layer is not densely sampled.
        """
        self.logger.info(f"Building connection model of net {self.net}")
        return self._build_mesh(connection_only=True)

    def check_connection(self) -> ConnectivityReport:
        """Cheap pre-flight: are all sources and all metal one connected structure?"""
        gmat = self.build_connection()
        self.connectivity = ConnectivityChecker(gmat, self.net).check_connection()
        if self.config.error_file:
            writers.write_error_file(self.config.error_file, self.net, gmat,
                                     self.connectivity.floating_nodes)
        return self.connectivity

    def solve(self) -> IRDropResult:
        """Run the full pipeline and write the configured artifacts.

        Raises:
            ConfigurationError, GeometryError, ConnectivityError: Before solving.
            SolverError: If the reduced system cannot be solved. The mesh stays
                on `self.gmat`.
        """
        gmat = self.build()
        J = self.current_vector.J
        solver = LinearSolver(self.config.solver, self.config.tolerance, self.config.max_iterations)
        try:
            V = solver.solve(gmat, J, self.connectivity.reachable)
        except SolverError:
            self.logger.error(f"Linear solve of {self.net} failed; mesh kept for diagnostics")
            if self.config.spice_out_file:
                self.print_spice(self.config.spice_out_file)
            raise
        gmat.set_voltages(V)

        metrics = extract_metrics(gmat, V, J, self.mesh_builder.bottom_layer,
                                  self.sig_type, self.supply_voltage)
        delivered = sum(source_currents(gmat, V).values())
        # Power-net sources push current out; ground-net sources absorb it
        source_current = delivered if self.sig_type == SigType.POWER else -delivered

        result = IRDropResult(
            net=self.net,
            sig_type=self.sig_type,
            corner=self.config.corner,
            supply_voltage=self.supply_voltage,
            bottom_layer=self.mesh_builder.bottom_layer,
            voltages=V,
            currents=J,
            worst_case_voltage=metrics.worst_case_voltage,
            average_voltage=metrics.average_voltage,
            max_current=metrics.max_current,
            average_current=metrics.average_current,
            num_resistors=metrics.num_resistors,
            num_nodes=gmat.num_nodes,
            num_sources=len(self.source_nodes),
            total_current=self.current_vector.total_current,
            sourced_current=self.current_vector.sourced_current,
            source_current=source_current,
            floating_nodes=list(self.connectivity.floating_nodes),
            residual=solver.residual,
            solve_time=solver.solve_time,
            instance_voltages=self._instance_voltages(V),
        )
        result.warnings = self._collect_warnings(result)
        self.result = result
        self._print_stats(result)
        self._write_artifacts(result)
        return result

    def _instance_voltages(self, V: np.ndarray) -> Dict[str, float]:
        out = {}
        for name, nodes in self.current_vector.instance_nodes.items():
            values = V[nodes]
            out[name] = float(values.mean()) if np.all(np.isfinite(values)) else math.nan
        return out

    def _collect_warnings(self, result: IRDropResult) -> List[str]:
        warnings = []
        for idx in result.floating_nodes:
            node = self.gmat.node(idx)
            warnings.append(f"Unconnected PDN node on net {self.net} at location "
                            f"({node.x}, {node.y}), layer: {node.layer}")
        if result.sourced_current > 0.0:
            warnings.append(f"{result.sourced_current:.6g} A of load current lands on source nodes")
        return warnings

    def _print_stats(self, result: IRDropResult):
        self.logger.info(f"Net Statistics for {self.net}:")
        self.logger.info(f"  Nodes: {result.num_nodes} total, {result.num_sources} voltage source")
        self.logger.info(f"  Resistors: {result.num_resistors}")
        self.logger.info(f"  Current: {result.total_current:.6e} A load, "
                         f"{result.source_current:.6e} A through sources")
        self.logger.info(f"  Supply: {result.supply_voltage:.6f} V")
        self.logger.info(f"  Worst case voltage: {result.worst_case_voltage:.6f} V "
                         f"(drop {result.worst_case_drop*1000:.3f} mV)")
        self.logger.info(f"  Average voltage: {result.average_voltage:.6f} V")
        if not result.confident:
            self.logger.warning(f"  {len(result.floating_nodes)} floating current-injecting nodes: "
                                f"result has reduced confidence")

    def _write_artifacts(self, result: IRDropResult):
        cfg = self.config
        if cfg.out_file:
            writers.write_voltage_report(cfg.out_file, result, self.gmat)
        if cfg.error_file:
            writers.write_error_file(cfg.error_file, self.net, self.gmat, result.floating_nodes)
        if cfg.em_analyze and cfg.em_out_file:
            writers.write_em_report(cfg.em_out_file, self.gmat, result.voltages,
                                    self.layout, self.layout.dbu_per_micron)
        if cfg.spice_out_file:
            self.print_spice(cfg.spice_out_file)
        if cfg.plot_file:
            from .plot import save_ir_drop_map
            save_ir_drop_map(cfg.plot_file, self.mesh_graph(),
                             writers.voltage_map(self.gmat, result.voltages),
                             result.supply_voltage, layer=result.bottom_layer)
            self.logger.info(f"Saved IR drop map: {cfg.plot_file}")

    # =========================================================================
    # Export
    # =========================================================================

    def print_spice(self, path: str):
        """Write the current mesh with its sources and loads as a SPICE netlist."""
        if self.gmat is None:
            raise RuntimeError("No mesh has been built")
        currents = self.current_vector.J if self.current_vector is not None else None
        writers.write_spice_netlist(path, self.net, self.gmat, currents)

    def mesh_graph(self) -> nx.Graph:
        """Export the current mesh as a networkx graph.

        Nodes are mesh indices with `xy`, `layer`, `is_source` and `voltage`
        attributes; edges carry `resistance` and `kind`.
        """
        if self.gmat is None:
            raise RuntimeError("No mesh has been built")
        G = nx.Graph()
        for node in self.gmat.nodes:
            G.add_node(node.index, xy=(node.x, node.y), layer=node.layer,
                       is_source=node.is_source, voltage=node.voltage)
        for edge in self.gmat.iter_edges():
            G.add_edge(edge.u, edge.v, resistance=edge.resistance, kind=edge.kind.value)
        return G

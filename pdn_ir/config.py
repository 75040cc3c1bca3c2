"""Run configuration of the IR solver."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from .current import DISTRIBUTIONS
from .errors import ConfigurationError
from .linear_solver import SOLVER_METHODS
from .sources import DEFAULT_BUMP_SIZE_UM


@dataclass
class IRSolverConfig:
    """Inputs consumed when an `IRSolver` is constructed.

    Attributes:
        power_net: Supply net to analyze
        vsrc_file: Optional user voltage-source file
        out_file: Text IR-drop report path
        error_file: Floating-node report path
        em_out_file: Electromigration report path
        spice_out_file: SPICE netlist path
        em_analyze: Compute per-resistor currents for the EM report
        bump_pitch_x, bump_pitch_y: Bump grid pitch in um (0 = default 140 um)
        bump_size: Bump contact size in um
        node_density_um: Absolute bottom-layer node spacing in um (<= 0 = unset)
        node_density_factor: Multiplier on the bottom-layer pitch (0 = default 5)
        net_voltage_map: Per-net voltage overrides
        corner: Analysis corner
        solver: 'direct' or 'cg'
        tolerance: Relative residual target of the iterative solver
        max_iterations: Iteration cap of the iterative solver
        current_distribution: 'nearest' or 'area'
        workers: Threads used for per-layer mesh construction
        plot_file: Optional voltage-map PNG path
    """
    power_net: str
    vsrc_file: Optional[str] = None
    out_file: Optional[str] = None
    error_file: Optional[str] = None
    em_out_file: Optional[str] = None
    spice_out_file: Optional[str] = None
    em_analyze: bool = False
    bump_pitch_x: float = 0.0
    bump_pitch_y: float = 0.0
    bump_size: float = DEFAULT_BUMP_SIZE_UM
    node_density_um: float = -1.0
    node_density_factor: int = 0
    net_voltage_map: Dict[str, float] = field(default_factory=dict)
    corner: Optional[str] = None
    solver: str = 'direct'
    tolerance: float = 1e-10
    max_iterations: int = 10000
    current_distribution: str = 'nearest'
    workers: int = 1
    plot_file: Optional[str] = None

    def validate(self) -> IRSolverConfig:
        """Raise `ConfigurationError` on the first invalid value."""
        if not self.power_net:
            raise ConfigurationError("No power net given")
        if self.bump_pitch_x < 0 or self.bump_pitch_y < 0:
            raise ConfigurationError(f"Invalid bump pitch {self.bump_pitch_x} x {self.bump_pitch_y} um")
        if self.bump_size <= 0:
            raise ConfigurationError(f"Invalid bump size {self.bump_size} um")
        if self.node_density_factor < 0:
            raise ConfigurationError(f"Invalid node density factor {self.node_density_factor}")
        if self.solver not in SOLVER_METHODS:
            raise ConfigurationError(f"Invalid solver type: {self.solver}. Choose 'direct' or 'cg'")
        if self.tolerance <= 0 or self.max_iterations <= 0:
            raise ConfigurationError("Solver tolerance and iteration limit must be positive")
        if self.current_distribution not in DISTRIBUTIONS:
            raise ConfigurationError(f"Unknown current distribution '{self.current_distribution}'")
        if self.workers < 1:
            raise ConfigurationError(f"Worker count must be at least 1, got {self.workers}")
        if self.em_out_file and not self.em_analyze:
            raise ConfigurationError("EM report requested without EM analysis enabled")
        return self

"""Sparse nodal solve and IR-drop metric extraction.

Source nodes are Dirichlet boundary conditions. With U the solved (unknown)
nodes and P the source nodes, the reduced system is

    G_UU * V_U = J_U - G_UP * V_P

G_UU is symmetric positive definite whenever every unknown node is
connected to a source, which the connectivity check guarantees for the
active node set handed to the solver.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from .errors import ConfigurationError, SolverError
from .geometry import SigType
from .gmat import GMat

logger = logging.getLogger(__name__)

SOLVER_METHODS = ('direct', 'cg')


def assemble_conductance_matrix(gmat: GMat) -> sp.csr_matrix:
    """Full Laplacian conductance matrix of the mesh."""
    return gmat.conductance_matrix()


@dataclass
class ReducedSystem:
    """Dirichlet-reduced conductance system.

    Attributes:
        unknown: Indices of solved nodes
        fixed: Indices of source nodes
        G_uu: Conductance among unknowns
        G_up: Coupling from unknowns to sources
        V_p: Fixed source voltages
    """
    unknown: np.ndarray
    fixed: np.ndarray
    G_uu: sp.csr_matrix
    G_up: sp.csr_matrix
    V_p: np.ndarray

    @classmethod
    def from_gmat(cls, gmat: GMat, active: Optional[np.ndarray] = None) -> ReducedSystem:
        G = assemble_conductance_matrix(gmat)
        is_source = np.array([n.is_source for n in gmat.nodes], dtype=bool)
        if active is None:
            active = np.ones(gmat.num_nodes, dtype=bool)
        unknown = np.flatnonzero(active & ~is_source)
        fixed = np.flatnonzero(is_source)
        G_rows = G[unknown]
        return cls(
            unknown=unknown,
            fixed=fixed,
            G_uu=G_rows[:, unknown].tocsc(),
            G_up=G_rows[:, fixed].tocsr(),
            V_p=np.array([gmat.node(i).voltage for i in fixed], dtype=float),
        )

    def rhs(self, J: np.ndarray) -> np.ndarray:
        return J[self.unknown] - self.G_up @ self.V_p


class LinearSolver:
    """Solves the reduced nodal system.

    Args:
        method: 'direct' (sparse LU) or 'cg' (Jacobi-preconditioned conjugate gradient)
        tolerance: Relative residual target for 'cg'
        max_iterations: Iteration cap for 'cg'
    """

    def __init__(self, method: str = 'direct', tolerance: float = 1e-10, max_iterations: int = 10000):
        self.method = method.lower()
        if self.method not in SOLVER_METHODS:
            raise ConfigurationError(f"Invalid solver type: {method}. Choose 'direct' or 'cg'")
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.residual = 0.0
        self.solve_time = 0.0

    def solve(self, gmat: GMat, J: np.ndarray, active: Optional[np.ndarray] = None) -> np.ndarray:
        """Return the voltage of every node; inactive nodes get NaN.

        Raises:
            SolverError: If factorization fails, the solution is not finite, or
                the iterative method does not converge.
        """
        system = ReducedSystem.from_gmat(gmat, active)
        V = np.full(gmat.num_nodes, math.nan)
        V[system.fixed] = system.V_p
        n = len(system.unknown)
        if n == 0:
            logger.info("No free nodes to solve for")
            return V

        rhs = system.rhs(J)
        logger.info(f"Solving {n}x{n} system with {self.method} solver...")
        start = time.time()
        if self.method == 'direct':
            V_u = self._solve_direct(system.G_uu, rhs)
        else:
            V_u = self._solve_cg(system.G_uu, rhs)
        self.solve_time = time.time() - start

        if not np.all(np.isfinite(V_u)):
            logger.error("Solver produced non-finite voltages")
            raise SolverError("Conductance matrix is singular or ill-conditioned: non-finite solution")
        norm = np.linalg.norm(rhs)
        self.residual = float(np.linalg.norm(system.G_uu @ V_u - rhs) / norm) if norm > 0 else 0.0
        logger.info(f"System solved in {self.solve_time:.3f} seconds (residual {self.residual:.2e})")
        V[system.unknown] = V_u
        return V

    def _solve_direct(self, G_uu: sp.csc_matrix, rhs: np.ndarray) -> np.ndarray:
        try:
            lu: Callable = spla.factorized(G_uu)
        except RuntimeError as e:
            logger.error(f"Factorization failed: {e}")
            raise SolverError(f"Failed to factor conductance matrix: {e}") from e
        return lu(rhs)

    def _solve_cg(self, G_uu: sp.csc_matrix, rhs: np.ndarray) -> np.ndarray:
        diag = G_uu.diagonal()
        if np.any(diag <= 0):
            raise SolverError("Conductance matrix has non-positive diagonal entries")
        M = sp.diags(1.0 / diag)
        V_u, info = spla.cg(G_uu, rhs, rtol=self.tolerance, maxiter=self.max_iterations, M=M)
        if info > 0:
            logger.error(f"CG did not converge after {info} iterations")
            raise SolverError(f"CG solver did not converge after {info} iterations")
        if info < 0:
            raise SolverError(f"CG solver failed with error code {info}")
        return V_u


def source_currents(gmat: GMat, V: np.ndarray) -> Dict[int, float]:
    """Current leaving each source node through its resistors (A).

    By Kirchhoff's current law the sum over sources balances the current
    drawn by the loads on a power net.
    """
    out: Dict[int, float] = {}
    for edge in gmat.iter_edges():
        a, b = gmat.node(edge.u), gmat.node(edge.v)
        if a.is_source == b.is_source:
            continue
        src, other = (edge.u, edge.v) if a.is_source else (edge.v, edge.u)
        if not math.isfinite(V[other]):
            continue
        out[src] = out.get(src, 0.0) + (V[src] - V[other]) * edge.conductance
    return out


@dataclass
class DropMetrics:
    """Worst-case and average figures over the reported node set."""
    worst_case_voltage: float
    average_voltage: float
    max_current: float
    average_current: float
    num_resistors: int
    num_reported_nodes: int


def extract_metrics(gmat: GMat, V: np.ndarray, J: np.ndarray, bottom_layer: int,
                    sig_type: SigType, nominal_voltage: float) -> DropMetrics:
    """Derive the reported metrics from a solved mesh.

    The reported node set is the non-source, current-injecting, solved nodes
    on the bottom layer. Worst case is the minimum voltage on a power net and
    the maximum on a ground net. With no such node the nominal voltage is
    reported.
    """
    selected = [i for i in gmat.layer_nodes(bottom_layer)
                if J[i] != 0.0 and not gmat.node(i).is_source and math.isfinite(V[i])]
    if selected:
        volts = V[selected]
        worst = float(volts.min() if sig_type == SigType.POWER else volts.max())
        average = float(volts.mean())
        average_current = float(np.abs(J[selected]).mean())
    else:
        worst = average = float(nominal_voltage)
        average_current = 0.0
    max_current = float(np.abs(J).max()) if len(J) else 0.0
    return DropMetrics(
        worst_case_voltage=worst,
        average_voltage=average,
        max_current=max_current,
        average_current=average_current,
        num_resistors=gmat.num_resistors,
        num_reported_nodes=len(selected),
    )

"""Static IR-drop analysis of chip power delivery networks.

Exports the mesh model, the pipeline stages and the `IRSolver` that chains them.
"""

from .config import IRSolverConfig
from .connectivity import ConnectivityChecker, ConnectivityReport
from .current import CurrentInjector, CurrentVector
from .errors import (
    ConfigurationError, ConnectivityError, GeometryError, IRSolverError, SolverError,
)
from .geometry import (
    Instance, LayerTech, MacroBlockage, NodeEnclosure, Pin, Rect, SigType, Via, ViaCut, ViaParams, Wire,
)
from .gmat import Edge, EdgeKind, GMat, Node
from .ir_solver import IRDropResult, IRSolver
from .linear_solver import LinearSolver, ReducedSystem, assemble_conductance_matrix, extract_metrics, source_currents
from .mesh_builder import MeshBuilder, ViaJunction, compute_node_density
from .snapshot import DesignSnapshot, NetGeometry, load_snapshot
from .sources import SourceData, SourceKind, SourceManager, read_source_file

__all__ = [
    "IRSolver",
    "IRDropResult",
    "IRSolverConfig",
    "GMat",
    "Node",
    "Edge",
    "EdgeKind",
    "MeshBuilder",
    "ViaJunction",
    "compute_node_density",
    "SourceManager",
    "SourceData",
    "SourceKind",
    "read_source_file",
    "CurrentInjector",
    "CurrentVector",
    "ConnectivityChecker",
    "ConnectivityReport",
    "LinearSolver",
    "ReducedSystem",
    "assemble_conductance_matrix",
    "extract_metrics",
    "source_currents",
    "DesignSnapshot",
    "NetGeometry",
    "load_snapshot",
    "Rect",
    "NodeEnclosure",
    "ViaCut",
    "ViaParams",
    "Wire",
    "Via",
    "MacroBlockage",
    "LayerTech",
    "Pin",
    "Instance",
    "SigType",
    "IRSolverError",
    "ConfigurationError",
    "GeometryError",
    "ConnectivityError",
    "SolverError",
]

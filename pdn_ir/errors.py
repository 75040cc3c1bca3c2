"""Exception taxonomy for the IR-drop pipeline.

Configuration and geometry errors are raised before any solve is attempted.
Connectivity errors mean no current-drawing node can see a source, while
solver errors mean the reduced conductance matrix could not be factored.
"""


class IRSolverError(Exception):
    """Base class for all fatal IR-drop analysis errors."""


class ConfigurationError(IRSolverError, ValueError):
    """Invalid or incomplete analysis configuration."""


class GeometryError(IRSolverError, ValueError):
    """Layout geometry that cannot be turned into a valid resistor mesh."""


class ConnectivityError(IRSolverError, RuntimeError):
    """No current-drawing node is reachable from any voltage source."""


class SolverError(IRSolverError, RuntimeError):
    """Factorization or iterative solve of the conductance matrix failed."""

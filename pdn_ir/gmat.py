"""Conductance matrix builder for the power-grid resistor mesh.

Nodes live in an arena addressed by dense integer index and are keyed by
(x, y, routing level). Resistive edges are stored once per unordered node
pair; adding a second resistor between the same pair combines the two in
parallel. The nodal conductance matrix is the weighted graph Laplacian:

    G[i, i] = sum of conductances incident to node i
    G[i, j] = -g(i, j)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.spatial import KDTree

from .errors import GeometryError
from .geometry import Rect

logger = logging.getLogger(__name__)

NodeKey = Tuple[int, int, int]


class EdgeKind(Enum):
    """Physical origin of a resistor."""
    WIRE = 'wire'
    VIA = 'via'


@dataclass
class Node:
    """Electrical node of the mesh.

    Attributes:
        index: Dense index, stable for the lifetime of one solve
        x, y: Location in DBU
        layer: Routing level
        is_source: Fixed-voltage (Dirichlet) flag
        voltage: Fixed voltage for sources, solved voltage otherwise (NaN until solved)
        current: Net current injected into the node (A)
    """
    index: int
    x: int
    y: int
    layer: int
    is_source: bool = False
    voltage: float = math.nan
    current: float = 0.0

    @property
    def key(self) -> NodeKey:
        return (self.x, self.y, self.layer)


@dataclass
class Edge:
    """Resistor between two node indices (u < v).

    `conductance` is the parallel sum of every resistor added for the pair;
    `count` is how many were combined. `width` is the summed wire width (DBU)
    for wire edges and the summed conducting cut count for via edges.
    """
    u: int
    v: int
    conductance: float
    kind: EdgeKind
    layer: int
    width: float = 0.0
    count: int = 1

    @property
    def resistance(self) -> float:
        return 1.0 / self.conductance


class GMat:
    """Node arena plus resistive edge table of one analyzed net."""

    def __init__(self):
        self._nodes: List[Node] = []
        self._index: Dict[NodeKey, int] = {}
        self._edges: Dict[Tuple[int, int], Edge] = {}
        self._adjacency: List[List[int]] = []
        self._layer_nodes: Dict[int, List[int]] = {}
        self._trees: Dict[int, KDTree] = {}

    # =========================================================================
    # Nodes
    # =========================================================================

    @property
    def num_nodes(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> List[Node]:
        return self._nodes

    def node(self, index: int) -> Node:
        return self._nodes[index]

    def add_node(self, x: int, y: int, layer: int) -> int:
        """Return the index of the node at (x, y, layer), creating it if needed."""
        key = (int(x), int(y), int(layer))
        idx = self._index.get(key)
        if idx is not None:
            return idx
        idx = len(self._nodes)
        self._nodes.append(Node(idx, key[0], key[1], key[2]))
        self._index[key] = idx
        self._adjacency.append([])
        self._layer_nodes.setdefault(key[2], []).append(idx)
        self._trees.pop(key[2], None)
        return idx

    def node_index(self, x: int, y: int, layer: int) -> Optional[int]:
        return self._index.get((int(x), int(y), int(layer)))

    @property
    def layers(self) -> List[int]:
        return sorted(self._layer_nodes)

    def layer_nodes(self, layer: int) -> List[int]:
        return list(self._layer_nodes.get(layer, []))

    def _layer_tree(self, layer: int) -> Optional[KDTree]:
        tree = self._trees.get(layer)
        if tree is None:
            members = self._layer_nodes.get(layer)
            if not members:
                return None
            coords = np.array([(self._nodes[i].x, self._nodes[i].y) for i in members],
                              dtype=float)
            tree = KDTree(coords)
            self._trees[layer] = tree
        return tree

    def nearest_node(self, x: float, y: float, layer: int) -> Optional[int]:
        """Index of the node on `layer` closest to (x, y), None if the layer is empty."""
        tree = self._layer_tree(layer)
        if tree is None:
            return None
        _, pos = tree.query((float(x), float(y)))
        return self._layer_nodes[layer][int(pos)]

    def nodes_in_rect(self, rect: Rect, layer: int) -> List[int]:
        """Indices of nodes on `layer` inside `rect`, in index order."""
        tree = self._layer_tree(layer)
        if tree is None:
            return []
        cx = (rect.xlo + rect.xhi) / 2.0
        cy = (rect.ylo + rect.yhi) / 2.0
        # Chebyshev ball of the half-diagonal, then exact filter
        radius = max(rect.dx, rect.dy) / 2.0 + 0.5
        hits = tree.query_ball_point((cx, cy), r=radius, p=np.inf)
        members = self._layer_nodes[layer]
        found = [members[h] for h in hits
                 if rect.contains(self._nodes[members[h]].x, self._nodes[members[h]].y)]
        return sorted(found)

    # =========================================================================
    # Edges
    # =========================================================================

    @property
    def num_resistors(self) -> int:
        return len(self._edges)

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def add_resistance(
        self,
        u: int,
        v: int,
        resistance: float,
        kind: EdgeKind = EdgeKind.WIRE,
        layer: int = 0,
        width: float = 0.0,
    ) -> Edge:
        """Connect nodes u and v through `resistance` ohms.

        A resistor added between an already connected pair is combined in
        parallel with the existing one.

        Raises:
            GeometryError: If the resistance is not strictly positive and finite,
                or if u and v are the same node.
        """
        if not check_valid_resistance(resistance):
            a, b = self._nodes[u], self._nodes[v]
            raise GeometryError(
                f"Invalid resistance {resistance} between ({a.x}, {a.y}, L{a.layer}) "
                f"and ({b.x}, {b.y}, L{b.layer})"
            )
        if u == v:
            n = self._nodes[u]
            raise GeometryError(f"Self-loop resistor at ({n.x}, {n.y}, L{n.layer})")
        key = (u, v) if u < v else (v, u)
        g = 1.0 / resistance
        edge = self._edges.get(key)
        if edge is None:
            edge = Edge(key[0], key[1], g, kind, layer, width)
            self._edges[key] = edge
            self._adjacency[u].append(v)
            self._adjacency[v].append(u)
        else:
            edge.conductance += g
            edge.count += 1
            edge.width += width
        return edge

    def edge(self, u: int, v: int) -> Optional[Edge]:
        return self._edges.get((u, v) if u < v else (v, u))

    def resistance(self, u: int, v: int) -> Optional[float]:
        edge = self.edge(u, v)
        return edge.resistance if edge is not None else None

    def neighbors(self, index: int) -> List[Tuple[int, float]]:
        """Adjacency of a node as (neighbor index, resistance) pairs."""
        return [(j, self.edge(index, j).resistance) for j in self._adjacency[index]]

    def iter_edges(self) -> Iterator[Edge]:
        return iter(self._edges.values())

    def edge_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (u, v, g) arrays in edge insertion order."""
        n = len(self._edges)
        u = np.empty(n, dtype=np.int64)
        v = np.empty(n, dtype=np.int64)
        g = np.empty(n, dtype=float)
        for i, edge in enumerate(self._edges.values()):
            u[i] = edge.u
            v[i] = edge.v
            g[i] = edge.conductance
        return u, v, g

    def conductance_matrix(self) -> sp.csr_matrix:
        """Build the full symmetric nodal conductance matrix (Laplacian form)."""
        n = self.num_nodes
        u, v, g = self.edge_arrays()
        rows = np.concatenate([u, v, u, v])
        cols = np.concatenate([v, u, u, v])
        data = np.concatenate([-g, -g, g, g])
        # Duplicate (i, i) entries are summed by the COO -> CSR conversion
        G = sp.coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()
        logger.debug(f"Conductance matrix: {n}x{n}, nnz={G.nnz}")
        return G

    # =========================================================================
    # Node state
    # =========================================================================

    def mark_source(self, index: int, voltage: float):
        node = self._nodes[index]
        node.is_source = True
        node.voltage = float(voltage)

    def source_indices(self) -> List[int]:
        return [n.index for n in self._nodes if n.is_source]

    def set_voltages(self, voltages: np.ndarray):
        for node, value in zip(self._nodes, voltages):
            node.voltage = float(value)

    def set_currents(self, currents: np.ndarray):
        for node, value in zip(self._nodes, currents):
            node.current = float(value)

    def dangling_nodes(self) -> List[int]:
        """Nodes referenced by no edge that are not sources either."""
        return [n.index for n in self._nodes
                if not self._adjacency[n.index] and not n.is_source]


def check_valid_resistance(resistance: float) -> bool:
    return math.isfinite(resistance) and resistance > 0.0

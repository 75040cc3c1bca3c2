"""Source reachability checks on the resistor mesh.

Both checks share one traversal primitive, `ConnectivityChecker.reachable`:

  - stop_at_sources=True: components are computed with source nodes cut out
    of the graph, so a non-source node is reachable only if its component of
    the reduced (unknown) subsystem touches a source. This is exactly the
    condition for that part of the reduced conductance matrix to be
    non-singular.
  - stop_at_sources=False: plain reachability through every node, used by
    the connection-only pre-flight to see whether all sources and all metal
    form a single structure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
import rustworkx as rx

from .errors import ConnectivityError
from .gmat import GMat

logger = logging.getLogger(__name__)


@dataclass
class ConnectivityReport:
    """Outcome of a connectivity check.

    Attributes:
        reachable: Boolean mask over nodes reachable from a source
        floating_nodes: Unreachable nodes that matter for the check (injecting
            nodes for the full check, every node for connection-only)
        num_sources: Number of source nodes
        source_components: Number of distinct mesh components holding sources
        connected: Overall verdict
    """
    reachable: np.ndarray
    floating_nodes: List[int] = field(default_factory=list)
    num_sources: int = 0
    source_components: int = 0
    connected: bool = True

    @property
    def num_reachable(self) -> int:
        return int(np.count_nonzero(self.reachable))


class ConnectivityChecker:
    """Reachability analysis of a `GMat` from its fixed-voltage nodes."""

    def __init__(self, gmat: GMat, net: str = ''):
        self.gmat = gmat
        self.net = net

    def _graph(self, exclude_sources: bool) -> Tuple[rx.PyGraph, np.ndarray]:
        is_source = np.array([n.is_source for n in self.gmat.nodes], dtype=bool)
        graph = rx.PyGraph(multigraph=False)
        graph.add_nodes_from(range(self.gmat.num_nodes))
        u, v, g = self.gmat.edge_arrays()
        keep = g > 0.0
        if exclude_sources:
            keep &= ~(is_source[u] | is_source[v])
        graph.add_edges_from_no_data(list(zip(u[keep].tolist(), v[keep].tolist())))
        return graph, is_source

    def reachable(self, stop_at_sources: bool = True) -> Tuple[np.ndarray, int]:
        """Mask of nodes reachable from any source, and the number of source components.

        With `stop_at_sources` the traversal never crosses a source node.
        """
        n = self.gmat.num_nodes
        mask = np.zeros(n, dtype=bool)
        if n == 0:
            return mask, 0
        graph, is_source = self._graph(exclude_sources=stop_at_sources)
        labels = np.full(n, -1, dtype=np.int64)
        for label, component in enumerate(rx.connected_components(graph)):
            labels[list(component)] = label

        if stop_at_sources:
            # A component is fed when one of its nodes has a resistor to a source
            u, v, g = self.gmat.edge_arrays()
            feeding = (g > 0.0) & (is_source[u] ^ is_source[v])
            fed_nodes = np.where(is_source[u[feeding]], v[feeding], u[feeding])
            fed = np.isin(labels, np.unique(labels[fed_nodes]))
            mask = fed | is_source
            # Sources are cut out, so count components over the full graph instead
            full_graph, _ = self._graph(exclude_sources=False)
            full_labels = np.full(n, -1, dtype=np.int64)
            for label, component in enumerate(rx.connected_components(full_graph)):
                full_labels[list(component)] = label
            source_components = len(np.unique(full_labels[is_source]))
        else:
            source_labels = np.unique(labels[is_source])
            mask = np.isin(labels, source_labels)
            source_components = len(source_labels)
        return mask, source_components

    def check(self, J: np.ndarray) -> ConnectivityReport:
        """Full check before solving.

        Unreachable current-injecting nodes are non-fatal warnings.

        Raises:
            ConnectivityError: If there is no source at all, or if current is
                injected but no injecting node is reachable from any source.
        """
        sources = self.gmat.source_indices()
        if not sources:
            logger.error(f"No voltage source nodes on net {self.net}")
            raise ConnectivityError(f"No voltage source could be attached to net {self.net}")

        mask, source_components = self.reachable(stop_at_sources=True)
        injecting = np.flatnonzero(J)
        floating = [int(i) for i in injecting if not mask[i]]
        for idx in floating:
            node = self.gmat.node(idx)
            logger.warning(f"Unconnected PDN node on net {self.net} at location "
                           f"({node.x}, {node.y}), layer: {node.layer}")

        if len(injecting) and len(floating) == len(injecting):
            logger.error(f"None of the {len(injecting)} current-injecting nodes of {self.net} "
                         f"reach a voltage source")
            raise ConnectivityError(
                f"No current-injecting node of net {self.net} is connected to a voltage source"
            )

        unreachable = int(np.count_nonzero(~mask))
        if unreachable:
            logger.info(f"{unreachable} nodes of {self.net} are not connected to any source "
                        f"and are excluded from the solve")
        logger.info(f"Connectivity of {self.net}: {len(sources)} source nodes in "
                    f"{source_components} component(s), {len(floating)} floating injecting nodes")
        return ConnectivityReport(
            reachable=mask,
            floating_nodes=floating,
            num_sources=len(sources),
            source_components=source_components,
            connected=not floating,
        )

    def check_connection(self) -> ConnectivityReport:
        """Connection-only pre-flight: no current vector, no matrix.

        Passes when the net has sources, every node is reachable from them and
        all sources sit in one connected structure.
        """
        sources = self.gmat.source_indices()
        if not sources:
            logger.warning(f"No voltage source nodes on net {self.net}")
            return ConnectivityReport(
                reachable=np.zeros(self.gmat.num_nodes, dtype=bool),
                floating_nodes=list(range(self.gmat.num_nodes)),
                connected=False,
            )
        mask, source_components = self.reachable(stop_at_sources=False)
        floating = [int(i) for i in np.flatnonzero(~mask)]
        for idx in floating:
            node = self.gmat.node(idx)
            logger.warning(f"Unconnected PDN node on net {self.net} at location "
                           f"({node.x}, {node.y}), layer: {node.layer}")
        if source_components > 1:
            logger.warning(f"Sources of {self.net} are split over {source_components} disconnected structures")
        connected = not floating and source_components == 1
        logger.info(f"Connection check of {self.net}: {'passed' if connected else 'failed'}")
        return ConnectivityReport(
            reachable=mask,
            floating_nodes=floating,
            num_sources=len(sources),
            source_components=source_components,
            connected=connected,
        )

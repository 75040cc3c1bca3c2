"""Plotting utilities for solved PDN meshes.

Works on the graph returned by `IRSolver.mesh_graph()`: nodes carry `xy`
(DBU), `layer` and `is_source`, edges carry `resistance`. Node values are
passed separately as a mapping of node index -> value so the same graph can
be drawn for several solves.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple, Union

import matplotlib
matplotlib.use("Agg")  # Safe for headless environments; caller can override before import
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import LineCollection

import networkx as nx


def _layer_title(title: str, layer: int | None) -> str:
    return title if layer is None else f"{title} (Layer {layer})"


def _node_arrays(G: nx.Graph, values: Dict, layer: int | None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(xy, value, is_source) of nodes on `layer` that have a finite value."""
    rows = [
        (data["xy"], values[n], bool(data.get("is_source", False)))
        for n, data in G.nodes(data=True)
        if "xy" in data
        and (layer is None or data.get("layer") == layer)
        and n in values and np.isfinite(values[n])
    ]
    if not rows:
        raise ValueError("No nodes to plot (check layer or voltages dictionary)")
    xy = np.array([r[0] for r in rows], dtype=float)
    return xy, np.array([r[1] for r in rows], dtype=float), np.array([r[2] for r in rows])


def _mesh_segments(G: nx.Graph, layer: int | None):
    """Wire segments of `layer` (vias have no extent in the plane)."""
    segs = []
    for u, v in G.edges():
        du, dv = G.nodes[u], G.nodes[v]
        if du.get("layer") != dv.get("layer"):
            continue
        if layer is not None and du.get("layer") != layer:
            continue
        segs.append([du["xy"], dv["xy"]])
    return segs


def _node_map(G: nx.Graph, values: Dict, layer: int | None, cmap: str, title: str, label: str,
              vmin: float | None = None, vmax: float | None = None, show_mesh: bool = False):
    xy, vals, is_source = _node_arrays(G, values, layer)
    fig, ax = plt.subplots(figsize=(6, 5))
    sc = ax.scatter(xy[:, 0], xy[:, 1], c=vals, cmap=cmap, s=20, edgecolors="k", linewidths=0.2,
                    vmin=vmin, vmax=vmax)
    if is_source.any():
        ax.scatter(xy[is_source, 0], xy[is_source, 1], marker="s", s=50, facecolors="none",
                   edgecolors="r", linewidths=1.0, label="source")
        ax.legend(loc="upper right", fontsize=8)
    if show_mesh:
        segs = _mesh_segments(G, layer)
        if segs:
            ax.add_collection(LineCollection(segs, colors="0.6", linewidths=0.4, zorder=0))
    ax.set_aspect("equal", adjustable="box")
    ax.set_title(_layer_title(title, layer))
    fig.colorbar(sc, ax=ax, label=label)
    ax.set_xlabel("x (DBU)")
    ax.set_ylabel("y (DBU)")
    fig.tight_layout()
    return fig, ax


def plot_voltage_map(G: nx.Graph, voltages: Dict, layer: int | None = None, cmap: str = "viridis",
                     vmin: float | None = None, vmax: float | None = None, show: bool = True,
                     show_mesh: bool = False):
    """Scatter plot of node voltages.

    layer: restrict to a single routing level; None => all layers.
    Unsolved (NaN) nodes are left out. Returns (fig, ax).
    """
    fig, ax = _node_map(G, voltages, layer, cmap, "Voltage Map", "Voltage (V)", vmin, vmax, show_mesh)
    if show:
        plt.show()
    return fig, ax


def plot_ir_drop_map(G: nx.Graph, voltages: Dict, nominal: float, layer: int | None = None,
                     cmap: str = "inferno", show: bool = True, show_mesh: bool = False):
    """Scatter plot of IR drop |nominal - V|.

    Parameters
    ----------
    G : nx.Graph
        Mesh graph with node attributes 'xy' and 'layer'.
    voltages : Dict
        Mapping node index -> voltage.
    nominal : float
        Source voltage of the net. Must be numeric.
    layer : int | None
        Optional routing level filter. If provided must be int.
    """
    if not isinstance(nominal, (int, float)):
        raise TypeError(f"nominal must be a numeric voltage (float), got {type(nominal).__name__}")
    if layer is not None and not isinstance(layer, int):
        raise TypeError(f"layer must be int or None, got {type(layer).__name__}")
    drops = {n: abs(nominal - v) for n, v in voltages.items()}
    fig, ax = _node_map(G, drops, layer, cmap, "IR-Drop Map", "IR-Drop (V)", show_mesh=show_mesh)
    if show:
        plt.show()
    return fig, ax


def plot_current_map(G: nx.Graph, voltages: Dict, layer: int | None = None, cmap: str = "plasma",
                     linewidth_scale: float = 3.0, show: bool = True):
    """Wire segments coloured and thickened by |I| = |V_u - V_v| / R.

    Only wire edges are drawn; with `layer` set, only that routing level.
    """
    segs = []
    vals = []
    for u, v, d in G.edges(data=True):
        R = float(d.get("resistance", 0.0))
        du, dv = G.nodes[u], G.nodes[v]
        if R <= 0.0 or du.get("layer") != dv.get("layer"):
            continue
        if layer is not None and du.get("layer") != layer:
            continue
        Vu, Vv = voltages.get(u), voltages.get(v)
        if Vu is None or Vv is None or not (np.isfinite(Vu) and np.isfinite(Vv)):
            continue
        segs.append([du["xy"], dv["xy"]])
        vals.append(abs(Vu - Vv) / R)
    if not segs:
        raise ValueError("No edges selected for current plotting (check layer/voltages).")
    vals_arr = np.array(vals, dtype=float)
    vmax = vals_arr.max()
    lw = 0.4 + linewidth_scale * (vals_arr / vmax if vmax > 0 else vals_arr)
    fig, ax = plt.subplots(figsize=(6, 5))
    lc = LineCollection(segs, array=vals_arr, cmap=cmap, linewidths=lw)
    ax.add_collection(lc)
    ax.autoscale()
    ax.set_aspect("equal", adjustable="box")
    ax.set_title(_layer_title("Current Map", layer))
    fig.colorbar(lc, ax=ax, label="|I| (A)")
    ax.set_xlabel("x (DBU)")
    ax.set_ylabel("y (DBU)")
    fig.tight_layout()
    if show:
        plt.show()
    return fig, ax


def save_ir_drop_map(path: Union[str, Path], G: nx.Graph, voltages: Dict, nominal: float,
                     layer: int | None = None) -> Path:
    """Render the IR-drop map of `layer` to a PNG file."""
    fig, _ = plot_ir_drop_map(G, voltages, nominal, layer=layer, show=False, show_mesh=True)
    path = Path(path)
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


__all__ = ["plot_voltage_map", "plot_ir_drop_map", "plot_current_map", "save_ir_drop_map"]

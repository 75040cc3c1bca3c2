"""Current injection vector from per-instance power.

Convention: J holds the net current INJECTED into each node. Loads on a
power net draw current out of the grid (negative J); on a ground net they
push the return current in (positive J). Source nodes never receive
injection: current landing on them is supplied directly by the source and
is reported as `sourced_current`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from .errors import ConfigurationError
from .geometry import Instance, SigType
from .gmat import GMat

logger = logging.getLogger(__name__)

DISTRIBUTIONS = ('nearest', 'area')


@dataclass
class CurrentVector:
    """Result of current injection.

    Attributes:
        J: Net injected current per node (A)
        instance_nodes: Instance name -> node indices its current went to
        total_current: Total load current of the analyzed instances (A)
        sourced_current: Part of it landing directly on source nodes (A)
    """
    J: np.ndarray
    instance_nodes: Dict[str, List[int]] = field(default_factory=dict)
    total_current: float = 0.0
    sourced_current: float = 0.0

    @property
    def injecting_nodes(self) -> np.ndarray:
        return np.flatnonzero(self.J)


class CurrentInjector:
    """Maps instance power onto bottom-layer mesh nodes.

    Args:
        net: Analyzed supply net
        sig_type: Signal type of the net (sets the sign of J)
        supply_voltage: Voltage used for the power -> current conversion
        distribution: 'nearest' (whole current to the closest bottom node) or
            'area' (evenly across bottom nodes under the instance bbox, falling
            back to nearest when none lie under it)
    """

    def __init__(self, net: str, sig_type: SigType, supply_voltage: float,
                 distribution: str = 'nearest'):
        if distribution not in DISTRIBUTIONS:
            raise ConfigurationError(f"Unknown current distribution '{distribution}'. "
                                     f"Choose one of {', '.join(DISTRIBUTIONS)}")
        if not supply_voltage > 0.0:
            raise ConfigurationError(f"Supply voltage for current conversion must be positive, "
                                     f"got {supply_voltage}")
        self.net = net
        self.sig_type = sig_type
        self.supply_voltage = float(supply_voltage)
        self.distribution = distribution

    def create_j(self, gmat: GMat, powers: List[Tuple[Instance, float]], bottom_layer: int) -> CurrentVector:
        """Build J for `gmat` from (instance, watts) pairs."""
        J = np.zeros(gmat.num_nodes, dtype=float)
        result = CurrentVector(J)
        sign = -1.0 if self.sig_type == SigType.POWER else 1.0
        skipped = 0
        for inst, power in powers:
            if power == 0.0:
                continue
            if not inst.on_net(self.net):
                skipped += 1
                continue
            targets = self._target_nodes(gmat, inst, bottom_layer)
            if not targets:
                raise ConfigurationError(f"No mesh nodes on layer {bottom_layer} of {self.net} "
                                         f"to attach instance {inst.name}")
            current = power / self.supply_voltage
            share = current / len(targets)
            result.total_current += current
            result.instance_nodes[inst.name] = targets
            for idx in targets:
                if gmat.node(idx).is_source:
                    result.sourced_current += share
                else:
                    J[idx] += sign * share

        gmat.set_currents(J)
        if skipped:
            logger.debug(f"Skipped {skipped} instances outside the {self.net} domain")
        if result.sourced_current > 0.0:
            logger.warning(f"{result.sourced_current:.6g} A of load current lands directly on "
                           f"source nodes of {self.net} and is not injected")
        logger.info(f"Injected {result.total_current - result.sourced_current:.6g} A from "
                    f"{len(result.instance_nodes)} instances into {np.count_nonzero(J)} nodes")
        return result

    def _target_nodes(self, gmat: GMat, inst: Instance, bottom_layer: int) -> List[int]:
        if self.distribution == 'area':
            under = gmat.nodes_in_rect(inst.bbox, bottom_layer)
            if under:
                return under
        x, y = inst.location
        nearest = gmat.nearest_node(x, y, bottom_layer)
        return [] if nearest is None else [nearest]

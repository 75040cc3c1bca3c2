"""Example usage of the static IR-drop workflow on a generated stripe grid."""

import random

from pdn_ir import (
    DesignSnapshot, Instance, IRSolver, IRSolverConfig, LayerTech, NetGeometry, Pin, Rect, SigType,
    Via, Wire,
)


def build_design(stripes=6, die=300000, num_instances=200, seed=11):
    """Two-layer VDD/VSS stripe grid with randomly placed loads."""
    rng = random.Random(seed)
    pitch = die // stripes
    nets = {}
    for name, sig_type, voltage, offset in (('VDD', SigType.POWER, 1.0, 0),
                                            ('VSS', SigType.GROUND, 0.0, pitch // 2)):
        ys = [pitch // 4 + offset + i * pitch for i in range(stripes)]
        xs = [pitch // 4 + offset + i * pitch for i in range(stripes)]
        wires = [Wire(1, Rect(0, y - 500, die, y + 500)) for y in ys]
        wires += [Wire(2, Rect(x - 1500, 0, x + 1500, die)) for x in xs]
        vias = [Via(x, y, 1, 2) for x in xs for y in ys]
        pins = [Pin(name, Rect.around(x, die, 3000), 2) for x in xs[::2]]
        nets[name] = NetGeometry(name, sig_type, voltage, wires=wires, vias=vias, pins=pins)

    instances = []
    power = {}
    for i in range(num_instances):
        x, y = rng.randrange(0, die), rng.randrange(0, die)
        inst = Instance(f'u{i}', Rect.around(x, y, 1000))
        instances.append(inst)
        power[inst.name] = rng.uniform(0.5e-3, 2e-3)

    return DesignSnapshot(
        die_area=Rect(0, 0, die, die),
        layers={
            1: LayerTech('metal1', 1, 0.08, via_resistance=2.0, pitch=2000),
            2: LayerTech('metal2', 2, 0.04, via_resistance=1.0, pitch=10000),
        },
        nets=nets,
        instances=instances,
        power=power,
        supply=(1.0, 0.0),
    )


def main():
    design = build_design()
    print(f"Design: {len(design.instances)} instances, total power "
          f"{sum(design.power.values()) * 1e3:.2f} mW")

    for net in ('VDD', 'VSS'):
        for solver in ('direct', 'cg'):
            config = IRSolverConfig(power_net=net, solver=solver)
            result = IRSolver(config, design, design).solve()
            print(
                f"{net} [{solver}] nodes={result.num_nodes} resistors={result.num_resistors} "
                f"worst={result.worst_case_voltage:.4f}V maxDrop={result.worst_case_drop * 1e3:.3f}mV "
                f"avgDrop={result.average_drop * 1e3:.3f}mV solve={result.solve_time * 1e3:.1f}ms"
            )


if __name__ == "__main__":
    main()

"""Command-line interface for the static IR-drop solver."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import IRSolverConfig
from .errors import IRSolverError
from .ir_solver import IRSolver
from .snapshot import load_snapshot


def _parse_net_voltages(text):
    voltages = {}
    if not text:
        return voltages
    for pair in text.split(','):
        if '=' not in pair:
            raise argparse.ArgumentTypeError(f"Expected NET=VOLTAGE, got '{pair}'")
        net, value = pair.split('=', 1)
        voltages[net.strip()] = float(value)
    return voltages


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Static IR-Drop Solver for chip power delivery networks',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # IR drop of VDD with a bump grid at the default 140 um pitch
  pdn-ir design.json --net VDD --report vdd.rpt

  # User voltage sources and the iterative solver
  pdn-ir design.json --net VDD --vsrc vdd.vsrc --solver cg

  # Connectivity pre-flight only
  pdn-ir design.json --net VSS --connection-only --error-file vss.err
        """
    )
    parser.add_argument('design', type=str,
                        help='Design snapshot (.json)')
    parser.add_argument('--net', required=True,
                        help='Supply net to analyze')
    parser.add_argument('--corner', type=str,
                        help='Analysis corner (default: the snapshot default power)')
    parser.add_argument('--vsrc', type=str,
                        help='Voltage source file: x_um y_um size_um [voltage [layer]] per line')
    parser.add_argument('--report', type=str,
                        help='Text IR drop report')
    parser.add_argument('--error-file', type=str,
                        help='Floating node report')
    parser.add_argument('--em-report', type=str,
                        help='Electromigration report (enables EM analysis)')
    parser.add_argument('--spice', type=str,
                        help='SPICE netlist of the resistor mesh')
    parser.add_argument('--plot', type=str,
                        help='IR drop map PNG of the bottom layer')
    parser.add_argument('--bump-pitch-x', type=float, default=0.0,
                        help='Bump pitch in x, um (default: 140)')
    parser.add_argument('--bump-pitch-y', type=float, default=0.0,
                        help='Bump pitch in y, um (default: 140)')
    parser.add_argument('--bump-size', type=float, default=10.0,
                        help='Bump contact size, um (default: 10)')
    parser.add_argument('--node-density', type=float, default=-1.0,
                        help='Bottom-layer node spacing, um (overrides --node-density-factor)')
    parser.add_argument('--node-density-factor', type=int, default=0,
                        help='Bottom-layer node spacing as a multiple of its pitch (default: 5)')
    parser.add_argument('--net-voltage', type=_parse_net_voltages, default={},
                        help='Per-net voltage overrides, e.g. "VDD=1.1,VDDA=1.8"')
    parser.add_argument('--solver', type=str, default='direct', choices=['direct', 'cg'],
                        help='Solver type (default: direct)')
    parser.add_argument('--tolerance', type=float, default=1e-10,
                        help='Convergence tolerance for the iterative solver (default: 1e-10)')
    parser.add_argument('--max-iterations', type=int, default=10000,
                        help='Maximum iterations for the iterative solver (default: 10000)')
    parser.add_argument('--distribution', type=str, default='nearest', choices=['nearest', 'area'],
                        help='Instance current distribution (default: nearest)')
    parser.add_argument('--workers', type=int, default=1,
                        help='Threads for per-layer mesh construction (default: 1)')
    parser.add_argument('--connection-only', action='store_true',
                        help='Only check that the sources and all metal are connected')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')
    return parser


def main(argv=None) -> int:
    """Command-line interface for the IR solver"""
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format='%(levelname)s: %(message)s')
    logger = logging.getLogger('pdn_ir')

    config = IRSolverConfig(
        power_net=args.net,
        vsrc_file=args.vsrc,
        out_file=args.report,
        error_file=args.error_file,
        em_out_file=args.em_report,
        spice_out_file=args.spice,
        em_analyze=bool(args.em_report),
        bump_pitch_x=args.bump_pitch_x,
        bump_pitch_y=args.bump_pitch_y,
        bump_size=args.bump_size,
        node_density_um=args.node_density,
        node_density_factor=args.node_density_factor,
        net_voltage_map=args.net_voltage,
        corner=args.corner,
        solver=args.solver,
        tolerance=args.tolerance,
        max_iterations=args.max_iterations,
        current_distribution=args.distribution,
        workers=args.workers,
        plot_file=args.plot,
    )

    try:
        design = load_snapshot(args.design)
        solver = IRSolver(config, design, design, parasitics=design)
        if args.connection_only:
            report = solver.check_connection()
            print(f"Net {args.net}: connection check {'passed' if report.connected else 'FAILED'} "
                  f"({report.num_sources} source nodes, {len(report.floating_nodes)} unconnected nodes)")
            return 0 if report.connected else 1
        result = solver.solve()
    except (IRSolverError, OSError) as e:
        logger.error(str(e))
        return 2

    print(f"\n{'='*70}")
    print(f"Net {result.net}: worst case voltage {result.worst_case_voltage:.6f} V, "
          f"IR drop {result.worst_case_drop*1000:.3f} mV")
    print(f"Average voltage {result.average_voltage:.6f} V, "
          f"{result.num_nodes} nodes, {result.num_resistors} resistors")
    if not result.confident:
        print(f"WARNING: {len(result.floating_nodes)} floating nodes, see log")
    print(f"{'='*70}")
    return 0


if __name__ == '__main__':
    sys.exit(main())

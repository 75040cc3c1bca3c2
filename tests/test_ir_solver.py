#!/usr/bin/env python3
"""
Unit tests for the IRSolver pipeline

Tests cover:
- Hand-checkable single wire solve
- Grid solves on power and ground nets
- Connectivity warnings and fatal failures
- Determinism and idempotence
- Connection-only pre-flight
- Nets drawn as overlapping shapes of one layer
- Artifact generation
"""

import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend for headless testing

import math
import os
import tempfile
import unittest
from unittest import mock

import networkx as nx
import numpy as np

from pdn_ir.config import IRSolverConfig
from pdn_ir.errors import ConfigurationError, ConnectivityError, SolverError
from pdn_ir.geometry import Rect, SigType
from pdn_ir.ir_solver import IRSolver

from tests.fixtures import LOAD_POWER, grid_design, same_layer_design, straight_wire_design


class TestStraightWire(unittest.TestCase):
    """Single 10 ohm wire with a pin and a 1 W load"""

    def _solver(self, design=None, **kwargs):
        design = design or straight_wire_design()
        config = IRSolverConfig(power_net='VDD', node_density_um=1000, **kwargs)
        return IRSolver(config, design, design)

    def test_voltage_at_load(self):
        """1.0 V source, 1 A drawn through 10 ohm -> -9.0 V at the load"""
        solver = self._solver()
        result = solver.solve()
        self.assertEqual(result.num_nodes, 2)
        self.assertEqual(result.num_resistors, 1)
        self.assertEqual(result.num_sources, 1)
        self.assertAlmostEqual(result.worst_case_voltage, -9.0)
        self.assertAlmostEqual(result.worst_case_drop, 10.0)
        b = solver.gmat.node_index(100, 0, 1)
        self.assertAlmostEqual(result.currents[b], -1.0)
        self.assertAlmostEqual(result.instance_voltages['u_load'], -9.0)
        self.assertTrue(result.confident)

    def test_missing_voltage(self):
        design = straight_wire_design(voltage=None)
        with self.assertRaises(ConfigurationError):
            self._solver(design).solve()

    def test_no_source_reaches_the_mesh(self):
        """Without pins the only bump is too far away: fatal connectivity failure"""
        design = straight_wire_design(with_pin=False)
        with self.assertRaises(ConnectivityError):
            self._solver(design).solve()

    def test_unknown_net(self):
        design = straight_wire_design()
        with self.assertRaises(ConfigurationError):
            IRSolver(IRSolverConfig(power_net='VDDQ'), design, design)

    def test_solver_failure_keeps_mesh(self):
        """A solver failure propagates and the mesh stays available for a SPICE dump"""
        with tempfile.TemporaryDirectory() as tmpdir:
            spice = os.path.join(tmpdir, 'fail.sp')
            solver = self._solver(spice_out_file=spice)
            with mock.patch('pdn_ir.ir_solver.LinearSolver.solve', side_effect=SolverError('singular')):
                with self.assertRaises(SolverError):
                    solver.solve()
            self.assertIsNotNone(solver.gmat)
            self.assertEqual(solver.gmat.num_nodes, 2)
            self.assertIsNone(solver.result)
            self.assertTrue(os.path.exists(spice))


class TestGridSolve(unittest.TestCase):
    """Two-layer grid with pins and four loads"""

    def setUp(self):
        self.design = grid_design()

    def _solve(self, net='VDD', **kwargs):
        solver = IRSolver(IRSolverConfig(power_net=net, **kwargs), self.design, self.design)
        return solver, solver.solve()

    def test_power_net(self):
        solver, result = self._solve()
        self.assertEqual(result.sig_type, SigType.POWER)
        self.assertEqual(result.supply_voltage, 1.0)
        self.assertEqual(result.num_sources, 2)
        self.assertLess(result.worst_case_voltage, 1.0)
        self.assertGreater(result.worst_case_voltage, 0.9)
        self.assertLessEqual(result.worst_case_voltage, result.average_voltage)
        self.assertGreater(result.worst_case_drop, 0.0)
        self.assertEqual(len(result.instance_voltages), 4)

    def test_sources_fixed(self):
        solver, result = self._solve()
        for idx, voltage in solver.source_nodes.items():
            self.assertEqual(result.voltages[idx], voltage)

    def test_current_conservation(self):
        """Current through the sources equals the total load current"""
        solver, result = self._solve()
        self.assertAlmostEqual(result.total_current, 4 * LOAD_POWER)
        self.assertAlmostEqual(result.source_current, result.total_current, places=9)
        self.assertAlmostEqual(result.injected_current, result.total_current, places=12)

    def test_ground_net(self):
        """Ground bounce: voltages rise above 0 V, worst case is the maximum"""
        solver, result = self._solve('VSS')
        self.assertEqual(result.sig_type, SigType.GROUND)
        self.assertEqual(result.supply_voltage, 0.0)
        self.assertGreater(result.worst_case_voltage, 0.0)
        self.assertGreaterEqual(result.worst_case_voltage, result.average_voltage)
        self.assertAlmostEqual(result.worst_case_drop, result.worst_case_voltage)
        self.assertAlmostEqual(result.source_current, 4 * LOAD_POWER, places=9)
        self.assertTrue(np.all(result.currents >= 0.0))

    def test_power_and_ground_are_symmetric(self):
        """Identical geometry gives identical drop magnitude on VDD and VSS"""
        _, vdd = self._solve('VDD')
        _, vss = self._solve('VSS')
        self.assertAlmostEqual(vdd.worst_case_drop, vss.worst_case_drop, places=9)

    def test_corner_power(self):
        _, nominal = self._solve()
        _, slow = self._solve(corner='slow')
        self.assertAlmostEqual(slow.total_current, 5 * LOAD_POWER)
        self.assertGreater(slow.worst_case_drop, nominal.worst_case_drop)

    def test_cg_matches_direct(self):
        _, direct = self._solve(solver='direct')
        _, cg = self._solve(solver='cg', tolerance=1e-12)
        np.testing.assert_allclose(direct.voltages, cg.voltages, atol=1e-7)

    def test_area_distribution(self):
        _, result = self._solve(current_distribution='area')
        self.assertAlmostEqual(result.source_current, 4 * LOAD_POWER, places=9)

    def test_idempotent(self):
        """Solving twice yields the same mesh and voltages"""
        solver = IRSolver(IRSolverConfig(power_net='VDD'), self.design, self.design)
        first = solver.solve()
        nodes, edges = solver.gmat.num_nodes, solver.gmat.num_resistors
        second = solver.solve()
        self.assertEqual(solver.gmat.num_nodes, nodes)
        self.assertEqual(solver.gmat.num_resistors, edges)
        np.testing.assert_array_equal(first.voltages, second.voltages)

    def test_workers_deterministic(self):
        _, serial = self._solve(workers=1)
        _, threaded = self._solve(workers=3)
        np.testing.assert_array_equal(serial.voltages, threaded.voltages)

    def test_minimum_resolution(self):
        solver = IRSolver(IRSolverConfig(power_net='VDD'), self.design, self.design)
        self.assertEqual(solver.minimum_resolution(), 10000)
        solver = IRSolver(IRSolverConfig(power_net='VDD', node_density_um=4.0), self.design, self.design)
        self.assertEqual(solver.minimum_resolution(), 4000)

    def test_supply_and_power_queries(self):
        solver = IRSolver(IRSolverConfig(power_net='VDD', net_voltage_map={'VDD': 1.05}),
                          self.design, self.design)
        self.assertEqual(solver.get_supply_voltage(), 1.05)
        powers = solver.get_power()
        self.assertEqual(len(powers), 4)
        self.assertAlmostEqual(sum(p for _, p in powers), 4 * LOAD_POWER)

    def test_mesh_graph(self):
        solver, result = self._solve()
        G = solver.mesh_graph()
        self.assertIsInstance(G, nx.Graph)
        self.assertEqual(G.number_of_nodes(), result.num_nodes)
        self.assertEqual(G.number_of_edges(), result.num_resistors)
        self.assertIn('xy', G.nodes[0])


class TestFloatingIsland(unittest.TestCase):
    """Partially connected grid"""

    def setUp(self):
        self.design = grid_design(floating_island=True)
        self.solver = IRSolver(IRSolverConfig(power_net='VDD'), self.design, self.design)

    def test_warning_and_nan(self):
        """Loads on the island are reported, not silently solved to zero"""
        with self.assertLogs('pdn_ir', level='WARNING'):
            result = self.solver.solve()
        self.assertFalse(result.confident)
        self.assertEqual(len(result.floating_nodes), 1)
        idx = result.floating_nodes[0]
        self.assertTrue(math.isnan(result.voltages[idx]))
        self.assertTrue(math.isnan(result.instance_voltages['u_float']))
        self.assertTrue(any('Unconnected PDN node' in w for w in result.warnings))
        self.assertTrue(math.isfinite(result.worst_case_voltage))
        self.assertAlmostEqual(result.source_current, 4 * LOAD_POWER, places=9)

    def test_connection_check_fails(self):
        report = self.solver.check_connection()
        self.assertFalse(report.connected)
        self.assertEqual(len(report.floating_nodes), 2)


class TestConnectionOnly(unittest.TestCase):
    """Pre-flight without voltages or dense sampling"""

    def test_passes_without_voltage(self):
        design = grid_design()
        design.nets['VDD'].voltage = None
        design.supply = None
        solver = IRSolver(IRSolverConfig(power_net='VDD'), design, design)
        report = solver.check_connection()
        self.assertTrue(report.connected)
        self.assertEqual(report.num_sources, 2)
        # Wire ends and via junctions only: 5 per metal1 stripe, 7 per metal2 stripe
        self.assertEqual(solver.gmat.num_nodes, 5 * 5 + 3 * 7)


class TestSameLayerShapes(unittest.TestCase):
    """Nets drawn as touching shapes of a single layer"""

    def _solve(self, rects, load_at):
        design = same_layer_design(rects, load_at=load_at)
        solver = IRSolver(IRSolverConfig(power_net='VDD', node_density_um=1000), design, design)
        return solver.solve()

    def test_overlapping_stripes(self):
        """1 mA through two overlapping stripes adding up to 10 ohm"""
        result = self._solve([Rect(0, -1, 100, 1), Rect(90, -1, 200, 1)], (200, 0))
        self.assertTrue(result.confident)
        self.assertFalse(result.floating_nodes)
        self.assertAlmostEqual(result.instance_voltages['u_load'], 1.0 - LOAD_POWER * 10.0)
        self.assertAlmostEqual(result.source_current, LOAD_POWER, places=9)

    def test_l_corner(self):
        """Load at the far end of a vertical stripe overlapping a horizontal one"""
        result = self._solve([Rect(0, -1, 200, 1), Rect(198, -1, 200, 200)], (199, 200))
        self.assertTrue(result.confident)
        self.assertAlmostEqual(result.instance_voltages['u_load'], 1.0 - LOAD_POWER * 19.95)

    def test_corner_touch_is_fatal(self):
        """Shapes meeting only at a corner leave the load unconnected"""
        with self.assertRaises(ConnectivityError):
            self._solve([Rect(0, 0, 100, 2), Rect(100, 2, 102, 100)], (101, 100))


class TestVoltageResolution(unittest.TestCase):

    def test_voltage_resolved_once(self):
        design = grid_design()
        solver = IRSolver(IRSolverConfig(power_net='VDD'), design, design)
        with self.assertLogs('pdn_ir.sources', level='INFO') as logs:
            solver.solve()
        resolved = [line for line in logs.output if 'Voltage of net VDD' in line]
        self.assertEqual(len(resolved), 1)
        self.assertEqual(solver.supply_voltage, 1.0)


class TestArtifacts(unittest.TestCase):
    """Report, error, EM, SPICE and plot outputs"""

    def test_all_outputs(self):
        design = grid_design(floating_island=True)
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = {name: os.path.join(tmpdir, name)
                     for name in ('vdd.rpt', 'vdd.err', 'vdd.em', 'vdd.sp', 'vdd.png')}
            config = IRSolverConfig(
                power_net='VDD',
                out_file=paths['vdd.rpt'],
                error_file=paths['vdd.err'],
                em_out_file=paths['vdd.em'],
                em_analyze=True,
                spice_out_file=paths['vdd.sp'],
                plot_file=paths['vdd.png'],
            )
            result = IRSolver(config, design, design).solve()
            for path in paths.values():
                self.assertTrue(os.path.exists(path), path)

            with open(paths['vdd.rpt']) as f:
                report = f.read()
            self.assertIn('Net: VDD (power)', report)
            self.assertIn(f"Worst case voltage:    {result.worst_case_voltage:.6f} V", report)
            float_row = [line for line in report.splitlines() if line.startswith('u_float')]
            self.assertEqual(float_row[0].split(), ['u_float', 'NaN', 'NaN'])

            with open(paths['vdd.err']) as f:
                errors = f.read().splitlines()
            self.assertEqual(len(errors), 1)
            self.assertTrue(errors[0].startswith('Unconnected PDN node on net VDD'))

            with open(paths['vdd.sp']) as f:
                lines = f.read().splitlines()
            self.assertEqual(lines[-1], '.END')
            self.assertEqual(sum(1 for line in lines if line.startswith('R')), result.num_resistors)
            self.assertEqual(sum(1 for line in lines if line.startswith('V')), 2)


if __name__ == '__main__':
    unittest.main()

#!/usr/bin/env python3
"""Unit tests for source reachability checks."""

import unittest

import numpy as np

from pdn_ir.connectivity import ConnectivityChecker
from pdn_ir.errors import ConnectivityError
from pdn_ir.gmat import GMat


def _chain(n, source_at=0, voltage=1.0):
    gmat = GMat()
    ids = [gmat.add_node(10 * i, 0, 1) for i in range(n)]
    for a, b in zip(ids, ids[1:]):
        gmat.add_resistance(a, b, 1.0)
    if source_at is not None:
        gmat.mark_source(ids[source_at], voltage)
    return gmat, ids


class TestReachability(unittest.TestCase):
    """Shared traversal primitive"""

    def test_connected_chain(self):
        gmat, ids = _chain(4)
        mask, components = ConnectivityChecker(gmat).reachable()
        self.assertTrue(mask.all())
        self.assertEqual(components, 1)

    def test_island_unreachable(self):
        gmat, ids = _chain(3)
        c = gmat.add_node(0, 100, 1)
        d = gmat.add_node(10, 100, 1)
        gmat.add_resistance(c, d, 1.0)
        mask, _ = ConnectivityChecker(gmat).reachable()
        self.assertTrue(mask[ids].all())
        self.assertFalse(mask[c] or mask[d])

    def test_stop_at_sources(self):
        """Nodes only joined through a source still count as reachable"""
        gmat, ids = _chain(5, source_at=2)
        mask, components = ConnectivityChecker(gmat).reachable(stop_at_sources=True)
        self.assertTrue(mask.all())
        self.assertEqual(components, 1)

    def test_two_source_structures(self):
        gmat, ids = _chain(2)
        e = gmat.add_node(0, 100, 1)
        f = gmat.add_node(10, 100, 1)
        gmat.add_resistance(e, f, 1.0)
        gmat.mark_source(f, 1.0)
        for stop in (True, False):
            mask, components = ConnectivityChecker(gmat).reachable(stop_at_sources=stop)
            self.assertTrue(mask.all())
            self.assertEqual(components, 2)

    def test_empty_mesh(self):
        mask, components = ConnectivityChecker(GMat()).reachable()
        self.assertEqual(mask.size, 0)
        self.assertEqual(components, 0)


class TestFullCheck(unittest.TestCase):
    """Pre-solve check with a current vector"""

    def test_all_reachable(self):
        gmat, ids = _chain(3)
        J = np.array([0.0, -0.5, -0.5])
        report = ConnectivityChecker(gmat, 'VDD').check(J)
        self.assertTrue(report.connected)
        self.assertEqual(report.floating_nodes, [])
        self.assertEqual(report.num_sources, 1)
        self.assertEqual(report.num_reachable, 3)

    def test_isolated_injecting_node_warns(self):
        """An isolated loaded node is a warning, not an error"""
        gmat, ids = _chain(2)
        lonely = gmat.add_node(500, 0, 1)
        J = np.zeros(gmat.num_nodes)
        J[ids[1]] = -1.0
        J[lonely] = -1.0
        with self.assertLogs('pdn_ir.connectivity', level='WARNING') as logs:
            report = ConnectivityChecker(gmat, 'VDD').check(J)
        self.assertEqual(report.floating_nodes, [lonely])
        self.assertFalse(report.connected)
        self.assertFalse(report.reachable[lonely])
        self.assertIn('Unconnected PDN node on net VDD at location (500, 0), layer: 1', logs.output[0])

    def test_no_sources_is_fatal(self):
        gmat, _ = _chain(3, source_at=None)
        J = np.array([0.0, -1.0, 0.0])
        with self.assertRaises(ConnectivityError):
            ConnectivityChecker(gmat, 'VDD').check(J)

    def test_nothing_reachable_is_fatal(self):
        """Sources exist but none of the loaded nodes can see them"""
        gmat, ids = _chain(2)
        lonely = gmat.add_node(500, 0, 1)
        J = np.zeros(gmat.num_nodes)
        J[lonely] = -1.0
        with self.assertRaises(ConnectivityError):
            ConnectivityChecker(gmat, 'VDD').check(J)


class TestConnectionOnly(unittest.TestCase):
    """Cheap pre-flight without a current vector"""

    def test_passes(self):
        gmat, _ = _chain(4, source_at=3)
        report = ConnectivityChecker(gmat, 'VDD').check_connection()
        self.assertTrue(report.connected)
        self.assertEqual(report.source_components, 1)

    def test_disconnected_metal(self):
        gmat, _ = _chain(3)
        stray = gmat.add_node(0, 100, 1)
        report = ConnectivityChecker(gmat, 'VDD').check_connection()
        self.assertFalse(report.connected)
        self.assertEqual(report.floating_nodes, [stray])

    def test_split_sources(self):
        gmat, ids = _chain(2)
        other = gmat.add_node(0, 100, 1)
        gmat.mark_source(other, 1.0)
        report = ConnectivityChecker(gmat, 'VDD').check_connection()
        self.assertFalse(report.connected)
        self.assertEqual(report.source_components, 2)

    def test_no_sources(self):
        gmat, _ = _chain(2, source_at=None)
        report = ConnectivityChecker(gmat, 'VDD').check_connection()
        self.assertFalse(report.connected)
        self.assertEqual(report.num_sources, 0)
        self.assertEqual(len(report.floating_nodes), 2)


if __name__ == '__main__':
    unittest.main()

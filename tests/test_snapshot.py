#!/usr/bin/env python3
"""Unit tests for the design snapshot providers."""

import json
import os
import tempfile
import unittest

from pdn_ir.errors import ConfigurationError
from pdn_ir.geometry import Rect, SigType, ViaParams
from pdn_ir.snapshot import DesignSnapshot, load_snapshot

from tests.fixtures import design_dict


class TestSnapshot(unittest.TestCase):

    def setUp(self):
        self.design = DesignSnapshot.from_dict(design_dict())

    def test_layout_provider(self):
        self.assertEqual(self.design.dbu_per_micron, 1000)
        self.assertEqual(self.design.die_area, Rect(0, 0, 100000, 100000))
        self.assertTrue(self.design.has_net('VDD'))
        self.assertFalse(self.design.has_net('VSS'))
        self.assertEqual(self.design.net_sig_type('VDD'), SigType.POWER)
        self.assertEqual(self.design.net_voltage('VDD'), 1.1)
        self.assertEqual(len(self.design.net_wires('VDD')), 3)
        self.assertEqual(self.design.routing_levels(), [1, 2])
        self.assertEqual(self.design.layer_tech(2).em_limit, 0.5)
        self.assertEqual(self.design.macro_blockages()[0].name, 'ram0')

    def test_vias(self):
        vias = self.design.net_vias('VDD')
        self.assertEqual(vias[0].params, ViaParams(1, 2, 100, 100, 100, 0))
        self.assertEqual(len(vias[0].cut_rects()), 2)
        self.assertIsNone(vias[1].params)

    def test_missing_layer(self):
        with self.assertRaises(ConfigurationError):
            self.design.layer_tech(7)

    def test_instance_powers(self):
        powers = {inst.name: p for inst, p in self.design.instance_powers()}
        self.assertEqual(powers, {'u1': 2e-3, 'u2': 1e-3})
        fast = {inst.name: p for inst, p in self.design.instance_powers('fast')}
        self.assertEqual(fast, {'u1': 3e-3, 'u2': 1e-3})

    def test_instance_power_debug_log(self):
        with self.assertLogs('pdn_ir.snapshot', level='DEBUG') as logs:
            self.design.instance_powers()
        self.assertIn('DEBUG:pdn_ir.snapshot:Power of instance u1 is 0.002', logs.output)
        self.assertIn('Total power', logs.output[-1])

    def test_unknown_corner(self):
        with self.assertRaises(ConfigurationError):
            self.design.instance_powers('typical')

    def test_supply_and_parasitics(self):
        self.assertEqual(self.design.supply_voltage(), (1.1, 0.0))
        self.assertIsNone(self.design.layer_resistance_per_micron('metal1'))

    def test_load_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'design.json')
            with open(path, 'w') as f:
                json.dump(design_dict(), f)
            design = load_snapshot(path)
        self.assertEqual(len(design.instances), 2)
        self.assertEqual(design.net_pins('VDD')[0].layer, 2)


if __name__ == '__main__':
    unittest.main()

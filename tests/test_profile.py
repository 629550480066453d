import os
import tempfile
import unittest

import yaml

from nakamonrec.calibration.profile import CalibrationProfile
from nakamonrec.calibration.store import CalibrationStore
from nakamonrec.vision.regions import RegionBox


class ProfileDefaultsTests(unittest.TestCase):
    def test_reference_layout(self) -> None:
        p = CalibrationProfile()
        self.assertEqual(p.ui_scale, 1.0)
        self.assertAlmostEqual(p.vs_box.center_x, 0.5)
        self.assertAlmostEqual(p.vs_box.center_y, 1260 / 2364)
        self.assertEqual((p.vs_box.width, p.vs_box.height), (280, 160))
        self.assertEqual(len(p.slot_boxes), 8)
        self.assertAlmostEqual(p.my_party_boxes[0].center_x, 196 / 1080)
        self.assertAlmostEqual(p.enemy_party_boxes[3].center_y, 915 / 2364)
        self.assertEqual([round(b.center_y * 2364) for b in p.party_select_boxes], [1030, 1430, 1830])
        self.assertEqual((p.win_box.width, p.win_box.height), (1000, 400))

    def test_cardinality_is_enforced(self) -> None:
        p = CalibrationProfile()
        with self.assertRaises(ValueError):
            p.with_boxes(my_party_boxes=p.my_party_boxes[:3])
        with self.assertRaises(ValueError):
            p.with_boxes(party_select_boxes=list(p.party_select_boxes) * 2)
        with self.assertRaises(ValueError):
            CalibrationProfile(ui_scale=0.0)


class ProfileDecodeTests(unittest.TestCase):
    def test_missing_fields_fall_back(self) -> None:
        p = CalibrationProfile.from_dict({"uiScale": 1.25, "winBox": {"centerY": 0.2}})
        d = CalibrationProfile()
        self.assertEqual(p.ui_scale, 1.25)
        self.assertEqual(p.win_box, RegionBox(d.win_box.center_x, 0.2, d.win_box.width, d.win_box.height))
        self.assertEqual(p.my_party_boxes, d.my_party_boxes)
        self.assertEqual(p.lose_box, d.lose_box)

    def test_wrong_cardinality_uses_default(self) -> None:
        p = CalibrationProfile.from_dict({"myPartyBoxes": [{"centerX": 0.1}], "uiScale": "x"})
        self.assertEqual(p.my_party_boxes, CalibrationProfile().my_party_boxes)
        self.assertEqual(p.ui_scale, 1.0)

    def test_non_mapping_yields_defaults(self) -> None:
        self.assertEqual(CalibrationProfile.from_dict(["nope"]), CalibrationProfile())

    def test_dict_round_trip(self) -> None:
        p = CalibrationProfile().with_boxes(ui_scale=1.3, vs_box=RegionBox(0.4, 0.5, 20, 10))
        self.assertEqual(CalibrationProfile.from_dict(p.to_dict()), p)

    def test_merge_group_copies_only_that_group(self) -> None:
        base = CalibrationProfile()
        other = base.with_boxes(ui_scale=1.4, win_box=RegionBox(0.5, 0.1, 10, 10), vs_box=RegionBox(0.5, 0.5, 5, 5))
        merged = base.merge_group("win", other)
        self.assertEqual(merged.win_box, other.win_box)
        self.assertEqual(merged.vs_box, base.vs_box)
        self.assertEqual(merged.ui_scale, 1.0)
        merged = base.merge_group("battle_start", other)
        self.assertEqual(merged.ui_scale, 1.4)
        self.assertEqual(merged.vs_box, other.vs_box)
        self.assertEqual(merged.win_box, base.win_box)


class CalibrationStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "data", "calibration.yml")
        self.store = CalibrationStore(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_absent_file_loads_none(self) -> None:
        self.assertIsNone(self.store.load())

    def test_save_and_load(self) -> None:
        p = CalibrationProfile().with_boxes(ui_scale=1.1)
        self.store.save(p)
        self.assertEqual(self.store.load(), p)
        with open(self.path, "r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        self.assertIn("vsBox", raw)
        self.assertEqual(raw["uiScale"], 1.1)

    def test_corrupt_yaml_degrades_to_defaults(self) -> None:
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as fh:
            fh.write("uiScale: [unclosed\n")
        self.assertEqual(self.store.load(), CalibrationProfile())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

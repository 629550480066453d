import math
import tempfile
import unittest

import cv2

from nakamonrec.calibration.profile import CalibrationProfile
from nakamonrec.core.config import Thresholds
from nakamonrec.records.models import LOSE, WIN
from nakamonrec.runtime.analyzer import BattleAnalyzer
from nakamonrec.vision.cache import ScaledTemplateCache
from nakamonrec.vision.regions import RegionBox
from nakamonrec.vision.templates import TemplateStore

from synthetic import blend, noise, paste


FRAME_H, FRAME_W = 400, 300


def alpha_for(score: float) -> float:
    """Blend weight whose expected correlation against independent noise is ``score``."""
    return 1.0 / (1.0 + math.sqrt(1.0 / (score * score) - 1.0))


def small_profile() -> CalibrationProfile:
    """Layout for a 300x400 test frame; no boxes overlap."""
    return CalibrationProfile().with_boxes(
        vs_box=RegionBox(0.5, 0.5, 60, 40),
        my_party_boxes=[RegionBox(x, 0.8, 50, 60) for x in (0.125, 0.375, 0.625, 0.875)],
        enemy_party_boxes=[RegionBox(x, 0.3, 50, 60) for x in (0.125, 0.375, 0.625, 0.875)],
        party_select_boxes=[RegionBox(0.9, y, 30, 40) for y in (0.1, 0.5, 0.65)],
        win_box=RegionBox(0.5, 0.1, 100, 50),
        lose_box=RegionBox(0.5, 0.1, 100, 50),
    )


class BattleAnalyzerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.monster_a = noise(40, 30, 51)
        self.monster_b = noise(40, 30, 52)
        self.vs = noise(20, 40, 53)
        self.select = noise(30, 20, 54)
        self.win = noise(30, 70, 55)
        self.lose = noise(30, 70, 56)
        store = TemplateStore(self._tmp.name)
        store.add_monster("A", self.monster_a)
        store.add_monster("B", self.monster_b)
        store.add_monster("Huge", noise(80, 80, 57))
        for key, img in (("vs", self.vs), ("select", self.select), ("win", self.win), ("lose", self.lose)):
            store.set_marker(key, img)
        self.analyzer = BattleAnalyzer(ScaledTemplateCache(store))
        self.analyzer.set_profile(small_profile())

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def frame(self, seed: int = 50):
        return noise(FRAME_H, FRAME_W, seed)

    def test_vs_detection(self) -> None:
        frame = self.frame()
        self.assertFalse(self.analyzer.is_vs_detected(frame))
        paste(frame, self.vs, 130, 190)
        self.assertTrue(self.analyzer.is_vs_detected(frame))

    def test_selected_party(self) -> None:
        frame = self.frame()
        self.assertEqual(self.analyzer.detect_selected_party(frame), -1)
        # box 1 is centred at (270, 200)
        paste(frame, self.select, 260, 185)
        self.assertEqual(self.analyzer.detect_selected_party(frame), 1)

    def test_battle_result_win_checked_first(self) -> None:
        self.analyzer.set_profile(small_profile().with_boxes(lose_box=RegionBox(0.5, 0.65, 100, 50)))
        frame = self.frame()
        self.assertIsNone(self.analyzer.check_battle_result(frame))
        blend(frame, self.win, 115, 25, alpha_for(0.6))
        blend(frame, self.lose, 115, 245, alpha_for(0.55))
        profile = self.analyzer.profile
        win_score = self.analyzer.marker_score(frame, profile.win_box, "win")
        lose_score = self.analyzer.marker_score(frame, profile.lose_box, "lose")
        self.assertAlmostEqual(win_score, 0.6, delta=0.05)
        self.assertAlmostEqual(lose_score, 0.55, delta=0.05)
        self.assertEqual(self.analyzer.check_battle_result(frame), WIN)

    def test_lose_alone_is_reported(self) -> None:
        self.analyzer.set_profile(small_profile().with_boxes(lose_box=RegionBox(0.5, 0.65, 100, 50)))
        frame = self.frame()
        blend(frame, self.lose, 115, 245, alpha_for(0.65))
        self.assertEqual(self.analyzer.check_battle_result(frame), LOSE)

    def test_weak_result_marker_rejected(self) -> None:
        frame = self.frame()
        blend(frame, self.win, 115, 25, alpha_for(0.4))
        self.assertLessEqual(self.analyzer.marker_score(frame, self.analyzer.profile.win_box, "win"), 0.5)
        self.assertIsNone(self.analyzer.check_battle_result(frame))

    def test_result_threshold_is_strict(self) -> None:
        frame = self.frame()
        blend(frame, self.win, 115, 25, alpha_for(0.6))
        score = self.analyzer.marker_score(frame, self.analyzer.profile.win_box, "win")
        self.analyzer.thresholds = Thresholds(win=score, lose=score)
        self.assertIsNone(self.analyzer.check_battle_result(frame))
        self.analyzer.thresholds = Thresholds(win=score - 1e-6)
        self.assertEqual(self.analyzer.check_battle_result(frame), WIN)

    def test_identify_slots(self) -> None:
        frame = self.frame()
        paste(frame, self.monster_a, 23, 300)  # my slot 0, centred at (38, 320)
        paste(frame, self.monster_b, 97, 100)  # enemy slot 1, centred at (112, 120)
        found = self.analyzer.identify_slots(frame, range(8))
        self.assertEqual(sorted(found), [0, 5])
        self.assertEqual(found[0][0], "A")
        self.assertEqual(found[5][0], "B")
        self.assertGreater(found[0][1], 0.9)

    def test_identify_only_requested_slots(self) -> None:
        frame = self.frame()
        paste(frame, self.monster_a, 23, 300)
        self.assertEqual(self.analyzer.identify_slots(frame, [1, 2, 3]), {})

    def test_bgra_frame_is_matched_as_bgr(self) -> None:
        frame = self.frame()
        paste(frame, self.vs, 130, 190)
        paste(frame, self.monster_a, 23, 300)
        bgra = cv2.cvtColor(frame, cv2.COLOR_BGR2BGRA)
        self.assertTrue(self.analyzer.is_vs_detected(bgra))
        self.assertEqual(self.analyzer.identify_slots(bgra, [0])[0][0], "A")
        self.assertIsNone(self.analyzer.check_battle_result(bgra))

    def test_profile_scale_prepares_cache(self) -> None:
        self.analyzer.set_profile(small_profile().with_boxes(ui_scale=1.5))
        self.assertEqual(self.analyzer.cache.scale, 1.5)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

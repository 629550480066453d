import os
import tempfile
import time
import unittest

import cv2

from nakamonrec.platform.capture import ImageFolderSource
from nakamonrec.records.models import WIN
from nakamonrec.runtime.service import RecorderRuntime

from synthetic import noise, paste, temp_settings, write_assets


REF_W, REF_H = 1080, 2364


class RecorderRuntimeTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = self._tmp.name
        self.slime = noise(90, 60, 61)
        self.vs = noise(20, 40, 62)
        self.win = noise(50, 100, 63)
        write_assets(os.path.join(root, "assets"), {"slime": self.slime}, {"vs": self.vs, "win": self.win})
        self.settings = temp_settings(root)
        self.frames_dir = os.path.join(root, "frames")
        os.makedirs(self.frames_dir)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def battle_frame(self):
        frame = noise(REF_H, REF_W, 60)
        paste(frame, self.vs, 520, 1250)  # centred on the reference VS position
        paste(frame, self.slime, 166, 1590)  # my slot 0
        return frame

    def result_frame(self):
        frame = noise(REF_H, REF_W, 64)
        paste(frame, self.win, 490, 695)
        return frame

    def test_classify_single_screenshot(self) -> None:
        rt = RecorderRuntime(self.settings)
        out = rt.classify(self.battle_frame())
        self.assertTrue(out["vs"])
        self.assertIsNone(out["result"])
        self.assertEqual(out["selected_party"], -1)
        self.assertEqual(out["slots"][0]["name"], "slime")
        self.assertEqual(sorted(out["slots"]), [0])
        self.assertEqual(rt.classify(self.result_frame())["result"], WIN)

    def test_replay_records_battle(self) -> None:
        cv2.imwrite(os.path.join(self.frames_dir, "001.png"), self.battle_frame())
        cv2.imwrite(os.path.join(self.frames_dir, "002.png"), self.result_frame())
        self.settings.analysis_interval_s = 0.0
        self.settings.capture_poll_interval_s = 0.4
        rt = RecorderRuntime(self.settings)
        rt.start(ImageFolderSource(self.frames_dir))
        try:
            rt.join(timeout=10.0)
            deadline = time.monotonic() + 10.0
            while time.monotonic() < deadline and not rt.history.records():
                time.sleep(0.05)
        finally:
            rt.stop()
        records = rt.history.records()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].result, WIN)
        self.assertEqual(records[0].my_party[0], "slime")
        status = rt.snapshot()
        self.assertFalse(status.running)
        self.assertEqual(status.total_wins, 1)
        self.assertEqual(status.frames_seen, 2)
        self.assertEqual(rt.templates.monsters, [])
        self.assertTrue(os.path.exists(rt.history.path_for("default_record")))

    def test_stop_is_idempotent(self) -> None:
        rt = RecorderRuntime(self.settings)
        rt.stop()
        rt.start(ImageFolderSource(self.frames_dir))
        rt.stop()
        rt.stop()
        self.assertFalse(rt.snapshot().running)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

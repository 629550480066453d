import io
import os
import tempfile
import unittest

import cv2

from nakamonrec.runtime.service import RecorderRuntime
from nakamonrec.ui.server import create_app

from synthetic import noise, paste, temp_settings, write_assets


class ServerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = self._tmp.name
        self.win = noise(40, 80, 71)
        write_assets(os.path.join(root, "assets"), {"slime": noise(60, 40, 72)}, {"win": self.win})
        self.runtime = RecorderRuntime(temp_settings(root))
        app = create_app(self.runtime)
        app.testing = True
        self.client = app.test_client()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_status(self) -> None:
        resp = self.client.get("/api/status")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertFalse(data["running"])
        self.assertEqual(data["state"], "idle")
        self.assertNotIn("last_frame", data)

    def test_slots_and_preview_before_start(self) -> None:
        slots = self.client.get("/api/slots").get_json()
        self.assertEqual(slots["my_party"], ["?"] * 4)
        self.assertEqual(slots["enemy_party"], ["?"] * 4)
        self.assertEqual(self.client.get("/api/preview.jpg").status_code, 204)

    def test_calibration_get_and_unknown_group(self) -> None:
        data = self.client.get("/api/calibration/battle_start").get_json()
        self.assertEqual(len(data["boxes"]["my_party"]), 4)
        self.assertEqual(data["uiScale"], 1.0)
        self.assertEqual(self.client.get("/api/calibration/menu").status_code, 404)

    def test_manual_override(self) -> None:
        bad = {"boxes": {"party_select": [{"centerX": 0.1}, {"centerX": 0.2}]}}
        self.assertEqual(self.client.put("/api/calibration/party_select", json=bad).status_code, 400)
        good = {"boxes": {"win": {"centerY": 0.25}}}
        resp = self.client.put("/api/calibration/win", json=good)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["profile"]["winBox"]["centerY"], 0.25)
        self.assertTrue(os.path.exists(self.runtime.settings.calibration_path))

    def test_auto_calibration_flow(self) -> None:
        self.assertEqual(self.client.post("/api/calibration/win/auto").status_code, 422)
        frame = noise(800, 400, 70)
        paste(frame, self.win, 160, 100)
        ok, buf = cv2.imencode(".png", frame)
        self.assertTrue(ok)
        resp = self.client.post(
            "/api/calibration/win/auto",
            data={"image": (io.BytesIO(buf.tobytes()), "frame.png")},
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertAlmostEqual(resp.get_json()["boxes"]["win"][0]["centerX"], 0.5)
        resp = self.client.post("/api/calibration/win/accept")
        self.assertEqual(resp.status_code, 200)
        self.assertAlmostEqual(self.runtime.calibration.profile.win_box.center_y, 120 / 800.0)
        self.assertEqual(self.client.post("/api/calibration/win/accept").status_code, 422)

    def test_history_endpoints(self) -> None:
        self.assertEqual(self.client.get("/api/history").get_json()["current"], "default_record")
        stats = self.client.get("/api/history/default_record/stats")
        self.assertEqual(stats.status_code, 200)
        self.assertEqual(stats.get_json()["total_battles"], 0)
        self.assertEqual(self.client.get("/api/history/missing/stats").status_code, 404)
        self.assertEqual(self.client.get("/api/history/bad.name/ranking").status_code, 400)
        self.assertEqual(self.client.get("/api/history/default_record/ranking?sort=oops").status_code, 400)
        self.assertEqual(self.client.post("/api/history/default_record/reset").status_code, 200)

    def test_timeline_and_diag(self) -> None:
        self.assertIsInstance(self.client.get("/api/timeline").get_json(), list)
        self.assertIn("cv2", self.client.get("/api/diag").get_json())

    def test_logs_tail(self) -> None:
        self.runtime.logger.info("tail marker")
        resp = self.client.get("/api/logs/tail?n=1")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("tail marker", resp.get_data(as_text=True))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

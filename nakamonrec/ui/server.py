from __future__ import annotations

import io
import os
import traceback
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
from flask import Flask, Response, jsonify, request, send_file

from nakamonrec.calibration.profile import GROUPS
from nakamonrec.core.errors import AssetLoadError, CalibrationFailure, PersistenceError
from nakamonrec.core.logging import tail as tail_log
from nakamonrec.core.session import DiagnosticsRecorder
from nakamonrec.records import get_statistics, monster_ranking, win_rate_series
from nakamonrec.runtime.service import RecorderRuntime
from nakamonrec.vision.regions import RegionBox


def _decode_upload() -> Optional[np.ndarray]:
    upload = request.files.get("image")
    if upload is None:
        return None
    buf = np.frombuffer(upload.read(), dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR) if buf.size else None
    if img is None:
        raise ValueError("uploaded image could not be decoded")
    return img


def _parse_boxes(payload: Dict[str, Any], current: Dict[str, List[RegionBox]]) -> Dict[str, List[RegionBox]]:
    """Decode manual boxes; fields left out keep the current box's values."""
    out: Dict[str, List[RegionBox]] = {}
    for key, raw in payload.items():
        defaults = current.get(key)
        if defaults is None:
            raise ValueError(f"unexpected box key: {key}")
        items = raw if isinstance(raw, list) else [raw]
        out[key] = [
            RegionBox.from_dict(item, defaults[min(i, len(defaults) - 1)]) for i, item in enumerate(items)
        ]
    return out


def _lib_version(name: str) -> str:
    try:
        return version(name)
    except PackageNotFoundError:
        return "not installed"


def create_app(runtime: Optional[RecorderRuntime] = None) -> Flask:
    app = Flask(__name__, static_folder=None)
    rt = runtime or RecorderRuntime()
    logger = rt.logger
    app.config["RUNTIME"] = rt

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------
    @app.errorhandler(PersistenceError)
    def _persistence_error(e):
        logger.error("persistence error: %s", e)
        return jsonify({"error": str(e)}), 500

    @app.errorhandler(AssetLoadError)
    def _asset_error(e):
        logger.error("asset error: %s", e)
        return jsonify({"error": str(e)}), 500

    @app.errorhandler(CalibrationFailure)
    def _calibration_error(e):
        return jsonify({"error": str(e), "group": e.group}), 422

    @app.errorhandler(ValueError)
    def _bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(FileNotFoundError)
    def _not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(FileExistsError)
    def _conflict(e):
        return jsonify({"error": str(e)}), 409

    def _check_group(group: str) -> None:
        if group not in GROUPS:
            raise FileNotFoundError(f"unknown calibration group: {group}")

    # ------------------------------------------------------------------
    # Runtime control
    # ------------------------------------------------------------------
    @app.post("/api/start")
    def api_start():
        rt.start()
        logger.info("api/start")
        return jsonify({"ok": True})

    @app.post("/api/stop")
    def api_stop():
        rt.stop()
        logger.info("api/stop")
        return jsonify({"ok": True})

    @app.get("/api/status")
    def api_status():
        return jsonify(rt.snapshot().to_dict())

    @app.get("/api/slots")
    def api_slots():
        s = rt.snapshot()
        return jsonify({
            "session_id": s.session_id,
            "state": s.state,
            "my_party": s.my_party,
            "enemy_party": s.enemy_party,
            "complete": s.session_complete,
        })

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------
    @app.get("/api/calibration/<group>")
    def api_calibration_get(group: str):
        _check_group(group)
        profile = rt.calibration.profile
        pending = rt.calibration.pending(group)
        return jsonify({
            "group": group,
            "uiScale": profile.ui_scale,
            "boxes": {k: [b.to_dict() for b in v] for k, v in profile.group_boxes(group).items()},
            "pending": pending.to_dict() if pending else None,
        })

    @app.put("/api/calibration/<group>")
    def api_calibration_put(group: str):
        _check_group(group)
        data: Dict[str, Any] = request.get_json(force=True, silent=True) or {}
        raw_boxes = data.get("boxes")
        if not isinstance(raw_boxes, dict):
            raise ValueError("boxes must be an object")
        boxes = _parse_boxes(raw_boxes, rt.calibration.profile.group_boxes(group))
        ui_scale = data.get("uiScale")
        profile = rt.set_calibration_group(group, boxes, ui_scale=float(ui_scale) if ui_scale is not None else None)
        logger.info("api/calibration/%s manual override", group)
        return jsonify({"ok": True, "profile": profile.to_dict()})

    @app.post("/api/calibration/<group>/auto")
    def api_calibration_auto(group: str):
        _check_group(group)
        frame = _decode_upload()
        proposal = rt.propose_calibration(group, frame)
        return jsonify(proposal.to_dict())

    @app.post("/api/calibration/<group>/accept")
    def api_calibration_accept(group: str):
        _check_group(group)
        profile = rt.accept_calibration(group)
        logger.info("api/calibration/%s accepted", group)
        return jsonify({"ok": True, "profile": profile.to_dict()})

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    @app.get("/api/history")
    def api_history():
        return jsonify({"current": rt.history.name, "names": rt.history.list_names()})

    @app.post("/api/history/<name>/load")
    def api_history_load(name: str):
        history = rt.reload_history(name)
        return jsonify({"ok": True, "name": rt.history.name, "records": len(history.records)})

    @app.get("/api/history/<name>/stats")
    def api_history_stats(name: str):
        records = rt.history.peek(name).records
        out = get_statistics(records).to_dict()
        out["series"] = win_rate_series(records)
        return jsonify(out)

    @app.get("/api/history/<name>/ranking")
    def api_history_ranking(name: str):
        sort = request.args.get("sort", "count")
        ranks = monster_ranking(rt.history.peek(name).records, sort=sort)
        return jsonify([r.__dict__ for r in ranks])

    @app.post("/api/history/<name>/reset")
    def api_history_reset(name: str):
        rt.history.peek(name)
        rt.history.reset(name)
        if name == rt.history.name:
            rt.reload_history(name)
        logger.info("api/history/%s reset", name)
        return jsonify({"ok": True})

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    @app.get("/api/preview.jpg")
    def api_preview():
        s = rt.snapshot()
        if not s.last_frame:
            return ("", 204)
        return send_file(io.BytesIO(s.last_frame), mimetype="image/jpeg", as_attachment=False, download_name="preview.jpg")

    @app.get("/api/logs/tail")
    def api_logs_tail():
        n = int(request.args.get("n", 200))
        try:
            lines = tail_log(rt.settings.log_dir, n)
        except OSError:
            return Response(traceback.format_exc(), mimetype="text/plain", status=500)
        if lines is None:
            return ("", 204)
        return Response("".join(lines), mimetype="text/plain")

    @app.get("/api/diag")
    def api_diag():
        return jsonify({
            "cv2": cv2.__version__,
            "numpy": np.__version__,
            "mss": _lib_version("mss"),
            "flask": _lib_version("flask"),
            "pyyaml": _lib_version("PyYAML"),
            "templates": len(rt.templates.monsters),
            "snapshots": DiagnosticsRecorder.list_snapshots(rt.settings.diagnostics_dir)[:20],
        })

    @app.get("/api/timeline")
    def api_timeline():
        n = int(request.args.get("n", 50))
        return jsonify(rt.get_timeline(n))

    return app


def main() -> None:
    app = create_app()
    port = int(os.environ.get("PORT", "8083"))
    app.run(host="127.0.0.1", port=port, debug=False, threaded=True)


if __name__ == "__main__":
    main()

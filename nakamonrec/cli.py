import argparse
import json
import os
import sys
import time
from typing import Optional

import cv2

from nakamonrec.core.config import load_settings
from nakamonrec.core.errors import AssetLoadError, CalibrationFailure, NakamonError
from nakamonrec.platform.capture import ImageFolderSource
from nakamonrec.records import HistoryStore, get_statistics, monster_ranking, win_rate_series


def _read(path: str):
    if not os.path.exists(path):
        print(f"Image not found: {path}")
        return None
    return cv2.imread(path, cv2.IMREAD_COLOR)


def _runtime():
    from nakamonrec.runtime.service import RecorderRuntime

    return RecorderRuntime(load_settings())


def cmd_serve(args) -> int:
    from nakamonrec.ui.server import create_app

    app = create_app(_runtime())
    port = args.port or int(os.environ.get("PORT", "8083"))
    app.run(host=args.host, port=port, debug=False, threaded=True)
    return 0


def cmd_analyze(args) -> int:
    frame = _read(args.image)
    if frame is None:
        return 2
    try:
        out = _runtime().classify(frame)
    except AssetLoadError as e:
        print(f"Assets unavailable: {e}")
        return 2
    print(json.dumps(out, ensure_ascii=False, indent=2))
    return 0


def cmd_calibrate(args) -> int:
    frame = _read(args.image)
    if frame is None:
        return 2
    rt = _runtime()
    try:
        rt.calibration.load()
        proposal = rt.propose_calibration(args.group, frame)
    except CalibrationFailure as e:
        print(str(e))
        return 1
    except NakamonError as e:
        print(f"Calibration unavailable: {e}")
        return 2
    print(json.dumps(proposal.to_dict(), ensure_ascii=False, indent=2))
    if args.save:
        rt.accept_calibration(args.group)
        print(f"Saved to {rt.calibration.store.path}")
    return 0


def cmd_stats(args) -> int:
    settings = load_settings()
    store = HistoryStore(settings.data_dir, settings.history_name)
    name = args.name or settings.history_name
    try:
        history = store.load(name)
    except (NakamonError, ValueError) as e:
        print(f"Cannot read history {name}: {e}")
        return 2
    stats = get_statistics(history.records)
    print(f"{name}: {stats.total_wins}W {stats.total_losses}L  win rate {stats.win_rate:.1f}%")
    for p in stats.parties:
        print(f"  party {p.index + 1}: {p.wins}W {p.losses}L  win {p.win_rate:.1f}%  usage {p.usage_rate:.1f}%")
    ranks = monster_ranking(history.records, sort=args.sort)[: args.top]
    if ranks:
        print("  enemy monsters:")
        for r in ranks:
            print(f"    {r.name:<20} seen {r.count:>3} ({r.appearance_rate:.1f}%)  win {r.win_rate:.1f}%")
    series = win_rate_series(history.records)
    if series:
        print(f"  trend: {series[0]:.1f}% -> {series[-1]:.1f}% over {len(series)} battles")
    return 0


def cmd_replay(args) -> int:
    source = ImageFolderSource(args.folder)
    if not source.paths:
        print(f"No images in {args.folder}")
        return 2
    rt = _runtime()
    # hold every frame for one analysis tick so nothing is rate-limited away
    rt.settings.capture_poll_interval_s = max(rt.settings.analysis_interval_s, args.interval_ms / 1000.0)
    rt.start(source)
    try:
        rt.join()
        time.sleep(rt.settings.scan_passes * rt.settings.scan_interval_s)
    finally:
        rt.stop()
    s = rt.snapshot()
    print(json.dumps(s.to_dict(), ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[list] = None) -> int:
    ap = argparse.ArgumentParser(prog="nakamonrec", description="Battle screen recorder")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run the HTTP control server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("analyze", help="Classify a single screenshot")
    p.add_argument("image")
    p.set_defaults(func=cmd_analyze)

    p = sub.add_parser("calibrate", help="Auto-calibrate one region group from a screenshot")
    p.add_argument("group", choices=["party_select", "battle_start", "win", "lose"])
    p.add_argument("image")
    p.add_argument("--save", action="store_true", help="Accept and persist the proposal")
    p.set_defaults(func=cmd_calibrate)

    p = sub.add_parser("stats", help="Print statistics for a history")
    p.add_argument("name", nargs="?", default=None)
    p.add_argument("--sort", choices=["count", "win_rate"], default="count")
    p.add_argument("--top", type=int, default=10)
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("replay", help="Feed a folder of screenshots through the recorder")
    p.add_argument("folder")
    p.add_argument("--interval-ms", type=int, default=500)
    p.set_defaults(func=cmd_replay)

    args = ap.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

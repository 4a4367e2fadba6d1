from __future__ import annotations

"""
PhotoMap capture client: locate, take a photo, keep the record locally or
upload it to the API server, and browse/delete stored records.

Examples:
  # Where am I?
  python -m photomap.client.service locate

  # Capture from the rear camera and keep the record in data/photos.json
  python -m photomap.client.service capture --description "trailhead"

  # Capture and upload to a running server instead
  python -m photomap.client.service capture --upload --api-url http://localhost:3000

  # Browse / delete local records
  python -m photomap.client.service list
  python -m photomap.client.service show k3j9x0a1b --export out.jpg
  python -m photomap.client.service delete k3j9x0a1b
  python -m photomap.client.service clear --yes

  # Browse records held by the server
  python -m photomap.client.service remote-list
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from photomap.client.api_client import ApiError, PhotoApiClient
from photomap.client.camera import CameraError, camera_from_config
from photomap.client.geolocation import PositionError, UnsupportedError, geolocator_from_config
from photomap.client.record_store import LocalRecordStore
from photomap.client.workflow import CaptureStateError, CaptureWorkflow
from photomap.common.config import load_config
from photomap.common.logging_setup import get_logger, setup_logging
from photomap.common.types import PhotoRecord


log = get_logger(__name__)


def _summary(r: PhotoRecord) -> str:
    line = f"{r.id}  {r.latitude:.4f}, {r.longitude:.4f}  {r.timestamp}"
    if r.description:
        line += f"  {r.description}"
    return line


def _print_records(records: List[PhotoRecord], as_json: bool) -> None:
    if as_json:
        print(json.dumps([_without_inline(r) for r in records], indent=2))
        return
    if not records:
        print("No photos yet. Take the first one!")
        return
    for r in records:
        print(_summary(r))


def _without_inline(r: PhotoRecord) -> Dict[str, Any]:
    d = r.to_dict()
    if "image_data" in d:
        d["image_data"] = f"<{len(d['image_data'])} chars>"
    return d


def _store(cfg: Dict[str, Any], path: Optional[str]) -> LocalRecordStore:
    c = cfg["client"]
    return LocalRecordStore(path or c["store_path"], key=c.get("store_key", "photoMapPhotos"))


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    return input(f"{prompt} [y/N] ").strip().lower() in ("y", "yes")


def cmd_locate(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    pos = geolocator_from_config(cfg).get_current_position()
    print(f"{pos.latitude:.6f}, {pos.longitude:.6f}  (source={pos.source}, accuracy_m={pos.accuracy_m})")
    return 0


def cmd_capture(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    api = PhotoApiClient(args.api_url or cfg["client"]["api_url"]) if args.upload else None
    wf = CaptureWorkflow(
        geolocator=geolocator_from_config(cfg),
        camera=camera_from_config(cfg),
        store=_store(cfg, args.store),
        api=api,
    )
    with wf:
        pos = wf.locate()
        print(f"Location: {pos.latitude:.6f}, {pos.longitude:.6f}")
        wf.start_camera()
        img = wf.capture()
        while args.interactive and not _confirm(f"Keep {img.width}x{img.height} photo?", False):
            wf.retake()
            img = wf.capture()
        if args.upload:
            rec = wf.upload(args.description or "")
            print(f"Photo uploaded: {rec.id}")
        else:
            rec = wf.save_locally(args.description or "")
            print(f"Photo saved successfully: {rec.id}")
    return 0


def cmd_list(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    _print_records(_store(cfg, args.store).list(), args.json)
    return 0


def cmd_show(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    rec = _store(cfg, args.store).get(args.id)
    if rec is None:
        print("Photo not found.", file=sys.stderr)
        return 1
    print(json.dumps(_without_inline(rec), indent=2))
    if args.export:
        data = rec.image_bytes()
        if data is None:
            print("Record has no inline image.", file=sys.stderr)
            return 1
        Path(args.export).write_bytes(data)
        print(f"Image written to {args.export}")
    return 0


def cmd_delete(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    if not _confirm("Delete this photo? This action cannot be undone.", args.yes):
        return 1
    if not _store(cfg, args.store).delete_one(args.id):
        print("Photo not found.", file=sys.stderr)
        return 1
    print(f"Deleted {args.id}")
    return 0


def cmd_clear(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    if not _confirm("Delete ALL photos? This action cannot be undone.", args.yes):
        return 1
    _store(cfg, args.store).delete_all()
    print("All photos deleted.")
    return 0


def cmd_remote_list(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    api = PhotoApiClient(args.api_url or cfg["client"]["api_url"])
    _print_records(api.list(), args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="photomap", description="Geotagged photo capture client")
    ap.add_argument("--config", default=None, help="Path to params YAML (default config/params.yaml)")
    ap.add_argument("--store", default=None, help="Override local record store path")
    ap.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("locate", help="Print the current position")

    p = sub.add_parser("capture", help="Locate, take a photo and store it")
    p.add_argument("--description", default="", help="Optional description")
    p.add_argument("--upload", action="store_true", help="Upload to the API server instead of saving locally")
    p.add_argument("--api-url", default=None, help="API server root URL")
    p.add_argument("--interactive", action="store_true", help="Ask before keeping the still (retake on 'n')")

    p = sub.add_parser("list", help="List local records, newest first")
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("show", help="Show one local record")
    p.add_argument("id")
    p.add_argument("--export", default=None, help="Write the image bytes to this file")

    p = sub.add_parser("delete", help="Delete one local record")
    p.add_argument("id")
    p.add_argument("--yes", action="store_true")

    p = sub.add_parser("clear", help="Delete all local records")
    p.add_argument("--yes", action="store_true")

    p = sub.add_parser("remote-list", help="List records held by the API server")
    p.add_argument("--api-url", default=None)
    p.add_argument("--json", action="store_true")
    return ap


COMMANDS = {
    "locate": cmd_locate,
    "capture": cmd_capture,
    "list": cmd_list,
    "show": cmd_show,
    "delete": cmd_delete,
    "clear": cmd_clear,
    "remote-list": cmd_remote_list,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    # stdout carries command output (JSON listings); logs go to stderr
    setup_logging(args.log_level or cfg["logging"].get("level"), service="photomap-client", stream="stderr")
    try:
        return COMMANDS[args.cmd](cfg, args)
    except UnsupportedError as e:
        print(f"Unable to get your location: {e}", file=sys.stderr)
    except PositionError as e:
        print(f"Unable to get your location ({e.code}): {e}. "
              "Please make sure location services are enabled.", file=sys.stderr)
    except CameraError as e:
        print(f"Unable to access camera: {e}. "
              "Please make sure camera permissions are granted.", file=sys.stderr)
    except CaptureStateError as e:
        print(str(e), file=sys.stderr)
    except ApiError as e:
        log.error("API request failed: %s", e)
        print(f"Server request failed: {e}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())

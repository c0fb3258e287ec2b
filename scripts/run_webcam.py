#!/usr/bin/env python3
"""Real-time check-in via webcam.

Tracks the face on every frame with the fast engine and attempts an
identification at a fixed interval with the deep engine (or the cloud
endpoint when USE_CLOUD=1).

Usage:
    python scripts/run_webcam.py --identities data/identities.json
    python scripts/run_webcam.py --camera 1 --interval 1.0 --no-display
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

import cv2

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from rostercheck.backends.factory import create_pipeline
from rostercheck.core.config import Config
from rostercheck.core.errors import AcquisitionFailure
from rostercheck.core.logging_config import setup_logging
from rostercheck.core.overlay import COLOR_GREEN, COLOR_RED, draw_box, draw_feedback
from rostercheck.core.utils import load_identities_json
from rostercheck.core.video_io import WebcamSource
from rostercheck.services.checkin import CheckInStatus

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Real-time check-in via webcam",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera device ID (overrides .env CAMERA_ID)",
    )

    parser.add_argument(
        "--identities",
        type=str,
        default="data/identities.json",
        help="JSON file of enrolled identities {id: descriptor}",
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=1.5,
        help="Seconds between identification attempts",
    )

    parser.add_argument(
        "--no-display",
        action="store_true",
        help="Disable video display (headless mode)",
    )

    return parser.parse_args()


async def run(args: argparse.Namespace, config: Config) -> int:
    components = create_pipeline(config)

    try:
        await components.orchestrator.initialize()
    except AcquisitionFailure as e:
        logger.error(f"Initialization failed: {e}")
        print(f"❌ Could not load the recognition engines: {e}")
        await components.close()
        return 1

    count = components.checkin.replace_identities(load_identities_json(args.identities))
    print(f"✓ Engines ready, {count} identities enrolled")

    display = config.display and not args.no_display
    camera_id = args.camera if args.camera is not None else config.camera_id
    last_attempt = 0.0
    status_line = ""
    last_result = None

    try:
        source = WebcamSource(camera_id=camera_id)
    except RuntimeError as e:
        logger.error(f"Failed to open webcam: {e}")
        print(f"❌ Error: {e}")
        await components.close()
        return 1

    try:
        with source:
            print("Press 'q' or ESC to quit")
            while True:
                ok, frame = source.read()
                if not ok:
                    break

                feedback = await components.checkin.track(frame)

                now = time.monotonic()
                if feedback.box is not None and now - last_attempt >= args.interval:
                    last_attempt = now
                    last_result = await components.checkin.identify(frame)
                    if last_result.status is CheckInStatus.MATCHED:
                        status_line = f"{last_result.match.label} ({last_result.match.distance:.3f})"
                    else:
                        status_line = last_result.message
                    logger.info(f"Check-in: {last_result!r} - {status_line}")

                if display:
                    draw_feedback(frame, feedback.box, feedback.verdict, status_line)
                    if last_result is not None and last_result.box is not None:
                        matched = last_result.status is CheckInStatus.MATCHED
                        draw_box(frame, last_result.box, color=COLOR_GREEN if matched else COLOR_RED)
                    cv2.imshow("rostercheck", frame)
                    key = cv2.waitKey(1) & 0xFF
                    if key in (ord("q"), 27):
                        break
    finally:
        if display:
            cv2.destroyAllWindows()
        await components.close()

    return 0


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()
    logger.info(f"Loaded config: {config!r}")
    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Enroll a person from a photo.

Runs the deep engine with the quality gate, rejects faces already enrolled
under another id, and stores the descriptor in the identities JSON file.

Usage:
    python scripts/enroll_image.py --id P-0042 --image photos/p42.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import cv2

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from rostercheck.backends.factory import create_pipeline
from rostercheck.core.config import Config
from rostercheck.core.errors import AcquisitionFailure
from rostercheck.core.logging_config import setup_logging
from rostercheck.core.utils import load_identities_json, save_identity_json

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Enroll a person from a photo",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--id", required=True, help="Identity id to enroll")
    parser.add_argument("--image", required=True, help="Path to the photo")
    parser.add_argument(
        "--identities",
        type=str,
        default="data/identities.json",
        help="JSON file of enrolled identities {id: descriptor}",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace, config: Config) -> int:
    frame = cv2.imread(args.image)
    if frame is None:
        print(f"❌ Could not read image: {args.image}")
        return 1

    components = create_pipeline(config)
    try:
        await components.orchestrator.initialize()
    except AcquisitionFailure as e:
        print(f"❌ Could not load the recognition engines: {e}")
        return 1

    # Exclude the id being (re-)enrolled from the duplicate check
    identities = [i for i in load_identities_json(args.identities) if i.id != args.id]
    components.checkin.replace_identities(identities)

    try:
        capture = await components.enrollment.capture(frame)
    finally:
        await components.close()

    if not capture.success:
        print(f"❌ {capture.message}")
        return 1

    save_identity_json(args.identities, args.id, capture.record)
    ratio = capture.verdict.ratio if capture.verdict else 0.0
    print(f"✓ Enrolled {args.id} (face ratio {ratio:.2f}) into {args.identities}")
    return 0


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()
    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()

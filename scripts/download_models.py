#!/usr/bin/env python3
"""Acquire the model bundle from the configured sources.

Races every candidate source, validates the winner and writes the assembled
assets into the cache. With --export the bundle is also copied into a flat
directory that the cloud endpoint can load (MODELS_DIR).

Usage:
    python scripts/download_models.py
    python scripts/download_models.py --source https://cdn.example.com/ai_models
    python scripts/download_models.py --export models
"""

from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from rostercheck.assets.manifest import (
    CNN_DETECTOR_ASSET,
    FAST_DETECTOR_ASSET,
    LANDMARKS_ASSET,
    RECOGNITION_ASSET,
)
from rostercheck.assets.resolver import ModelSourceResolver
from rostercheck.core.config import Config
from rostercheck.core.errors import AcquisitionFailure
from rostercheck.core.logging_config import setup_logging

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Download and verify the model bundle",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--source",
        action="append",
        default=None,
        help="Candidate source (repeatable; overrides MODEL_SOURCES)",
    )

    parser.add_argument(
        "--cache-dir",
        type=str,
        default=None,
        help="Cache directory (default: MODELS_DIR/cache)",
    )

    parser.add_argument(
        "--export",
        type=str,
        default=None,
        help="Copy the resolved bundle into this flat directory",
    )

    return parser.parse_args()


async def run(args: argparse.Namespace, config: Config) -> int:
    resolver = ModelSourceResolver(
        candidates=args.source or config.model_sources,
        cache_dir=Path(args.cache_dir) if args.cache_dir else config.models_dir / "cache",
        required_assets=(FAST_DETECTOR_ASSET, LANDMARKS_ASSET, RECOGNITION_ASSET),
        asset_origin=config.asset_origin,
        manifest_name=config.manifest_name,
        probe_timeout=config.probe_timeout,
        download_timeout=config.download_timeout,
    )

    try:
        bundle = await resolver.resolve()
    except AcquisitionFailure as e:
        print("❌ Could not acquire the model bundle:")
        for failure in e.failures:
            print(f"  - {failure.source}: {failure.cause}")
        return 1

    print(f"✓ Bundle {bundle.version or '?'} from {bundle.source}")
    for name, path in sorted(bundle.files.items()):
        print(f"  {name:20s} {path}")
    if not bundle.has(CNN_DETECTOR_ASSET):
        print(f"  (no {CNN_DETECTOR_ASSET}; deep engine will run its CPU detector only)")

    if args.export:
        export_dir = Path(args.export)
        export_dir.mkdir(parents=True, exist_ok=True)
        source_dir = resolver.cache_path(bundle.source)
        shutil.copy2(source_dir / config.manifest_name, export_dir / config.manifest_name)
        for path in bundle.files.values():
            shutil.copy2(path, export_dir / path.name)
        print(f"✓ Exported to {export_dir}")

    return 0


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()
    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()

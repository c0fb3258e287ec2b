#!/usr/bin/env python3
"""Serve the cloud inference endpoint (POST /process-face).

Models are loaded from MODELS_DIR on the first request; populate it with
scripts/download_models.py --export.

Usage:
    python scripts/serve_cloud.py
    python scripts/serve_cloud.py --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from rostercheck.cloud.server import create_app
from rostercheck.core.config import Config
from rostercheck.core.logging_config import setup_logging

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Cloud inference endpoint",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8080, help="Bind port")
    return parser.parse_args()


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()

    setup_logging("rostercheck", config.log_level)
    logger.info(f"Serving /process-face on {args.host}:{args.port} (models: {config.models_dir})")

    app = create_app(config=config)
    uvicorn.run(app, host=args.host, port=args.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()

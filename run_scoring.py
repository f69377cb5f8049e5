#!/usr/bin/env python
"""
Route Scoring API Server Runner.

Usage:
    python run_scoring.py

Or with PM2:
    pm2 start run_scoring.py --interpreter python
"""

import os
import sys
import logging
import uvicorn

from route_scoring.api import create_app
from route_scoring.config import ScoringConfig

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

logger = logging.getLogger(__name__)


def main():
    """Run the scoring API server with its background scheduler."""
    host = os.getenv("ROUTE_SCORING_HOST", "0.0.0.0")
    port = int(os.getenv("ROUTE_SCORING_PORT", os.getenv("PORT", "8000")))

    try:
        app = create_app(ScoringConfig.from_env())
    except Exception as e:
        logger.error(f"Failed to configure scoring service: {e}")
        sys.exit(1)

    logger.info(f"Starting Route Scoring API on {host}:{port}")

    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="info",
            access_log=True,
        )
    except Exception as e:
        logger.error(f"Failed to start scoring service: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

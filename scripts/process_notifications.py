#!/usr/bin/env python
"""Script to drain the order notification outbox once.

This script:
1. Returns notification claims abandoned by a crashed worker to the queue
2. Delivers every pending notification whose retry time has passed
3. Logs the resulting counts by status

Usage:
    python scripts/process_notifications.py

Requirements:
    - SUPABASE_URL and SUPABASE_SECRET_KEY environment variables must be set
    - RESEND_API_KEY for email channels

Note:
    - Safe to run next to the in-process worker; records are claimed with a
      conditional update so each attempt is delivered once
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront.services.notification_service import NotificationService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Records processed per run
BATCH_LIMIT = 200


async def main() -> None:
    """Process due notifications."""
    service = NotificationService()
    counts = await service.process_due(limit=BATCH_LIMIT)

    logger.info("=" * 50)
    logger.info("Outbox run complete")
    logger.info("  Sent: %d", counts["sent"])
    logger.info("  Retry scheduled: %d", counts["pending"])
    logger.info("  Failed: %d", counts["failed"])
    logger.info("  Skipped (claimed elsewhere): %d", counts["skipped"])
    logger.info("=" * 50)

    if counts["failed"]:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())

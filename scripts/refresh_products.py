#!/usr/bin/env python3
"""CLI script to run a single product refresh pass outside the scheduler."""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from product_refresh.errors import AppError
from product_refresh.logging_config import bind_correlation_id, configure_logging, generate_correlation_id
from refresh_worker.tasks.refresh_products import run_refresh

logger = structlog.get_logger()


async def main() -> int:
    """Run one pass and report its metrics."""
    configure_logging()
    bind_correlation_id(generate_correlation_id())
    logger.info("Starting manual product refresh")

    try:
        metrics = await run_refresh()
    except AppError as e:
        logger.error("Product refresh aborted", error_code=e.code_value, error=e.message)
        return 1

    logger.info("Product refresh completed", **metrics)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

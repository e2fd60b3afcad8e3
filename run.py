"""
Entry point: serve the publishing scheduler and its control API.

Usage::

    python run.py
"""

import logging
import sys

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from cms_publisher.api.server import create_app  # noqa: E402
from cms_publisher.config import get_settings, validate_env  # noqa: E402
from cms_publisher.exceptions import ConfigurationError  # noqa: E402


def main() -> None:
    try:
        settings = get_settings()
        validate_env(strict=True)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    logger = logging.getLogger("run")
    logger.info(
        "Starting publishing scheduler on %s:%d (poll every %ss)",
        settings.api_host,
        settings.api_port,
        settings.poll_interval_seconds,
    )

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

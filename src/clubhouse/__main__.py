"""Clubhouse entrypoint.

Run with:
  python -m clubhouse
"""

import logging
import sys

import uvicorn

from clubhouse.app import create_app
from clubhouse.config import Settings
from clubhouse.errors import StoreUnavailable

logger = logging.getLogger("clubhouse")


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app = create_app(settings)
    except StoreUnavailable:
        logger.exception("Cannot start: store unavailable")
        sys.exit(1)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()

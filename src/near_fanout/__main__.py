"""Entry point: ``python -m near_fanout``."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from near_fanout.config import get_settings
from near_fanout.pipeline import Pipeline

logger = logging.getLogger("near_fanout")


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting with settings: %s", settings.redacted_summary())

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(Pipeline(settings).run())


if __name__ == "__main__":
    main()

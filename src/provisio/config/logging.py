"""Shared logging helpers for provisio."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once with a terse format suitable for CLI output.

    Pass ``force=True`` to reconfigure during tests or when ``--verbose`` is given.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    # per-request lines from the HTTP stack drown out the run log at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

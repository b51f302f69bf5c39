"""Observability utilities: process logging setup.

Configures standard logging for the process and `structlog` for the console
mirror of diagnostic events, so both honour the same level.
"""

from __future__ import annotations

import logging

import structlog


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging.

    Parameters
    ----------
    level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".

    Behavior
    --------
    - Initializes Python's logging with the requested level.
    - Configures structlog with a filtering bound logger at the same level.
    - Keeps HTTP client libraries at WARNING so probe chatter stays readable.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=("%(asctime)s %(levelname)s %(name)s - %(message)s"),
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    for logger_name in ("httpx", "httpcore"):
        logging.getLogger(logger_name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )

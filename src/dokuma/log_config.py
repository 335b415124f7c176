"""Logging configuration."""

import logging
import sys


def setup_logging(debug: bool = False) -> None:
    """Configure package logging.

    Level is DEBUG when debug is True, otherwise INFO.
    Output goes to stdout.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

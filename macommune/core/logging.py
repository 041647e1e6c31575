"""
Process-wide logging setup.

Loggers across the package emit snake_case event names with structured
`extra` fields; this module only decides level, stream and format.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger().setLevel(level.upper())

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure process-wide logging once, on stderr.

    Component loggers are named ``analyzer.<component>`` and inherit
    this configuration.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format=LOG_FORMAT,
    )
    logging.getLogger("analyzer").setLevel(level.upper())

import sys

from loguru import logger

FORMAT = "{line: >4}:{level}:\t{message}"


def setup_logging(level="DEBUG", sink=sys.stderr, fmt=FORMAT) -> int:
    """
    Route the diagnostics of this package to `sink`.

    All configured handlers are removed, so call this from applications only.

    :returns: the id of the new loguru handler
    """
    logger.remove()
    handler_id = logger.add(sink, level=level, format=fmt)
    logger.enable("apkres")
    return handler_id

# cartsync/core/logging.py
import logging
import sys
import colorlog

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

# Third-party loggers capped at WARNING whatever the app level
NOISY_LOGGERS = ("pymongo", "motor", "httpx", "httpcore", "asyncio")


def configure_logging(level=logging.INFO, *, engine_level=None):
    """
    One colored stdout handler on the root logger.
    `engine_level` lets the cart engine (cartsync.domain) run more verbose
    than the HTTP layer, e.g. DEBUG while chasing a sync issue.
    """
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s.%(msecs)03d %(levelname)-8s [%(name)s]%(reset)s %(message)s",
            datefmt="%H:%M:%S",
            log_colors=LOG_COLORS,
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.INFO))
    logging.getLogger("cartsync.domain").setLevel(engine_level if engine_level is not None else level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

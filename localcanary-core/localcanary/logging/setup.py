import logging
import sys
import warnings

from localcanary import config, constants

from .format import AddFormattedAttributes, DefaultFormatter

# The log levels for modules are evaluated incrementally for logging granularity,
# from highest (DEBUG) to lowest (TRACE). Hence, each module below should have
# higher level which serves as the default.

default_log_levels = {
    "asyncio": logging.INFO,
    "plux": logging.WARNING,
    "localcanary.services.routing.concurrency": logging.INFO,
    "localcanary.services.routing.router": logging.INFO,
}

trace_log_levels = {
    "plux": logging.DEBUG,
    "localcanary.services.routing.concurrency": logging.DEBUG,
    "localcanary.services.routing.router": logging.DEBUG,
}


def get_log_level_from_config():
    # overriding the log level if CANARY_LOG has been set
    if config.CANARY_LOG:
        log_level = str(config.CANARY_LOG).upper()
        if log_level.lower() in constants.TRACE_LOG_LEVELS:
            log_level = "DEBUG"
        log_level = logging.getLevelName(log_level)
        return log_level

    return logging.DEBUG if config.DEBUG else logging.INFO


def setup_logging_from_config():
    log_level = get_log_level_from_config()
    setup_logging(log_level)

    if config.is_trace_logging_enabled():
        for name, level in trace_log_levels.items():
            logging.getLogger(name).setLevel(level)


def create_default_handler(log_level: int):
    log_handler = logging.StreamHandler(stream=sys.stderr)
    log_handler.setLevel(log_level)
    log_handler.setFormatter(DefaultFormatter())
    log_handler.addFilter(AddFormattedAttributes())
    return log_handler


def setup_logging(log_level=logging.INFO) -> None:
    """
    Configures the python logging environment for localcanary.

    :param log_level: the optional log level.
    """
    # default handler for the root logger
    log_handler = create_default_handler(log_level)

    # no-op if the root logger already has handlers
    logging.basicConfig(level=log_level, handlers=[log_handler])

    # disable some logs and warnings
    warnings.filterwarnings("ignore")
    logging.captureWarnings(True)

    # set log levels of loggers
    logging.root.setLevel(log_level)
    logging.getLogger("localcanary").setLevel(log_level)
    for logger, level in default_log_levels.items():
        logging.getLogger(logger).setLevel(level)

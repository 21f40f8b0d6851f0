"""Log record formatting for localcanary: abbreviated level, logger and thread names in fixed-width columns."""

import logging
from functools import lru_cache

MAX_THREAD_NAME_LEN = 12
MAX_NAME_LEN = 26

LOG_FORMAT = (
    "%(asctime)s.%(msecs)03d %(lc_level)5s --- [%(lc_thread)"
    f"{MAX_THREAD_NAME_LEN}s] %(lc_name)-{MAX_NAME_LEN}s : %(message)s"
)
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

SHORT_LEVEL_NAMES = {
    logging.CRITICAL: "FATAL",
    logging.WARNING: "WARN",
}


class DefaultFormatter(logging.Formatter):
    def __init__(self, fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT):
        super().__init__(fmt=fmt, datefmt=datefmt)


class AddFormattedAttributes(logging.Filter):
    """
    Sets the ``lc_level``, ``lc_name`` and ``lc_thread`` record attributes used by ``LOG_FORMAT``. Level names are
    at most five characters, logger names are compressed to ``max_name_len`` and thread names keep their last
    ``max_thread_len`` characters.
    """

    def __init__(self, max_name_len: int = MAX_NAME_LEN, max_thread_len: int = MAX_THREAD_NAME_LEN):
        super().__init__()
        self.max_name_len = max_name_len
        self.max_thread_len = max_thread_len

    def filter(self, record):
        record.lc_level = SHORT_LEVEL_NAMES.get(record.levelno, record.levelname)
        record.lc_name = _cached_compress(record.name, self.max_name_len)
        record.lc_thread = record.threadName[-self.max_thread_len :]
        return True


@lru_cache(maxsize=256)
def _cached_compress(name: str, length: int) -> str:
    return compress_logger_name(name, length)


def compress_logger_name(name: str, length: int) -> str:
    """
    Shortens a dotted logger name to at most ``length`` characters. Parts are written out from the right for as long
    as they fit, the remaining parts are reduced to their first letter. ``my.very.long.logger.name`` with length 17
    becomes ``m.v.l.logger.name``. If not even the last part fits, as much of it as possible is kept.

    :param name: the logger name
    :param length: the max length of the logger name
    :return: the compressed name
    """
    if len(name) <= length:
        return name

    parts = name.split(".")
    shortened = [part[0] for part in parts]
    # every part collapsed to one letter, plus the dots
    size = 2 * len(parts) - 1

    for index in reversed(range(len(parts))):
        grown = size + len(parts[index]) - 1
        if grown > length:
            if index == len(parts) - 1 and length > size:
                shortened[index] = parts[index][: length - size + 1]
            break
        shortened[index] = parts[index]
        size = grown

    return ".".join(shortened)

import os
import tempfile

from localcanary.version import __version__

VERSION = __version__

# strings to indicate truthy/falsy values
TRUE_STRINGS = ("1", "true", "True")
FALSE_STRINGS = ("0", "false", "False")
# strings with valid log levels for CANARY_LOG
LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "warning")

# trace log level, configurable via $CANARY_LOG
CANARY_LOG_TRACE = "trace"
TRACE_LOG_LEVELS = [CANARY_LOG_TRACE]

# qualifier of the mutable, unpublished working copy of a function
LATEST_QUALIFIER = "$LATEST"

# default root folder for persisted routing state
DEFAULT_DATA_DIR = os.path.join(tempfile.gettempdir(), "localcanary")

# file name of the routing state snapshot inside the data dir
ROUTING_STATE_FILE = "routing.state"

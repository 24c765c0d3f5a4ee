"""Logging utilities for Vault Cert Manager.

The best way to use this module is through `pre_arg_parse_setup` and
`post_config_setup`. `pre_arg_parse_setup` configures a minimal
terminal logger so that problems with the command line or the
configuration file are reported. `post_config_setup` relies on the
``[logging]`` section of the configuration and switches to the
requested level and output format. Special care is taken by both
methods to ensure all errors are logged before program exit.

"""
import datetime
import functools
import json
import logging
import sys
import traceback
from types import TracebackType
from typing import IO
from typing import Optional
from typing import Type

from vault_cert_manager import errors
from vault_cert_manager._internal import constants
from vault_cert_manager.configuration import LoggingConfig

# Logging format
CLI_FMT = "%(message)s"
TEXT_FMT = "%(asctime)s:%(levelname)s:%(name)s:%(message)s"

ANSI_SGR_RED = "\033[31m"
ANSI_SGR_RESET = "\033[0m"

logger = logging.getLogger(__name__)


def pre_arg_parse_setup() -> None:
    """Setup logging before command line arguments are parsed.

    Terminal logging is setup using
    `vault_cert_manager._internal.constants.QUIET_LOGGING_LEVEL`.
    `sys.excepthook` is set to properly log fatal exceptions.

    """
    stream_handler = ColoredStreamHandler()
    stream_handler.setFormatter(logging.Formatter(CLI_FMT))
    stream_handler.setLevel(constants.QUIET_LOGGING_LEVEL)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # send all records to handlers
    root_logger.addHandler(stream_handler)

    sys.excepthook = functools.partial(except_hook, debug='--debug' in sys.argv)


def post_config_setup(config: LoggingConfig, debug: bool = False,
                      stream: Optional[IO] = None) -> logging.Handler:
    """Setup logging after the configuration is loaded.

    Previously configured terminal handlers are replaced by a single
    handler writing to stream (stdout by default) in the configured
    format and level.

    :param .LoggingConfig config: logging settings
    :param bool debug: log everything and show tracebacks of fatal errors
    :param stream: where to write log records

    :returns: the installed handler
    :rtype: logging.Handler

    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if isinstance(handler, ColoredStreamHandler):
            root_logger.removeHandler(handler)
            handler.close()

    level = constants.LOGGING_LEVELS.get(config.level, constants.DEFAULT_LOGGING_LEVEL)
    if debug:
        level = logging.DEBUG
    if config.format == 'json':
        handler: logging.Handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = ColoredStreamHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter(TEXT_FMT))
    handler.setLevel(level)
    root_logger.addHandler(handler)
    logger.debug('Root logging level set at %d', level)

    sys.excepthook = functools.partial(except_hook, debug=level <= logging.DEBUG)
    return handler


class ColoredStreamHandler(logging.StreamHandler):
    """Sends colored logging output to a stream.

    If the specified stream is not a tty, the class works like the
    standard `logging.StreamHandler`. Default red_level is
    `logging.WARNING`.

    :ivar bool colored: True if output should be colored
    :ivar bool red_level: The level at which to output

    """
    def __init__(self, stream: Optional[IO] = None) -> None:
        super().__init__(stream)
        self.colored = (sys.stderr.isatty() if stream is None else
                        stream.isatty())
        self.red_level = logging.WARNING

    def format(self, record: logging.LogRecord) -> str:
        """Formats the string representation of record.

        :param logging.LogRecord record: Record to be formatted

        :returns: Formatted, string representation of record
        :rtype: str

        """
        out = super().format(record)
        if self.colored and record.levelno >= self.red_level:
            return ''.join((ANSI_SGR_RED, out, ANSI_SGR_RESET))
        return out


class JSONFormatter(logging.Formatter):
    """Formats each record as a single line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        jobj = {
            'time': datetime.datetime.fromtimestamp(
                record.created, datetime.timezone.utc).isoformat(),
            'level': record.levelname.lower(),
            'logger': record.name,
            'message': record.getMessage(),
        }
        if record.exc_info:
            jobj['exception'] = self.formatException(record.exc_info)
        return json.dumps(jobj)


def except_hook(exc_type: Type[BaseException], exc_value: BaseException,
                trace: Optional[TracebackType], debug: bool) -> None:
    """Logs fatal exceptions and exits.

    Expected errors (`.errors.Error`) are reported on one line unless
    debug is True. sys.exit is always called with a nonzero status.

    :param type exc_type: type of the raised exception
    :param BaseException exc_value: raised exception
    :param traceback trace: traceback of where the exception was raised
    :param bool debug: True if the traceback should always be logged

    """
    exc_info = (exc_type, exc_value, trace)
    if exc_type is KeyboardInterrupt:
        logger.error('Exiting due to user request.')
    elif debug or not issubclass(exc_type, Exception):
        logger.error('Exiting abnormally:', exc_info=exc_info)
    elif issubclass(exc_type, errors.Error):
        logger.debug('Exiting abnormally:', exc_info=exc_info)
        logger.error(str(exc_value))
    else:
        logger.error('An unexpected error occurred:')
        output = traceback.format_exception(exc_type, exc_value, trace)
        logger.error(''.join(output).rstrip())
    sys.exit(1)

"""Logging helpers.

All loggers of the package are children of the "exchws" logger. Use get_logger_adapter instead of
logging.getLogger, the adapter formats messages with str.format and evaluates callable arguments lazily.
"""
from __future__ import annotations

import logging
import traceback
from logging import handlers as logging_handlers

ROOT_LOGGER_NAME = 'exchws'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def ensure_log_stream(root_logger_name: str = ROOT_LOGGER_NAME):
    """Make sure that the root logger of the package has a stream handler with the default format."""
    applog = logging.getLogger(root_logger_name)
    for handler in applog.handlers:
        if isinstance(handler, logging.StreamHandler):
            return
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    applog.addHandler(stream_handler)


def _loggers_below(root_logger_name: str) -> list[logging.Logger]:
    sub_logger_name = root_logger_name + '.'
    return [logging.getLogger(name) for name in list(logging.Logger.manager.loggerDict)
            if name.startswith(sub_logger_name) or name == root_logger_name]


def reset_log_levels(root_logger_name: str = ROOT_LOGGER_NAME):
    for logger in _loggers_below(root_logger_name):
        logger.setLevel(logging.NOTSET)


def reset_handlers(root_logger_name: str = ROOT_LOGGER_NAME):
    for logger in _loggers_below(root_logger_name):
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)


def basic_logging_setup(root_logger_name: str = ROOT_LOGGER_NAME,
                        level: int = logging.INFO,
                        log_file_name: str | None = None):
    """Reset all loggers of the package and log to stderr and optionally to a rotating file."""
    reset_log_levels(root_logger_name)
    reset_handlers(root_logger_name)
    logger = logging.getLogger(root_logger_name)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    if log_file_name:
        file_handler = logging_handlers.RotatingFileHandler(log_file_name,
                                                            maxBytes=5000000,
                                                            backupCount=2)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


class LoggerAdapter:
    """This adapter wraps a standard logger and changes the interface in two ways.

     - it uses .format() method of strings for formatting (in contrast to logging.Logger, which uses % operator).
     - if any argument in *args or **kwargs is callable, it replaces the argument with the returned value
       of the called argument. This avoids expensive calls if the logger is not enabled for the level.
    """

    def __init__(self, logger: logging.Logger, prefix: str | None = None):
        self.logger = logger
        self.log_prefix = prefix or ''

    def _process(self, msg: str, args: tuple, kwargs: dict) -> str:
        try:
            _msg = self.log_prefix + msg
        except TypeError:
            _msg = msg

        if len(args) == len(kwargs) == 0:
            return _msg

        if '%' in msg and '{' not in msg:
            # traditional log formatting
            return _msg % args

        resolved_args = [arg() if callable(arg) else arg for arg in args]
        resolved_kwargs = {key: arg() if callable(arg) else arg for key, arg in kwargs.items()}
        return _msg.format(*resolved_args, **resolved_kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self.logger.error(self._process(msg, args, kwargs), exc_info=1)

    def critical(self, msg: str, *args, **kwargs):
        self.log(logging.CRITICAL, msg, *args, **kwargs)

    def log(self, level: int, msg: str, *args, **kwargs):
        """Delegate a log call to the underlying logger, after processing msg, args and kwargs."""
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._process(msg, args, kwargs))


def get_logger_adapter(name: str, prefix: str | None = None) -> LoggerAdapter:
    """Use this method instead of logging.getLogger.

    :return: a LoggerAdapter instance
    """
    return LoggerAdapter(logging.getLogger(name), prefix)


class LogWatchError(Exception):
    def __init__(self, issues: list):
        super().__init__()
        self.issues = issues

    def __repr__(self) -> str:
        return f'LogWatchError: {self.issues}'


class _LogIssue:
    def __init__(self, record: logging.LogRecord):
        self.record = record
        self.call_stack = traceback.format_stack(limit=15)
        # remove last lines from call stack that are inside logging and loghelper.
        while self.call_stack and (__file__ in self.call_stack[-1] or logging.__file__ in self.call_stack[-1]):
            del self.call_stack[-1]

    def __repr__(self) -> str:
        call_stack = ''.join(self.call_stack)
        return f'log msg="{self.record.msg}" level={self.record.levelname} ' \
               f'thread="{self.record.threadName or self.record.thread}"; call-stack:\n{call_stack}'


class LogWatcherHandler(logging.Handler):
    """A logging handler that stores all records in a list."""

    def __init__(self, logger: logging.Logger, level: int):
        """:param logger: the logger that shall be handled
        :param level: all records with log level >= level will be recorded
        """
        super().__init__(level=level)
        self._logger = logger
        self.records: list[_LogIssue] = []
        self._logger.addHandler(self)

    def emit(self, record: logging.LogRecord):
        with self.lock:
            self.records.append(_LogIssue(record))

    def disconnect(self):
        self._logger.removeHandler(self)

    def clear(self):
        with self.lock:
            del self.records[:]


class LogWatcher:
    """Manages one or more LogWatcherHandlers. Can be used also as contextmanager.

    A test uses it to assert that no errors were logged.
    """

    def __init__(self, logger: logging.Logger, level: int = logging.ERROR, start_paused: bool = False):
        """:param logger: the initial logger that shall be recorded
        :param level:  the log level for the initial handler
        :param start_paused: if true, logging is not started immediately.
        """
        self._logger = logger
        self._level = level
        self.handlers: list[LogWatcherHandler] = []
        self._collecting = False
        self.add_handler(logger, level)
        self._collecting = not start_paused

    def add_handler(self, logger: logging.Logger, level: int) -> LogWatcherHandler:
        coll = LogWatcherHandler(logger, level)
        coll.addFilter(self)
        self.handlers.append(coll)
        return coll

    def set_paused(self, is_paused: bool):
        self._collecting = not is_paused

    def stop(self):
        """Disconnect and delete all handlers."""
        self._collecting = False
        for handler in self.handlers:
            handler.disconnect()
        self.handlers = []

    def clear_handlers(self):
        for handler in self.handlers:
            handler.clear()

    def get_all_records(self) -> list[_LogIssue]:
        all_records = []
        for handler in self.handlers:
            with handler.lock:
                all_records.extend(handler.records)
        return all_records

    def check(self, stop: bool = True):
        """Raise a LogWatchError if any record was found.

        :param stop: if True, stop is called internally
        """
        all_records = self.get_all_records()
        if stop:
            self.stop()
        if all_records:
            raise LogWatchError(all_records)

    def filter(self, _: logging.LogRecord) -> bool:  # noqa: A003
        return self._collecting

    def __enter__(self) -> LogWatcher:
        return self

    def __exit__(self, et, ev, tb):  # noqa: ANN001
        self.check()

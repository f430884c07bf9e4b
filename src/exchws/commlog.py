"""Communication logger.

The request core logs every request envelope, response body and the http headers to the loggers below at
DEBUG level. The classes of this module make it easy to route them to a stream or to a directory.
"""
from __future__ import annotations

import functools
import logging
import pathlib
import threading
import time
from typing import Any, Callable

SOAP_REQUEST_OUT = 'exchws_comm.soap.request.out'
SOAP_RESPONSE_IN = 'exchws_comm.soap.response.in'
HTTP_HEADERS_OUT = 'exchws_comm.http.headers.out'
HTTP_HEADERS_IN = 'exchws_comm.http.headers.in'

LOGGER_NAMES = (SOAP_REQUEST_OUT, SOAP_RESPONSE_IN, HTTP_HEADERS_OUT, HTTP_HEADERS_IN)


class OperationFilter(logging.Filter):
    """Pass only messages of the given operation (element name of the request)."""

    def __init__(self, operation: str):
        super().__init__()
        self.operation = operation

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        return self.operation == getattr(record, 'operation', None)


class CommLogger:
    """Base class to make configuring comm logger easy."""

    def __init__(self):
        self.handlers: dict[str, logging.Handler] = {}

    def start(self):
        for name, handler in self.handlers.items():
            logger = logging.getLogger(name)
            logger.addHandler(handler)
            logger.setLevel(logging.DEBUG)

    def stop(self):
        for name, handler in self.handlers.items():
            logger = logging.getLogger(name)
            logger.removeHandler(handler)

    def add_filter(self, log_filter: logging.Filter):
        for handler in self.handlers.values():
            handler.addFilter(log_filter)

    def __enter__(self) -> CommLogger:
        self.start()
        return self

    def __exit__(self, *args, **kwargs):  # noqa: ANN002, ANN003
        self.stop()


class DirectoryLogger(CommLogger):
    """Logger writing communication logs into a directory. Each message will be contained in a single file."""

    D_IN = 'in'
    D_OUT = 'out'

    T_SOAP = 'soap'
    T_HEADERS = 'headers'

    def __init__(self, log_folder: str | pathlib.Path, log_out: bool = False, log_in: bool = False,
                 log_headers: bool = False):
        super().__init__()
        self._log_folder = pathlib.Path(log_folder)
        self._counter = 0
        self._io_lock = threading.Lock()

        if log_in:
            self.handlers[SOAP_RESPONSE_IN] = self._GenericHandler(
                functools.partial(self._write_log, self.T_SOAP, self.D_IN))
            if log_headers:
                self.handlers[HTTP_HEADERS_IN] = self._GenericHandler(
                    functools.partial(self._write_log, self.T_HEADERS, self.D_IN))
        if log_out:
            self.handlers[SOAP_REQUEST_OUT] = self._GenericHandler(
                functools.partial(self._write_log, self.T_SOAP, self.D_OUT))
            if log_headers:
                self.handlers[HTTP_HEADERS_OUT] = self._GenericHandler(
                    functools.partial(self._write_log, self.T_HEADERS, self.D_OUT))

    def start(self):
        self._log_folder.mkdir(parents=True, exist_ok=True)
        super().start()

    def _mk_filename(self, msg_type: str, direction: str, *infos: str) -> str:
        """Create file name.

        :param msg_type: T_SOAP or T_HEADERS
        :param direction: "in" or "out"
        :param infos: become part of filename
        """
        assert msg_type in (self.T_SOAP, self.T_HEADERS)
        assert direction in (self.D_IN, self.D_OUT)
        extension = 'xml' if msg_type == self.T_SOAP else 'txt'
        time_string = f'{time.time():06.3f}'[-8:]
        self._counter += 1
        info_text = f'-{"-".join(infos)}' if infos else ''
        return f'{time_string}-{self._counter:05d}-{direction}-{msg_type}{info_text}.{extension}'

    def _write_log(self, msg_type: str, direction: str, msg: bytes, *infos: str):
        with self._io_lock:
            path = self._log_folder.joinpath(self._mk_filename(msg_type, direction, *infos))
            path.write_bytes(msg)

    class _GenericHandler(logging.Handler):
        def __init__(self, emit: Callable):
            super().__init__()
            self._emit = emit

        def emit(self, record: logging.LogRecord):
            try:
                msg = self.format(record).encode()  # defaults to utf-8
                args = []
                if operation := getattr(record, 'operation', None):
                    args.append(operation)
                if http_method := getattr(record, 'http_method', None):
                    args.append(http_method)
                if http_status := getattr(record, 'http_status', None):
                    args.append(str(http_status))
                self._emit(msg, *args)
            except Exception:  # noqa: BLE001
                self.handleError(record)


class StreamLogger(CommLogger):
    """Set a stream handler for each comm logger."""

    def __init__(self, stream: Any | None = None, operation: str | None = None):
        super().__init__()
        for name in LOGGER_NAMES:
            self.handlers[name] = self._get_handler(stream)
        if operation:
            self.add_filter(OperationFilter(operation))

    @staticmethod
    def _get_handler(stream: Any | None) -> logging.StreamHandler:
        handler = logging.StreamHandler(stream=stream)
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(message)s'))
        return handler

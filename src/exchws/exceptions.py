"""Typed errors of the request core.

Every error that leaves a request execution is an instance of ServiceError (or ApiUsageError for misuse of the api).
The kind attribute groups the errors, is_retryable tells if sending the same request later may succeed.
"""
from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from exchws.pysoap.soapenvelope import SoapFaultDetails
    from exchws.transport import TransportResponse


class ErrorKind(enum.Enum):
    LOCAL = 'Local'
    FATAL_PROTOCOL = 'FatalProtocol'
    FATAL_REMOTE = 'FatalRemote'
    RETRYABLE_REMOTE = 'RetryableRemote'
    TRANSPORT = 'Transport'
    MALFORMED_RESPONSE = 'MalformedResponse'
    CANCELLED = 'Cancelled'


class ApiUsageError(Exception):
    """This Exception is thrown when a call is made when it should not be called, e.g. call execute() twice."""


class ServiceError(Exception):
    """Base class of all errors of a request execution."""

    kind: ErrorKind = ErrorKind.LOCAL

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def is_retryable(self) -> bool:
        return self.kind == ErrorKind.RETRYABLE_REMOTE

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(kind={self.kind.value}, message={self.message!r})'


class LocalValidationError(ServiceError):
    """A request or the service configuration is invalid. Nothing was sent."""

    kind = ErrorKind.LOCAL


class RequestConstructionError(LocalValidationError):
    """The http request or the soap envelope could not be built. Nothing was sent."""


class ProtocolVersionError(ServiceError):
    """The requested protocol version does not support the request."""

    kind = ErrorKind.FATAL_PROTOCOL


class InternalInvariantError(ServiceError):
    """The client produced a request that violates the protocol schema. This is a defect of the client."""

    kind = ErrorKind.FATAL_PROTOCOL


class RemoteServiceError(ServiceError):
    """The service rejected the request with a response code."""

    kind = ErrorKind.FATAL_REMOTE

    def __init__(self, message: str,
                 response_code: str | None = None,
                 fault: SoapFaultDetails | None = None,
                 error_details: dict[str, str] | None = None,
                 cause: BaseException | None = None):
        super().__init__(message, cause)
        self.response_code = response_code
        self.fault = fault
        self.error_details = error_details or {}

    def __repr__(self) -> str:
        return (f'{self.__class__.__name__}(kind={self.kind.value}, response_code={self.response_code}, '
                f'message={self.message!r})')


class AccountLockedError(RemoteServiceError):
    """The account is locked (http status 456). unlock_url is the page where the user can unlock it, if known."""

    def __init__(self, message: str, unlock_url: str | None, cause: BaseException | None = None):
        super().__init__(message, response_code=None, cause=cause)
        self.unlock_url = unlock_url


class RetryableServerBusyError(RemoteServiceError):
    """The server is busy. The caller may repeat the request after back_off_milliseconds."""

    kind = ErrorKind.RETRYABLE_REMOTE

    def __init__(self, message: str,
                 back_off_milliseconds: int | None = None,
                 fault: SoapFaultDetails | None = None,
                 error_details: dict[str, str] | None = None):
        super().__init__(message, response_code='ErrorServerBusy', fault=fault, error_details=error_details)
        self.back_off_milliseconds = back_off_milliseconds


class TransportError(ServiceError):
    """The http exchange failed. status and reason are None if no response was received."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str,
                 status: int | None = None,
                 reason: str | None = None,
                 response: TransportResponse | None = None,
                 cause: BaseException | None = None):
        super().__init__(message, cause)
        self.status = status
        self.reason = reason
        self.response = response

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(status={self.status}, reason={self.reason}, message={self.message!r})'


class MalformedResponseError(ServiceError):
    """The response could not be read."""

    kind = ErrorKind.MALFORMED_RESPONSE


class ResponseNotXmlError(MalformedResponseError):
    """The response is not an xml document (it has no xml declaration)."""


class RequestCancelledError(ServiceError):
    """The request was cancelled by the caller."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = 'request was cancelled', cause: BaseException | None = None):
        super().__init__(message, cause)

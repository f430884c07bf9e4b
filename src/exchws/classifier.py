"""Mapping of soap faults and http errors to typed errors.

The functions of this module return the error, they never raise it. The request controller raises
exactly one error per failed request.
"""
from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlparse

from exchws import responsecodes
from exchws.exceptions import (
    AccountLockedError,
    InternalInvariantError,
    ProtocolVersionError,
    ServiceError,
    TransportError,
)
from exchws.pysoap.soapenvelope import ServiceResponse

if TYPE_CHECKING:
    from exchws.pysoap.soapenvelope import SoapFaultDetails
    from exchws.versions import ServerInfo

SERVER_VERSION_NOT_SUPPORTED = 'Exchange Server does not support the requested version.'


def classify_fault(fault: SoapFaultDetails, server_info: ServerInfo | None) -> ServiceError:
    """Return the error that a soap fault of a http 500 response stands for.

    :param fault: the fault that was read from the response
    :param server_info: the last known server info, it is needed to interpret schema validation errors
    """
    code = fault.response_code
    if code == responsecodes.ERROR_INVALID_SERVER_VERSION:
        return ProtocolVersionError(SERVER_VERSION_NOT_SUPPORTED)
    if code == responsecodes.ERROR_SCHEMA_VALIDATION and server_info is not None \
            and server_info.is_legacy_baseline:
        # 8.0 servers report requests of newer versions as schema violations
        return ProtocolVersionError(SERVER_VERSION_NOT_SUPPORTED)
    if code == responsecodes.ERROR_INCORRECT_SCHEMA_VERSION:
        return InternalInvariantError('Exchange server supports requested version '
                                      'but request was invalid for that version')
    return ServiceResponse.from_fault(fault).as_error()


def unlock_url_from_reason(reason: str | None) -> str | None:
    """Return reason if it is a well-formed absolute url, else None."""
    if not reason:
        return None
    reason = reason.strip()
    if any(c.isspace() for c in reason):
        return None
    parsed = urlparse(reason)
    if not parsed.scheme or not parsed.netloc:
        return None
    return reason


def classify_http_error(status: int, reason: str | None, cause: BaseException | None = None) -> ServiceError:
    """Return the error for a non-2xx response other than 500."""
    if status == responsecodes.HTTP_ACCOUNT_LOCKED:
        unlock_url = unlock_url_from_reason(reason)
        return AccountLockedError(f'The account is locked. Unlock URL is {unlock_url}', unlock_url, cause)
    return TransportError(f'The request failed. http status {status} {reason}', status, reason, cause=cause)


def no_fault_error(status: int, reason: str | None, cause: BaseException | None = None) -> TransportError:
    """Return the error for a http 500 response that contains no readable soap fault."""
    return TransportError(f'The request failed. http status {status} {reason}', status, reason, cause=cause)

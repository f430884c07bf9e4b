"""Response codes and response classes that the request core evaluates.

The service knows several hundred response codes. Only the ones that change the behavior of the
request core are listed here, all others are passed through as plain strings.
"""
import enum


class ServiceResult(enum.Enum):
    """Value of the ResponseClass attribute of a response message."""

    SUCCESS = 'Success'
    WARNING = 'Warning'
    ERROR = 'Error'


NO_ERROR = 'NoError'
ERROR_INVALID_SERVER_VERSION = 'ErrorInvalidServerVersion'
ERROR_SCHEMA_VALIDATION = 'ErrorSchemaValidation'
ERROR_INCORRECT_SCHEMA_VERSION = 'ErrorIncorrectSchemaVersion'
ERROR_SERVER_BUSY = 'ErrorServerBusy'
ERROR_INTERNAL_SERVER_ERROR = 'ErrorInternalServerError'

# names of MessageXml values that carry additional information
BACK_OFF_MILLISECONDS = 'BackOffMilliseconds'

HTTP_ACCOUNT_LOCKED = 456
HTTP_INTERNAL_SERVER_ERROR = 500

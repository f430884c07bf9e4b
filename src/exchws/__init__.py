"""Request execution core of a client for mailbox web services (SOAP over http)."""
from exchws.config import DateTimePrecision, ServiceComponents, ServiceConfig
from exchws.credentials import BasicCredentials
from exchws.exceptions import ErrorKind, ServiceError
from exchws.lifecycle import ErrorPolicy, RequestOutcome, execute_multi, execute_outcome, execute_simple
from exchws.service import ExchangeService
from exchws.versions import ExchangeVersion, ServerInfo

__version__ = '0.9.0'

__all__ = ['BasicCredentials', 'DateTimePrecision', 'ErrorKind', 'ErrorPolicy', 'ExchangeService',
           'ExchangeVersion', 'RequestOutcome', 'ServerInfo', 'ServiceComponents', 'ServiceConfig',
           'ServiceError', 'execute_multi', 'execute_outcome', 'execute_simple']

"""The service context: configuration, collaborators and the few caches that requests share."""
from __future__ import annotations

import collections
import copy
import threading
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import urlparse

from multidict import CIMultiDict, CIMultiDictProxy

from exchws import loghelper
from exchws.config import ServiceComponents
from exchws.exceptions import LocalValidationError
from exchws.lifecycle import ErrorPolicy, execute_multi, execute_outcome, execute_simple
from exchws.pysoap.msgfactory import MessageFactory
from exchws.pysoap.msgreader import MessageReader
from exchws.transport import AiohttpTransport

if TYPE_CHECKING:
    from collections.abc import Mapping

    from exchws import xml_utils
    from exchws.cancellation import CancellationToken
    from exchws.config import ServiceConfig
    from exchws.lifecycle import RequestOutcome, ServiceResponseCollection
    from exchws.operations import OperationProtocol
    from exchws.soapheaders import ImpersonatedUserId, ManagementRoles, PrivilegedUserId
    from exchws.versions import ServerInfo

ResponseHeadersCallback = Callable[[CIMultiDictProxy[str]], Any]
SoapHeadersCallback = Callable[['xml_utils.LxmlElement'], Any]

REQUEST_ID_RESPONSE_HEADERS = ('RequestId', 'request-id')

default_service_components = ServiceComponents(transport_class=AiohttpTransport,
                                               msg_factory_class=MessageFactory,
                                               msg_reader_class=MessageReader)


class ClientStatisticsCache:
    """Latency records of finished requests. Each record is sent once, with a later request.

    The buffer is FIFO with a fixed capacity, the oldest record is dropped when it is full.
    All methods are thread safe.
    """

    def __init__(self, max_size: int = 100):
        self._entries: collections.deque[str] = collections.deque(maxlen=max_size)
        self._lock = threading.Lock()

    @staticmethod
    def format_entry(request_id: str, response_time_ms: int, soap_action: str) -> str:
        return f'MessageId={request_id},ResponseTime={response_time_ms},SoapAction={soap_action};'

    def add(self, entry: str):
        with self._lock:
            self._entries.append(entry)

    def pop(self) -> str | None:
        """Remove and return the oldest record, None if there is none."""
        with self._lock:
            if not self._entries:
                return None
            return self._entries.popleft()

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()

    @property
    def max_size(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ExchangeService:
    """Context of all requests to one service endpoint.

    Many requests can run concurrently with one instance. The mutable state (server info, last response
    headers, client statistics) is guarded by locks that are never held across an await.
    """

    def __init__(self, config: ServiceConfig,
                 components: ServiceComponents | None = None,
                 log_prefix: str = ''):
        """Construct a service.

        :param config: the settings, the instance must not be modified after construction
        :param components: can be used to replace transport, message factory or message reader
        :param log_prefix: prefix for all log messages of this service
        """
        self.config = config
        self._components = copy.copy(default_service_components)
        if components is not None:
            self._components.merge(components)
        self._logger = loghelper.get_logger_adapter('exchws.service', log_prefix)
        self.transport = self._components.transport_class(config)
        self.msg_factory = self._components.msg_factory_class(
            config, loghelper.get_logger_adapter('exchws.msgfactory', log_prefix))
        self.msg_reader = self._components.msg_reader_class(
            loghelper.get_logger_adapter('exchws.msgreader', log_prefix))

        self.impersonated_user_id: ImpersonatedUserId | None = None
        self.privileged_user_id: PrivilegedUserId | None = None
        self.management_roles: ManagementRoles | None = None

        self.client_statistics = ClientStatisticsCache(config.client_statistics_cache_size)
        self._server_info: ServerInfo | None = None
        self._server_info_lock = threading.Lock()
        self._http_response_headers: CIMultiDict[str] = CIMultiDict()
        self._http_response_headers_lock = threading.Lock()
        self._response_headers_callbacks: list[ResponseHeadersCallback] = []
        self._soap_headers_callbacks: list[SoapHeadersCallback] = []

    @property
    def url(self) -> str:
        return self.config.url

    @property
    def server_info(self) -> ServerInfo | None:
        """Version of the server, as reported in the header of the last response."""
        with self._server_info_lock:
            return self._server_info

    @server_info.setter
    def server_info(self, server_info: ServerInfo | None):
        with self._server_info_lock:
            self._server_info = server_info

    @property
    def http_response_headers(self) -> CIMultiDictProxy[str]:
        """A copy of the headers of the last response."""
        with self._http_response_headers_lock:
            return CIMultiDictProxy(self._http_response_headers.copy())

    def add_response_headers_callback(self, callback: ResponseHeadersCallback):
        """Callback is called with the headers of every response."""
        self._response_headers_callbacks.append(callback)

    def remove_response_headers_callback(self, callback: ResponseHeadersCallback):
        self._response_headers_callbacks.remove(callback)

    def add_soap_headers_callback(self, callback: SoapHeadersCallback):
        """Callback is called with the soap Header element of every request; it can append custom headers."""
        self._soap_headers_callbacks.append(callback)

    def remove_soap_headers_callback(self, callback: SoapHeadersCallback):
        self._soap_headers_callbacks.remove(callback)

    def serialize_custom_soap_headers(self, header_node: xml_utils.LxmlElement):
        for callback in list(self._soap_headers_callbacks):
            callback(header_node)

    def validate(self):
        """Check the settings that can change after construction.

        :raises LocalValidationError: if the service is not usable
        """
        if not self.config.url:
            raise LocalValidationError('the url of the service must be set')
        if urlparse(self.config.url).scheme.lower() not in ('http', 'https'):
            raise LocalValidationError(f'protocol of url "{self.config.url}" is not supported')
        if self.impersonated_user_id is not None and self.privileged_user_id is not None:
            raise LocalValidationError('impersonated user and privileged user cannot be set both')

    def prepare_http_headers(self) -> CIMultiDict[str]:
        """Return the http headers of a request and forget the headers of the last response."""
        config = self.config
        headers = CIMultiDict()
        for key, value in config.additional_http_headers.items():
            headers[key] = value
        headers['Content-Type'] = 'text/xml; charset=utf-8'
        headers['Accept'] = 'text/xml'
        headers['User-Agent'] = config.user_agent
        if config.accept_gzip_encoding:
            headers['Accept-Encoding'] = 'gzip,deflate'
        headers['Connection'] = 'keep-alive' if config.keep_alive else 'close'
        if config.client_request_id:
            headers['client-request-id'] = config.client_request_id
            if config.return_client_request_id:
                headers['return-client-request-id'] = 'true'
        if config.target_server_version:
            headers['X-EWS-TargetVersion'] = config.target_server_version
        if config.credentials is not None:
            headers.update(config.credentials.additional_headers(config.url))
        with self._http_response_headers_lock:
            self._http_response_headers.clear()
        return headers

    def save_http_response_headers(self, headers: Mapping[str, str]):
        """Keep headers as snapshot of the last response. Multiple values of a header are joined with ','."""
        merged = CIMultiDict()
        for key, value in headers.items():
            if key in merged:
                merged[key] = f'{merged[key]},{value}'
            else:
                merged[key] = value
        with self._http_response_headers_lock:
            self._http_response_headers = merged
        if self._response_headers_callbacks:
            snapshot = CIMultiDictProxy(merged.copy())
            for callback in list(self._response_headers_callbacks):
                callback(snapshot)

    @staticmethod
    def request_id_of(headers: Mapping[str, str] | None) -> str:
        """Return the id that the server assigned to a request, empty string if unknown."""
        if headers is None:
            return ''
        for name in REQUEST_ID_RESPONSE_HEADERS:
            value = headers.get(name)
            if value:
                return value
        return ''

    async def execute(self, operation: OperationProtocol, cancel_token: CancellationToken | None = None) -> Any:
        """Execute a single response operation and return its result."""
        return await execute_simple(self, operation, cancel_token)

    async def execute_multi(self, operation: OperationProtocol,
                            error_policy: ErrorPolicy = ErrorPolicy.THROW_ON_ERROR,
                            cancel_token: CancellationToken | None = None) -> ServiceResponseCollection:
        """Execute an operation with one response message per item."""
        return await execute_multi(self, operation, error_policy, cancel_token)

    async def execute_outcome(self, operation: OperationProtocol,
                              cancel_token: CancellationToken | None = None) -> RequestOutcome:
        """Like execute, but the error is returned as part of the outcome instead of being raised."""
        return await execute_outcome(self, operation, cancel_token)

    async def close(self):
        await self.transport.close()

    async def __aenter__(self) -> ExchangeService:
        return self

    async def __aexit__(self, *args):  # noqa: ANN002
        await self.close()

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(url={self.config.url}, version={self.config.requested_server_version.name})'

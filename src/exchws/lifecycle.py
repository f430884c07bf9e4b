"""Execution of requests.

A RequestExecution drives one operation through its states:
CREATED -> VALIDATED -> SENT -> SUCCEEDED | FAULTED | TRANSPORT_FAILED | CANCELLED.
Errors that happen before the request is sent end in FAILED.
The operation only provides hooks (see operations.OperationProtocol), all steps are done here.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from exchws import commlog, loghelper, responsecodes
from exchws.classifier import classify_fault, classify_http_error, no_fault_error
from exchws.exceptions import (
    ApiUsageError,
    MalformedResponseError,
    ProtocolVersionError,
    RequestCancelledError,
    RequestConstructionError,
    ServiceError,
    TransportError,
)
from exchws.pysoap.soapenvelope import ServiceResponse
from exchws.responsecodes import ServiceResult

if TYPE_CHECKING:
    from multidict import CIMultiDict

    from exchws.cancellation import CancellationToken
    from exchws.operations import OperationProtocol
    from exchws.service import ExchangeService
    from exchws.transport import TransportResponse
    from exchws.versions import ServerInfo

T = TypeVar('T')

CLIENT_STATISTICS_HEADER = 'X-ClientStatistics'


class RequestState(enum.Enum):
    CREATED = 'Created'
    VALIDATED = 'Validated'
    SENT = 'Sent'
    SUCCEEDED = 'Succeeded'
    FAULTED = 'Faulted'
    TRANSPORT_FAILED = 'TransportFailed'
    CANCELLED = 'Cancelled'
    FAILED = 'Failed'


class ErrorPolicy(enum.Enum):
    """How errors in the response messages of a multi response operation are handled."""

    THROW_ON_ERROR = 'ThrowOnError'
    RETURN_ERRORS = 'ReturnErrors'


@dataclass(frozen=True)
class RequestOutcome(Generic[T]):
    """Either the result or the error of a request."""

    result: T | None = None
    error: ServiceError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the result or raise the error."""
        if self.error is not None:
            raise self.error
        return self.result


class ServiceResponseCollection(Sequence):
    """The response messages of a multi response operation, in the order of the request items."""

    def __init__(self, responses: list[ServiceResponse]):
        self._responses = list(responses)

    def __getitem__(self, index: int) -> ServiceResponse:
        return self._responses[index]

    def __len__(self) -> int:
        return len(self._responses)

    @property
    def overall_result(self) -> ServiceResult:
        results = {r.response_class for r in self._responses}
        if ServiceResult.ERROR in results:
            return ServiceResult.ERROR
        if ServiceResult.WARNING in results:
            return ServiceResult.WARNING
        return ServiceResult.SUCCESS

    @property
    def errors(self) -> list[ServiceResponse]:
        return [r for r in self._responses if r.is_error]

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(count={len(self)}, overall_result={self.overall_result.value})'


class RequestExecution:
    """One execution of an operation against a service. An instance can run only once."""

    def __init__(self, service: ExchangeService,
                 operation: OperationProtocol,
                 cancel_token: CancellationToken | None = None):
        self._service = service
        self._operation = operation
        self._cancel_token = cancel_token
        self._state = RequestState.CREATED
        self._logger = loghelper.get_logger_adapter('exchws.lifecycle')

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def operation(self) -> OperationProtocol:
        return self._operation

    async def run(self) -> Any:
        """Execute the request and return the processed result of the operation.

        :raises ServiceError: exactly one typed error if the request failed
        """
        if self._state != RequestState.CREATED:
            raise ApiUsageError(f'{self._operation.element_name} execution was already started')
        self._state = RequestState.FAILED
        name = self._operation.element_name
        try:
            self._check_cancelled()
            self._validate()
            self._state = RequestState.VALIDATED
            headers, body = self._build_request()
            self._check_cancelled()
            result = await self._exchange(headers, body)
            result = self._process_result(result)
        except RequestCancelledError:
            self._state = RequestState.CANCELLED
            self._logger.info('{} was cancelled', name)
            raise
        except asyncio.CancelledError:
            self._state = RequestState.CANCELLED
            raise
        except TransportError as ex:
            self._state = RequestState.TRANSPORT_FAILED
            self._logger.info('{} failed: {!r}', name, ex)
            raise
        except ServiceError as ex:
            sent = self._state == RequestState.SENT
            self._state = RequestState.FAULTED if sent else RequestState.FAILED
            self._logger.info('{} failed: {!r}', name, ex)
            raise
        self._state = RequestState.SUCCEEDED
        self._logger.debug('{} succeeded', name)
        return result

    async def outcome(self) -> RequestOutcome:
        """Like run, but a ServiceError is returned instead of raised."""
        try:
            return RequestOutcome(result=await self.run())
        except ServiceError as ex:
            return RequestOutcome(error=ex)

    def _process_result(self, result: Any) -> Any:
        return result

    def _check_cancelled(self):
        if self._cancel_token is not None:
            self._cancel_token.raise_if_cancelled()

    def _validate(self):
        self._service.validate()
        requested = self._service.config.requested_server_version
        minimum = self._operation.minimum_version
        if requested < minimum:
            raise ProtocolVersionError(f'The service request {self._operation.element_name} is only valid '
                                       f'for Exchange version {minimum.name} or later.')
        self._operation.validate()

    def _build_request(self) -> tuple[CIMultiDict[str], bytes]:
        service = self._service
        try:
            headers = service.prepare_http_headers()
            self._operation.add_http_headers(headers)
            message = service.msg_factory.mk_request_message(self._operation, service)
            body = message.serialize()
        except ServiceError:
            raise
        except Exception as ex:
            raise RequestConstructionError(f'could not create request {self._operation.element_name}: {ex}',
                                           ex) from ex
        logging.getLogger(commlog.SOAP_REQUEST_OUT).debug(body.decode('utf-8', errors='replace'),
                                                          extra={'operation': self._operation.element_name})
        return headers, body

    async def _exchange(self, headers: CIMultiDict[str], body: bytes) -> Any:
        try:
            response = await self._send(headers, body)
        except TransportError as ex:
            if ex.response is None:
                raise
            async with ex.response:
                error = await self._error_from_response(ex.response, ex)
            raise error from ex
        async with response:
            return await self._read_success_response(response)

    async def _send(self, headers: CIMultiDict[str], body: bytes) -> TransportResponse:
        service = self._service
        send_latencies = service.config.send_client_latencies
        if send_latencies:
            statistics = service.client_statistics.pop()
            if statistics:
                headers[CLIENT_STATISTICS_HEADER] = statistics
        self._state = RequestState.SENT
        started = time.perf_counter()
        response = None
        try:
            try:
                response = await service.transport.send('POST', service.url, headers, body, self._cancel_token)
            except TransportError as ex:
                response = ex.response
                raise
        finally:
            if send_latencies:
                latency_ms = int((time.perf_counter() - started) * 1000)
                request_id = service.request_id_of(response.headers if response is not None else None)
                service.client_statistics.add(service.client_statistics.format_entry(
                    request_id, latency_ms, self._operation.element_name))
        return response

    def _update_server_info(self, server_info: ServerInfo):
        self._service.server_info = server_info

    def _log_response(self, response: TransportResponse, body: bytes):
        content_type = (response.content_type or '').lower()
        if content_type.startswith(('text/', 'application/soap')):
            text = body.decode('utf-8', errors='replace')
        else:
            text = 'Non-textual response'
        logging.getLogger(commlog.SOAP_RESPONSE_IN).debug(text, extra={'operation': self._operation.element_name,
                                                                       'http_status': response.status})

    async def _read_success_response(self, response: TransportResponse) -> Any:
        service = self._service
        service.save_http_response_headers(response.headers)
        try:
            body = await response.read(self._cancel_token)
        except TransportError as ex:
            raise MalformedResponseError(f'reading {self._operation.response_element_name} failed: {ex}', ex) from ex
        self._log_response(response, body)
        received = service.msg_reader.read_response(body, self._operation.response_element_name,
                                                    on_server_info=self._update_server_info)
        try:
            return self._operation.parse_response(received.payload_node, response.headers)
        except ServiceError:
            raise
        except Exception as ex:
            raise MalformedResponseError(f'could not read {self._operation.response_element_name}: {ex}',
                                         ex) from ex

    async def _error_from_response(self, response: TransportResponse, transport_error: TransportError) -> ServiceError:
        """Return the error for a non-2xx response."""
        service = self._service
        service.save_http_response_headers(response.headers)
        if response.status != responsecodes.HTTP_INTERNAL_SERVER_ERROR:
            return classify_http_error(response.status, response.reason, transport_error)
        try:
            body = await response.read(self._cancel_token)
        except (MalformedResponseError, TransportError) as ex:
            self._logger.info('could not read body of http 500 response: {!r}', ex)
            return no_fault_error(response.status, response.reason, ex)
        self._log_response(response, body)
        fault = service.msg_reader.read_soap_fault(body, on_server_info=self._update_server_info)
        if fault is None:
            return no_fault_error(response.status, response.reason, transport_error)
        return classify_fault(fault, service.server_info)


class SimpleServiceRequest(RequestExecution):
    """Execution of an operation with a single response.

    If the operation returns a ServiceResponse, an error response is raised as typed error.
    """

    def _process_result(self, result: Any) -> Any:
        if isinstance(result, ServiceResponse):
            result.raise_if_necessary()
        return result

    async def execute(self) -> Any:
        return await self.run()


class MultiResponseServiceRequest(RequestExecution):
    """Execution of an operation that returns one response message per request item."""

    def __init__(self, service: ExchangeService,
                 operation: OperationProtocol,
                 error_policy: ErrorPolicy = ErrorPolicy.THROW_ON_ERROR,
                 cancel_token: CancellationToken | None = None):
        super().__init__(service, operation, cancel_token)
        self.error_policy = error_policy

    def _process_result(self, result: list[ServiceResponse]) -> ServiceResponseCollection:
        collection = ServiceResponseCollection(result)
        if self.error_policy == ErrorPolicy.THROW_ON_ERROR:
            for response in collection:
                response.raise_if_necessary()
        return collection

    async def execute(self) -> ServiceResponseCollection:
        return await self.run()


async def execute_simple(service: ExchangeService,
                         operation: OperationProtocol,
                         cancel_token: CancellationToken | None = None) -> Any:
    return await SimpleServiceRequest(service, operation, cancel_token).execute()


async def execute_multi(service: ExchangeService,
                        operation: OperationProtocol,
                        error_policy: ErrorPolicy = ErrorPolicy.THROW_ON_ERROR,
                        cancel_token: CancellationToken | None = None) -> ServiceResponseCollection:
    return await MultiResponseServiceRequest(service, operation, error_policy, cancel_token).execute()


async def execute_outcome(service: ExchangeService,
                          operation: OperationProtocol,
                          cancel_token: CancellationToken | None = None) -> RequestOutcome:
    return await SimpleServiceRequest(service, operation, cancel_token).outcome()

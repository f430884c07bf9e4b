import asyncio
import base64
import logging
import unittest

import aiohttp

from exchws import commlog, loghelper
from exchws.cancellation import CancellationToken
from exchws.compression import CompressionHandler
from exchws.exceptions import (
    AccountLockedError,
    ApiUsageError,
    ErrorKind,
    InternalInvariantError,
    LocalValidationError,
    MalformedResponseError,
    ProtocolVersionError,
    RemoteServiceError,
    RequestCancelledError,
    RequestConstructionError,
    ResponseNotXmlError,
    RetryableServerBusyError,
    TransportError,
)
from exchws.lifecycle import (
    CLIENT_STATISTICS_HEADER,
    ErrorPolicy,
    MultiResponseServiceRequest,
    RequestState,
    SimpleServiceRequest,
)
from exchws.operations import ANCHOR_MAILBOX_HEADER, EXPLICIT_LOGON_USER_HEADER, FolderId, GetAppManifests, GetFolder
from exchws.responsecodes import ServiceResult
from exchws.soapheaders import ConnectingIdType, ImpersonatedUserId, PrivilegedLogonType, PrivilegedUserId
from exchws.versions import ExchangeVersion
from tests import mockstuff
from tests.mockstuff import BytesTransportResponse, EchoOperation


def _inbox() -> GetFolder:
    return GetFolder([FolderId.well_known('inbox')])


class _BrokenBodyResponse(BytesTransportResponse):
    """The connection is lost after the status line was received."""

    async def _read_raw(self) -> bytes:
        self.read_started.set()
        raise aiohttp.ClientPayloadError('connection reset while reading body')


class _BuggyEchoOperation(EchoOperation):

    def parse_response(self, node, http_headers):  # noqa: ARG002
        raise TypeError('unexpected node')


class TestRequestExecution(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.service = mockstuff.mk_service()
        self.transport = self.service.transport
        self.log_watcher = loghelper.LogWatcher(logging.getLogger('exchws'), level=logging.ERROR)

    async def asyncTearDown(self):
        self.log_watcher.set_paused(True)
        await self.service.close()
        self.log_watcher.check()

    async def test_get_folder_success(self):
        self.transport.add_response(BytesTransportResponse(
            body=mockstuff.mk_get_folder_response(mockstuff.mk_get_folder_success_message()),
            headers={'RequestId': 'b7a2c0d4'}))
        responses = await self.service.execute_multi(_inbox())
        self.assertEqual(1, len(responses))
        self.assertEqual(ServiceResult.SUCCESS, responses.overall_result)
        folder = responses[0].payload[0]
        self.assertEqual('Folder', folder.folder_class)
        self.assertEqual('AAMkADk=', folder.folder_id.id)
        self.assertEqual('Inbox', folder.display_name)
        self.assertEqual(12, folder.total_count)
        self.assertEqual(3, folder.unread_count)
        self.assertEqual(15, self.service.server_info.major_version)
        self.assertEqual('b7a2c0d4', self.service.http_response_headers['RequestId'])

        request = self.transport.requests[0]
        self.assertEqual('POST', request.method)
        self.assertEqual(self.service.url, request.url)
        self.assertIn(b'<m:GetFolder>', request.body)
        self.assertIn(b'Id="inbox"', request.body)

    async def test_server_busy(self):
        self.transport.add_response(BytesTransportResponse(500, 'Internal Server Error',
                                                           mockstuff.mk_server_busy_fault(297749)))
        execution = MultiResponseServiceRequest(self.service, _inbox())
        with self.assertRaises(RetryableServerBusyError) as ctx:
            await execution.execute()
        self.assertEqual(297749, ctx.exception.back_off_milliseconds)
        self.assertTrue(ctx.exception.is_retryable)
        self.assertEqual(ErrorKind.RETRYABLE_REMOTE, ctx.exception.kind)
        self.assertEqual(RequestState.FAULTED, execution.state)

    async def test_version_gating(self):
        service = mockstuff.mk_service(requested_server_version=ExchangeVersion.Exchange2010)
        execution = SimpleServiceRequest(service, GetAppManifests())
        with self.assertRaises(ProtocolVersionError) as ctx:
            await execution.execute()
        self.assertIn('Exchange2013', str(ctx.exception))
        self.assertEqual([], service.transport.requests)
        self.assertEqual(RequestState.FAILED, execution.state)

    async def test_local_validation(self):
        execution = MultiResponseServiceRequest(self.service, GetFolder([]))
        with self.assertRaises(LocalValidationError):
            await execution.execute()
        self.assertEqual(RequestState.FAILED, execution.state)
        self.assertEqual([], self.transport.requests)

    async def test_impersonation_and_privileged_user(self):
        self.service.impersonated_user_id = ImpersonatedUserId(ConnectingIdType.SMTP_ADDRESS, 'a@example.com')
        self.service.privileged_user_id = PrivilegedUserId(PrivilegedLogonType.ADMIN,
                                                           ConnectingIdType.SMTP_ADDRESS, 'b@example.com')
        with self.assertRaises(LocalValidationError):
            await self.service.execute(EchoOperation('x'))
        self.assertEqual([], self.transport.requests)

    async def test_cancel_before_send(self):
        token = CancellationToken()
        token.cancel()
        execution = SimpleServiceRequest(self.service, EchoOperation('x'), token)
        with self.assertRaises(RequestCancelledError):
            await execution.execute()
        self.assertEqual(RequestState.CANCELLED, execution.state)
        self.assertEqual([], self.transport.requests)

    async def test_cancel_during_send(self):
        token = CancellationToken()
        self.transport.send_gate = asyncio.Event()
        self.transport.add_response(mockstuff.echo_responder)
        execution = SimpleServiceRequest(self.service, EchoOperation('x'), token)
        task = asyncio.create_task(execution.execute())
        await self.transport.send_started.wait()
        token.cancel()
        with self.assertRaises(RequestCancelledError):
            await task
        self.assertEqual(RequestState.CANCELLED, execution.state)
        self.assertEqual(1, len(self.transport.requests))

    async def test_cancel_during_read(self):
        token = CancellationToken()
        response = BytesTransportResponse(body=mockstuff.mk_response_envelope('<m:EchoResponse/>'),
                                          read_gate=asyncio.Event())
        self.transport.add_response(response)
        task = asyncio.create_task(self.service.execute(EchoOperation('x'), token))
        await response.read_started.wait()
        token.cancel()
        with self.assertRaises(RequestCancelledError):
            await task
        self.assertTrue(response.released)
        self.assertEqual(1, response.release_count)

    async def test_response_is_released(self):
        response = BytesTransportResponse(body=mockstuff.mk_response_envelope(
            '<m:EchoResponse><m:Text>x</m:Text></m:EchoResponse>'))
        fault_response = BytesTransportResponse(500, 'Internal Server Error',
                                                mockstuff.mk_fault_envelope('ErrorAccessDenied'))
        self.transport.add_response(response)
        self.transport.add_response(fault_response)
        await self.service.execute(EchoOperation('x'))
        with self.assertRaises(RemoteServiceError):
            await self.service.execute(EchoOperation('x'))
        self.assertEqual(1, response.release_count)
        self.assertEqual(1, fault_response.release_count)

    async def test_body_read_failure_after_success_status(self):
        response = _BrokenBodyResponse()
        self.transport.add_response(response)
        execution = SimpleServiceRequest(self.service, EchoOperation('x'))
        with self.assertRaises(MalformedResponseError) as ctx:
            await execution.execute()
        self.assertNotIsInstance(ctx.exception, TransportError)
        self.assertIsInstance(ctx.exception.__cause__, TransportError)
        self.assertEqual(RequestState.FAULTED, execution.state)
        self.assertEqual(1, response.release_count)

    async def test_parse_response_failure(self):
        self.transport.add_response(mockstuff.echo_responder)
        execution = SimpleServiceRequest(self.service, _BuggyEchoOperation('x'))
        with self.assertRaises(MalformedResponseError) as ctx:
            await execution.execute()
        self.assertIsInstance(ctx.exception.__cause__, TypeError)
        self.assertEqual(RequestState.FAULTED, execution.state)

    async def test_soap_header_callback_failure(self):
        def _broken_callback(header_node):  # noqa: ARG001
            raise RuntimeError('header callback failed')

        self.service.add_soap_headers_callback(_broken_callback)
        execution = SimpleServiceRequest(self.service, EchoOperation('x'))
        with self.assertRaises(RequestConstructionError) as ctx:
            await execution.execute()
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(RequestState.FAILED, execution.state)
        self.assertEqual([], self.transport.requests)

    async def test_account_locked(self):
        self.transport.add_response(BytesTransportResponse(456, 'https://account.example.com/unlock?id=1'))
        with self.assertRaises(AccountLockedError) as ctx:
            await self.service.execute(EchoOperation('x'))
        self.assertEqual('https://account.example.com/unlock?id=1', ctx.exception.unlock_url)

        self.transport.add_response(BytesTransportResponse(456, 'Account Locked'))
        with self.assertRaises(AccountLockedError) as ctx:
            await self.service.execute(EchoOperation('x'))
        self.assertIsNone(ctx.exception.unlock_url)

    async def test_response_not_xml(self):
        self.transport.add_response(BytesTransportResponse(body=b'<html><body>login</body></html>',
                                                           headers={'Content-Type': 'text/html'}))
        with self.assertRaises(ResponseNotXmlError):
            await self.service.execute(EchoOperation('x'))

    async def test_unexpected_response_element(self):
        self.transport.add_response(BytesTransportResponse(body=mockstuff.mk_response_envelope('<m:OtherResponse/>')))
        with self.assertRaises(MalformedResponseError):
            await self.service.execute(EchoOperation('x'))

    async def test_echo(self):
        text = 'hello & <world> äöü'
        self.transport.add_response(mockstuff.echo_responder)
        result = await self.service.execute(EchoOperation(text))
        self.assertEqual(text, result)

    async def test_gzip_response(self):
        body = CompressionHandler.compress_payload('gzip', mockstuff.mk_response_envelope(
            '<m:EchoResponse><m:Text>compressed</m:Text></m:EchoResponse>'))
        self.transport.add_response(BytesTransportResponse(body=body, headers={'Content-Encoding': 'gzip'}))
        result = await self.service.execute(EchoOperation('compressed'))
        self.assertEqual('compressed', result)

    async def test_client_statistics(self):
        for request_id in ('req-1', 'req-2'):
            self.transport.add_response(BytesTransportResponse(
                body=mockstuff.mk_response_envelope('<m:EchoResponse><m:Text>x</m:Text></m:EchoResponse>'),
                headers={'RequestId': request_id}))
        await self.service.execute(EchoOperation('a'))
        await self.service.execute(EchoOperation('b'))
        self.assertNotIn(CLIENT_STATISTICS_HEADER, self.transport.requests[0].headers)
        statistics = self.transport.requests[1].headers[CLIENT_STATISTICS_HEADER]
        self.assertRegex(statistics, r'^MessageId=req-1,ResponseTime=\d+,SoapAction=Echo;$')
        # the record of the second request is still waiting for the next request
        self.assertEqual(1, len(self.service.client_statistics))

    async def test_client_statistics_of_failed_request(self):
        self.transport.add_response(BytesTransportResponse(404, 'Not Found', headers={'request-id': 'r404'}))
        self.transport.add_response(mockstuff.echo_responder)
        with self.assertRaises(TransportError):
            await self.service.execute(EchoOperation('a'))
        await self.service.execute(EchoOperation('b'))
        statistics = self.transport.requests[1].headers[CLIENT_STATISTICS_HEADER]
        self.assertRegex(statistics, r'^MessageId=r404,ResponseTime=\d+,SoapAction=Echo;$')

    async def test_no_client_statistics(self):
        service = mockstuff.mk_service(send_client_latencies=False)
        service.transport.add_response(mockstuff.echo_responder)
        service.transport.add_response(mockstuff.echo_responder)
        await service.execute(EchoOperation('a'))
        await service.execute(EchoOperation('b'))
        self.assertNotIn(CLIENT_STATISTICS_HEADER, service.transport.requests[1].headers)
        self.assertEqual(0, len(service.client_statistics))

    async def test_multi_response_error_policy(self):
        folders = GetFolder([FolderId.well_known('inbox'), FolderId('AAMkNotThere')])
        body = mockstuff.mk_get_folder_response(mockstuff.mk_get_folder_success_message(),
                                                mockstuff.mk_get_folder_error_message())
        self.transport.add_response(BytesTransportResponse(body=body))
        with self.assertRaises(RemoteServiceError) as ctx:
            await self.service.execute_multi(folders)
        self.assertEqual('ErrorFolderNotFound', ctx.exception.response_code)
        self.assertEqual(ErrorKind.FATAL_REMOTE, ctx.exception.kind)

        self.transport.add_response(BytesTransportResponse(body=body))
        responses = await self.service.execute_multi(folders, ErrorPolicy.RETURN_ERRORS)
        self.assertEqual(2, len(responses))
        self.assertEqual(ServiceResult.ERROR, responses.overall_result)
        self.assertEqual([responses[1]], responses.errors)
        self.assertEqual('Inbox', responses[0].payload[0].display_name)
        self.assertIsNone(responses[1].payload)

    async def test_response_count_mismatch(self):
        folders = GetFolder([FolderId.well_known('inbox'), FolderId.well_known('drafts')])
        self.transport.add_response(BytesTransportResponse(
            body=mockstuff.mk_get_folder_response(mockstuff.mk_get_folder_success_message())))
        with self.assertRaises(MalformedResponseError):
            await self.service.execute_multi(folders)

    async def test_malformed_folder(self):
        message = ('<m:GetFolderResponseMessage ResponseClass="Success"><m:ResponseCode>NoError</m:ResponseCode>'
                   '<m:Folders><t:Folder><t:DisplayName>no id</t:DisplayName></t:Folder></m:Folders>'
                   '</m:GetFolderResponseMessage>')
        self.transport.add_response(BytesTransportResponse(body=mockstuff.mk_get_folder_response(message)))
        with self.assertRaises(MalformedResponseError):
            await self.service.execute_multi(_inbox())

    async def test_run_twice(self):
        self.transport.add_response(mockstuff.echo_responder)
        execution = SimpleServiceRequest(self.service, EchoOperation('a'))
        self.assertEqual('a', await execution.run())
        self.assertEqual(RequestState.SUCCEEDED, execution.state)
        with self.assertRaises(ApiUsageError):
            await execution.run()
        self.assertEqual(1, len(self.transport.requests))

    async def test_500_without_fault(self):
        self.transport.add_response(BytesTransportResponse(500, 'Internal Server Error',
                                                           b'<html>something went wrong</html>'))
        execution = SimpleServiceRequest(self.service, EchoOperation('a'))
        with self.assertRaises(TransportError) as ctx:
            await execution.execute()
        self.assertEqual(500, ctx.exception.status)
        self.assertEqual(RequestState.TRANSPORT_FAILED, execution.state)

    async def test_invalid_server_version(self):
        self.transport.add_response(BytesTransportResponse(
            500, 'Internal Server Error', mockstuff.mk_fault_envelope('ErrorInvalidServerVersion')))
        with self.assertRaises(ProtocolVersionError):
            await self.service.execute(EchoOperation('a'))

    async def test_schema_validation(self):
        self.transport.add_response(BytesTransportResponse(
            500, 'Internal Server Error',
            mockstuff.mk_fault_envelope('ErrorSchemaValidation', header_xml=mockstuff.LEGACY_SERVER_VERSION_INFO)))
        with self.assertRaises(ProtocolVersionError):
            await self.service.execute(EchoOperation('a'))
        self.assertTrue(self.service.server_info.is_legacy_baseline)

        self.transport.add_response(BytesTransportResponse(
            500, 'Internal Server Error', mockstuff.mk_fault_envelope('ErrorSchemaValidation')))
        with self.assertRaises(RemoteServiceError) as ctx:
            await self.service.execute(EchoOperation('a'))
        self.assertEqual('ErrorSchemaValidation', ctx.exception.response_code)
        self.assertIsNotNone(ctx.exception.fault)

    async def test_incorrect_schema_version(self):
        self.transport.add_response(BytesTransportResponse(
            500, 'Internal Server Error', mockstuff.mk_fault_envelope('ErrorIncorrectSchemaVersion')))
        with self.assertRaises(InternalInvariantError):
            await self.service.execute(EchoOperation('a'))

    async def test_http_error(self):
        self.transport.add_response(BytesTransportResponse(404, 'Not Found'))
        execution = SimpleServiceRequest(self.service, EchoOperation('a'))
        with self.assertRaises(TransportError) as ctx:
            await execution.execute()
        self.assertEqual(404, ctx.exception.status)
        self.assertEqual('Not Found', ctx.exception.reason)
        self.assertEqual(RequestState.TRANSPORT_FAILED, execution.state)

    async def test_connection_error(self):
        self.transport.add_response(TransportError('connection refused', cause=ConnectionRefusedError()))
        with self.assertRaises(TransportError) as ctx:
            await self.service.execute(EchoOperation('a'))
        self.assertIsNone(ctx.exception.status)
        self.assertIsInstance(ctx.exception.__cause__, ConnectionRefusedError)

    async def test_outcome(self):
        self.transport.add_response(mockstuff.echo_responder)
        self.transport.add_response(BytesTransportResponse(
            500, 'Internal Server Error', mockstuff.mk_fault_envelope('ErrorAccessDenied', 'Access is denied.')))
        outcome = await self.service.execute_outcome(EchoOperation('a'))
        self.assertTrue(outcome.succeeded)
        self.assertEqual('a', outcome.unwrap())
        outcome = await self.service.execute_outcome(EchoOperation('a'))
        self.assertFalse(outcome.succeeded)
        self.assertIsInstance(outcome.error, RemoteServiceError)
        self.assertEqual('ErrorAccessDenied', outcome.error.response_code)
        self.assertEqual('Access is denied.', outcome.error.message)
        with self.assertRaises(RemoteServiceError):
            outcome.unwrap()

    async def test_anchor_mailbox(self):
        self.transport.add_response(BytesTransportResponse(
            body=mockstuff.mk_get_folder_response(mockstuff.mk_get_folder_success_message())))
        await self.service.execute_multi(GetFolder([FolderId.well_known('inbox')], anchor_mailbox='a@example.com'))
        headers = self.transport.requests[0].headers
        self.assertEqual('a@example.com', headers[ANCHOR_MAILBOX_HEADER])
        self.assertEqual('a@example.com', headers[EXPLICIT_LOGON_USER_HEADER])

    async def test_app_manifests(self):
        manifest = b'<?xml version="1.0"?><OfficeApp/>'
        encoded = base64.b64encode(manifest).decode()
        self.transport.add_response(BytesTransportResponse(body=mockstuff.mk_response_envelope(
            '<m:GetAppManifestsResponse ResponseClass="Success"><m:ResponseCode>NoError</m:ResponseCode>'
            f'<m:Apps><t:App><t:Manifest>{encoded}</t:Manifest></t:App></m:Apps></m:GetAppManifestsResponse>')))
        response = await self.service.execute(GetAppManifests(api_version_supported='1.1'))
        self.assertEqual([manifest], response.payload)
        self.assertIn(b'<m:ApiVersionSupported>1.1</m:ApiVersionSupported>', self.transport.requests[0].body)

        self.transport.add_response(BytesTransportResponse(body=mockstuff.mk_response_envelope(
            '<m:GetAppManifestsResponse ResponseClass="Error"><m:MessageText>denied</m:MessageText>'
            '<m:ResponseCode>ErrorAccessDenied</m:ResponseCode></m:GetAppManifestsResponse>')))
        with self.assertRaises(RemoteServiceError) as ctx:
            await self.service.execute(GetAppManifests())
        self.assertEqual('ErrorAccessDenied', ctx.exception.response_code)

    async def test_communication_is_logged(self):
        self.transport.add_response(mockstuff.echo_responder)
        with self.assertLogs(commlog.SOAP_REQUEST_OUT, logging.DEBUG) as request_logs, \
                self.assertLogs(commlog.SOAP_RESPONSE_IN, logging.DEBUG) as response_logs:
            await self.service.execute(EchoOperation('logged'))
        self.assertIn('<m:Text>logged</m:Text>', request_logs.output[0])
        self.assertEqual('Echo', request_logs.records[0].operation)
        self.assertIn('EchoResponse', response_logs.output[0])
        self.assertEqual(200, response_logs.records[0].http_status)

    async def test_concurrent_requests(self):
        for _ in range(10):
            self.transport.add_response(mockstuff.echo_responder)
        results = await asyncio.gather(*(self.service.execute(EchoOperation(str(i))) for i in range(10)))
        self.assertEqual([str(i) for i in range(10)], results)

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from lxml import etree as etree_

from exchws.exceptions import MalformedResponseError, ResponseNotXmlError
from exchws.namespaces import ElementNames, default_ns_helper
from exchws.versions import ServerInfo
from exchws.xml_utils import child_elements, has_xml_declaration, mk_secure_parser

from .soapenvelope import SoapFaultDetails

if TYPE_CHECKING:
    from exchws import xml_utils
    from exchws.loghelper import LoggerAdapter

ServerInfoSink = Callable[[ServerInfo], None]


@dataclass(frozen=True)
class ReceivedResponse:
    """Data of a successfully read response envelope."""

    raw_data: bytes
    payload_node: xml_utils.LxmlElement
    server_info: ServerInfo | None


class MessageReader:
    """MessageReader reads response envelopes and soap faults."""

    def __init__(self, logger: LoggerAdapter):
        self._logger = logger
        self.ns_hlp = default_ns_helper

    def _parse(self, xml_text: bytes) -> xml_utils.LxmlElement:
        return etree_.fromstring(xml_text, parser=mk_secure_parser())

    def _read_server_info(self, header_node: xml_utils.LxmlElement,
                          on_server_info: ServerInfoSink | None) -> ServerInfo | None:
        """Scan header children, only ServerVersionInfo is evaluated."""
        server_info = None
        for child in child_elements(header_node):
            if child.tag == self.ns_hlp.TYPES.tag(ElementNames.ServerVersionInfo).text:
                server_info = ServerInfo.from_node(child)
                if on_server_info is not None:
                    on_server_info(server_info)
        return server_info

    def read_response(self, xml_text: bytes,
                      response_element_name: str,
                      on_server_info: ServerInfoSink | None = None) -> ReceivedResponse:
        """Read a response envelope and return the response element of the body.

        The envelope must consist of Header and Body, the body must contain exactly the expected element.
        :param xml_text: the http body
        :param response_element_name: local name of the expected element in the messages namespace
        :param on_server_info: called with the ServerInfo of the header, before the body is checked
        :raises ResponseNotXmlError: if xml_text has no xml declaration
        :raises MalformedResponseError: if xml_text is not well-formed or not structured as expected
        """
        if not has_xml_declaration(xml_text):
            raise ResponseNotXmlError('the response received from the service did not contain valid xml')
        try:
            doc_root = self._parse(xml_text)
        except etree_.XMLSyntaxError as ex:
            self._logger.warning('Error reading response ex={!r}', ex)
            raise MalformedResponseError(f'response is not well-formed xml: {ex}', ex) from ex

        nsh = self.ns_hlp
        self._expect(doc_root, nsh.SOAP.tag(ElementNames.Envelope))
        children = child_elements(doc_root)
        if len(children) != 2:  # noqa: PLR2004
            raise MalformedResponseError(f'envelope must contain Header and Body, found {self._names(children)}')
        header_node, body_node = children
        self._expect(header_node, nsh.SOAP.tag(ElementNames.Header))
        try:
            server_info = self._read_server_info(header_node, on_server_info)
        except ValueError as ex:
            raise MalformedResponseError(f'invalid ServerVersionInfo: {ex}', ex) from ex
        self._expect(body_node, nsh.SOAP.tag(ElementNames.Body))
        body_children = child_elements(body_node)
        if len(body_children) != 1:
            raise MalformedResponseError(f'expected one element {response_element_name} in body, '
                                         f'found {self._names(body_children)}')
        payload_node = body_children[0]
        self._expect(payload_node, nsh.MSG.tag(response_element_name))
        return ReceivedResponse(xml_text, payload_node, server_info)

    def read_soap_fault(self, xml_text: bytes, on_server_info: ServerInfoSink | None = None) -> SoapFaultDetails | None:
        """Read a soap fault. This method never raises, it returns None if xml_text contains no readable fault.

        SOAP 1.1 and SOAP 1.2 envelopes are accepted.
        """
        if not xml_text or not has_xml_declaration(xml_text):
            return None
        try:
            doc_root = self._parse(xml_text)
        except etree_.XMLSyntaxError as ex:
            self._logger.info('soap fault is not well-formed xml: {}', ex)
            return None
        q_name = etree_.QName(doc_root.tag)
        if q_name.localname != ElementNames.Envelope:
            return None
        soap_ns = self.ns_hlp.soap_namespace_of(q_name.namespace)
        if soap_ns is None:
            return None
        fault = None
        for child in child_elements(doc_root):
            if child.tag == soap_ns.tag(ElementNames.Header).text:
                with contextlib.suppress(ValueError):
                    self._read_server_info(child, on_server_info)
            elif child.tag == soap_ns.tag(ElementNames.Body).text:
                fault_node = child.find(soap_ns.tag(ElementNames.Fault))
                if fault_node is not None:
                    fault = SoapFaultDetails.from_node(fault_node, soap_ns)
        return fault

    def _expect(self, node: xml_utils.LxmlElement, expected: etree_.QName):
        if node.tag != expected.text:
            raise MalformedResponseError(f'expected element {self.ns_hlp.doc_name_from_qname(expected)}, '
                                         f'found {node.tag}')

    @staticmethod
    def _names(nodes: list[xml_utils.LxmlElement]) -> list[str]:
        return [etree_.QName(n.tag).localname for n in nodes]

from __future__ import annotations

from typing import TYPE_CHECKING

from lxml import etree as etree_

from exchws.config import DateTimePrecision
from exchws.namespaces import ElementNames, default_ns_helper
from exchws.soapheaders import write_time_zone_context
from exchws.versions import LEGACY_BASELINE_VERSION, LEGACY_VERSION_TOKEN

if TYPE_CHECKING:
    from exchws import xml_utils
    from exchws.config import ServiceConfig
    from exchws.loghelper import LoggerAdapter
    from exchws.operations import OperationProtocol
    from exchws.service import ExchangeService


class CreatedMessage:
    """An envelope that is ready for serialization."""

    def __init__(self, envelope_node: xml_utils.LxmlElement, operation_name: str, msg_factory: MessageFactory):
        self.envelope_node = envelope_node
        self.operation_name = operation_name
        self.msg_factory = msg_factory

    @property
    def header_node(self) -> xml_utils.LxmlElement:
        return self.envelope_node[0]

    @property
    def body_node(self) -> xml_utils.LxmlElement:
        return self.envelope_node[1]

    def serialize(self, pretty: bool = False) -> bytes:
        return self.msg_factory.serialize_message(self, pretty)


def requested_version_token(config: ServiceConfig) -> str:
    """Return the value of the Version attribute of the RequestServerVersion header."""
    if config.exchange2007_compatibility_mode and config.requested_server_version == LEGACY_BASELINE_VERSION:
        return LEGACY_VERSION_TOKEN
    return config.requested_server_version.name


class MessageFactory:
    """This class creates soap request messages. It is used in two phases.

     1) call mk_request_message. It returns a CreatedMessage instance that contains the envelope as element tree
     2) call the serialize method of the CreatedMessage instance to get the xml representation
    """

    def __init__(self, config: ServiceConfig, logger: LoggerAdapter):
        self._config = config
        self._logger = logger
        self.ns_hlp = default_ns_helper

    def mk_request_message(self, operation: OperationProtocol, service: ExchangeService) -> CreatedMessage:
        """Build the envelope for operation with the settings of service.

        Children of the soap header have a fixed order: server version, time zone context, culture,
        date time precision, identity, security headers, custom headers.
        """
        config = self._config
        nsh = self.ns_hlp
        ns_map = nsh.partial_map(nsh.SOAP, nsh.XSI, nsh.MSG, nsh.TYPES)
        if config.need_signature:
            ns_map[nsh.WSU.prefix] = nsh.WSU.namespace
        if config.credentials is not None:
            config.credentials.emit_extra_soap_header_namespace_aliases(ns_map)

        root = etree_.Element(nsh.SOAP.tag(ElementNames.Envelope), nsmap=ns_map)
        header_node = etree_.SubElement(root, nsh.SOAP.tag(ElementNames.Header))

        if not config.suppress_version_header:
            etree_.SubElement(header_node, nsh.TYPES.tag(ElementNames.RequestServerVersion),
                              attrib={'Version': requested_version_token(config)})

        if ((config.requested_server_version == LEGACY_BASELINE_VERSION or operation.emit_time_zone_header)
                and not config.exchange2007_compatibility_mode):
            write_time_zone_context(header_node, config.time_zone_id)

        if config.preferred_culture is not None:
            culture_node = etree_.SubElement(header_node, nsh.TYPES.tag(ElementNames.MailboxCulture))
            culture_node.text = config.preferred_culture

        if config.date_time_precision != DateTimePrecision.DEFAULT:
            precision_node = etree_.SubElement(header_node, nsh.TYPES.tag(ElementNames.DateTimePrecision))
            precision_node.text = config.date_time_precision.value

        if service.impersonated_user_id is not None:
            service.impersonated_user_id.write_to(header_node)
        elif service.privileged_user_id is not None:
            service.privileged_user_id.write_to(header_node)
        elif service.management_roles is not None:
            service.management_roles.write_to(header_node)

        if config.credentials is not None:
            config.credentials.serialize_ws_security_headers(header_node)

        service.serialize_custom_soap_headers(header_node)

        body_node = etree_.SubElement(root, nsh.SOAP.tag(ElementNames.Body))
        payload_node = etree_.SubElement(body_node, nsh.MSG.tag(operation.element_name))
        operation.write_attributes(payload_node)
        operation.write_elements(payload_node)
        return CreatedMessage(root, operation.element_name, self)

    def serialize_message(self, message: CreatedMessage, pretty: bool = False) -> bytes:
        """Return utf-8 encoded xml with declaration, signed if the credentials require it."""
        xml_bytes = etree_.tostring(message.envelope_node, encoding='UTF-8', xml_declaration=True,
                                    pretty_print=pretty)
        if self._config.need_signature:
            self._logger.debug('signing request {}', message.operation_name)
            xml_bytes = self._config.credentials.sign(xml_bytes)
        return xml_bytes

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lxml import etree as etree_

from exchws import responsecodes
from exchws.exceptions import RemoteServiceError, RetryableServerBusyError
from exchws.namespaces import ElementNames
from exchws.namespaces import default_ns_helper as ns_hlp
from exchws.responsecodes import ServiceResult
from exchws.xml_utils import child_elements

if TYPE_CHECKING:
    from exchws import xml_utils
    from exchws.namespaces import PrefixNamespace


def _local_name(node: xml_utils.LxmlElement) -> str:
    return etree_.QName(node.tag).localname


def _int_or_none(text: str | None) -> int | None:
    if text is None:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


def read_message_xml(node: xml_utils.LxmlElement) -> dict[str, str]:
    """Return the name / value pairs of a MessageXml element."""
    details = {}
    for value_node in child_elements(node):
        if _local_name(value_node) == ElementNames.Value:
            name = value_node.get('Name')
            if name:
                details[name] = value_node.text or ''
    return details


@dataclass
class SoapFaultDetails:
    """Content of a soap Fault element (SOAP 1.1 or 1.2)."""

    fault_code: str | None = None
    fault_string: str | None = None
    fault_actor: str | None = None
    response_code: str = responsecodes.ERROR_INTERNAL_SERVER_ERROR
    message: str | None = None
    error_code: int | None = None
    exception_type: str | None = None
    line_number: int | None = None
    position_within_line: int | None = None
    error_details: dict[str, str] = field(default_factory=dict)
    soap_namespace: PrefixNamespace | None = None

    @classmethod
    def from_node(cls, fault_node: xml_utils.LxmlElement, soap_namespace: PrefixNamespace) -> SoapFaultDetails:
        """Read a Fault element. Unknown child elements are ignored."""
        details = cls(soap_namespace=soap_namespace)
        response_code = None
        detail_node = None
        if soap_namespace == ns_hlp.SOAP12:
            for child in child_elements(fault_node):
                name = _local_name(child)
                if name == 'Code':
                    value_node = child.find(soap_namespace.tag('Value'))
                    if value_node is not None:
                        details.fault_code = (value_node.text or '').strip()
                elif name == 'Reason':
                    text_node = child.find(soap_namespace.tag('Text'))
                    if text_node is not None:
                        details.fault_string = text_node.text
                elif name == 'Node':
                    details.fault_actor = child.text
                elif name == 'Detail':
                    detail_node = child
        else:
            # SOAP 1.1 fault children are not namespace qualified
            for child in child_elements(fault_node):
                name = _local_name(child)
                if name == 'faultcode':
                    details.fault_code = (child.text or '').strip()
                elif name == 'faultstring':
                    details.fault_string = child.text
                elif name == 'faultactor':
                    details.fault_actor = child.text
                elif name == 'detail':
                    detail_node = child
        if detail_node is not None:
            response_code = details._read_detail(detail_node)
        if response_code:
            details.response_code = response_code
        elif details.fault_code:
            local_code = details.fault_code.rsplit(':', 1)[-1]
            if local_code.startswith('Error'):
                details.response_code = local_code
        return details

    def _read_detail(self, detail_node: xml_utils.LxmlElement) -> str | None:
        response_code = None
        for child in child_elements(detail_node):
            q_name = etree_.QName(child.tag)
            name = q_name.localname
            if name == ElementNames.MessageXml:
                self.error_details.update(read_message_xml(child))
            elif q_name.namespace != ns_hlp.ERRORS.namespace:
                continue
            elif name == ElementNames.ResponseCode:
                response_code = (child.text or '').strip()
            elif name == 'Message':
                self.message = child.text
            elif name == 'ErrorCode':
                self.error_code = _int_or_none(child.text)
            elif name == 'ExceptionType':
                self.exception_type = child.text
            elif name == 'Line':
                self.line_number = _int_or_none(child.text)
            elif name == 'Position':
                self.position_within_line = _int_or_none(child.text)
        return response_code

    @property
    def back_off_milliseconds(self) -> int | None:
        return _int_or_none(self.error_details.get(responsecodes.BACK_OFF_MILLISECONDS))


@dataclass
class ServiceResponse:
    """Result of one response message. payload is whatever the operation read from the message."""

    response_class: ServiceResult = ServiceResult.SUCCESS
    response_code: str = responsecodes.NO_ERROR
    message_text: str | None = None
    error_details: dict[str, str] = field(default_factory=dict)
    payload: Any = None
    fault: SoapFaultDetails | None = None

    @classmethod
    def from_node(cls, node: xml_utils.LxmlElement) -> ServiceResponse:
        """Read ResponseClass attribute, ResponseCode, MessageText and MessageXml of a response message node.

        :raises ValueError: if ResponseClass has an unknown value
        """
        response = cls()
        response_class = node.get('ResponseClass')
        if response_class is not None:
            response.response_class = ServiceResult(response_class)
        for child in child_elements(node):
            name = _local_name(child)
            if name == ElementNames.ResponseCode:
                response.response_code = (child.text or '').strip()
            elif name == ElementNames.MessageText:
                response.message_text = child.text
            elif name == ElementNames.MessageXml:
                response.error_details.update(read_message_xml(child))
        return response

    @classmethod
    def from_fault(cls, fault: SoapFaultDetails) -> ServiceResponse:
        return cls(response_class=ServiceResult.ERROR,
                   response_code=fault.response_code,
                   message_text=fault.message or fault.fault_string,
                   error_details=dict(fault.error_details),
                   fault=fault)

    @property
    def is_error(self) -> bool:
        return self.response_class == ServiceResult.ERROR

    def as_error(self) -> RemoteServiceError:
        """Return the error that corresponds to this response, it is not raised."""
        message = self.message_text or self.response_code
        if self.response_code == responsecodes.ERROR_SERVER_BUSY:
            back_off = _int_or_none(self.error_details.get(responsecodes.BACK_OFF_MILLISECONDS))
            return RetryableServerBusyError(message, back_off, fault=self.fault, error_details=self.error_details)
        return RemoteServiceError(message, response_code=self.response_code, fault=self.fault,
                                  error_details=self.error_details)

    def raise_if_necessary(self):
        if self.is_error:
            raise self.as_error()

"""Operation hook set and the operations that are implemented on top of it.

An operation describes what is sent and how the response is read. It does not know how the request is
executed, this is the job of lifecycle.RequestExecution.
"""
from __future__ import annotations

import base64
import binascii
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from lxml import etree as etree_

from exchws.exceptions import LocalValidationError
from exchws.namespaces import ElementNames
from exchws.namespaces import default_ns_helper as ns_hlp
from exchws.pysoap.soapenvelope import ServiceResponse
from exchws.versions import ExchangeVersion
from exchws.xml_utils import child_elements

if TYPE_CHECKING:
    from collections.abc import Mapping, MutableMapping

    from exchws import xml_utils

ANCHOR_MAILBOX_HEADER = 'X-AnchorMailbox'
EXPLICIT_LOGON_USER_HEADER = 'X-OWA-ExplicitLogonUser'


class OperationProtocol(Protocol):
    """The hooks that the request controller calls."""

    element_name: str
    response_element_name: str
    minimum_version: ExchangeVersion
    emit_time_zone_header: bool
    anchor_mailbox: str | None

    def validate(self):
        """Raise LocalValidationError if the parameters of the operation are invalid."""

    def write_attributes(self, node: xml_utils.LxmlElement):
        """Set attributes of the request element."""

    def write_elements(self, node: xml_utils.LxmlElement):
        """Append child elements to the request element."""

    def add_http_headers(self, headers: MutableMapping[str, str]):
        """Add operation specific http headers."""

    def parse_response(self, node: xml_utils.LxmlElement, http_headers: Mapping[str, str]) -> Any:
        """Read the response element and return the result of the operation."""


class ServiceOperation:
    """Base class of operations with default hooks."""

    element_name: ClassVar[str]
    response_element_name: ClassVar[str]
    minimum_version: ClassVar[ExchangeVersion] = ExchangeVersion.Exchange2007_SP1
    emit_time_zone_header: ClassVar[bool] = False

    def __init__(self, anchor_mailbox: str | None = None):
        self.anchor_mailbox = anchor_mailbox

    def validate(self):
        pass

    def write_attributes(self, node: xml_utils.LxmlElement):
        pass

    def write_elements(self, node: xml_utils.LxmlElement):
        pass

    def add_http_headers(self, headers: MutableMapping[str, str]):
        if self.anchor_mailbox:
            headers[ANCHOR_MAILBOX_HEADER] = self.anchor_mailbox
            headers[EXPLICIT_LOGON_USER_HEADER] = self.anchor_mailbox

    def parse_response(self, node: xml_utils.LxmlElement, http_headers: Mapping[str, str]) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(anchor_mailbox={self.anchor_mailbox})'


class MultiResponseOperation(ServiceOperation):
    """An operation whose response contains one response message per requested item."""

    response_message_element_name: ClassVar[str]

    def expected_response_count(self) -> int | None:
        """Return the number of response messages, None if it is not known in advance."""
        return None

    def parse_response_message(self, node: xml_utils.LxmlElement) -> Any:
        """Read the payload of a successful response message."""
        raise NotImplementedError

    def parse_response(self, node: xml_utils.LxmlElement, http_headers: Mapping[str, str]) -> list[ServiceResponse]:
        messages_node = node.find(ns_hlp.MSG.tag(ElementNames.ResponseMessages))
        if messages_node is None:
            raise ValueError(f'{self.response_element_name} has no ResponseMessages element')
        expected_tag = ns_hlp.MSG.tag(self.response_message_element_name).text
        responses = []
        for message_node in child_elements(messages_node):
            if message_node.tag != expected_tag:
                raise ValueError(f'unexpected element {message_node.tag} in ResponseMessages')
            response = ServiceResponse.from_node(message_node)
            if not response.is_error:
                response.payload = self.parse_response_message(message_node)
            responses.append(response)
        expected = self.expected_response_count()
        if expected is not None and expected != len(responses):
            raise ValueError(f'expected {expected} response messages, got {len(responses)}')
        return responses


class BaseShape(enum.Enum):
    ID_ONLY = 'IdOnly'
    DEFAULT = 'Default'
    ALL_PROPERTIES = 'AllProperties'


@dataclass(frozen=True)
class FolderId:
    """Id of a folder. If distinguished is True, id is a well known name like "inbox"."""

    id: str  # noqa: A003
    change_key: str | None = None
    distinguished: bool = False
    mailbox: str | None = None

    @classmethod
    def well_known(cls, name: str, mailbox: str | None = None) -> FolderId:
        return cls(name, distinguished=True, mailbox=mailbox)

    def write_to(self, parent: xml_utils.LxmlElement):
        if self.distinguished:
            node = etree_.SubElement(parent, ns_hlp.TYPES.tag('DistinguishedFolderId'), attrib={'Id': self.id})
            if self.mailbox:
                mailbox_node = etree_.SubElement(node, ns_hlp.TYPES.tag('Mailbox'))
                address_node = etree_.SubElement(mailbox_node, ns_hlp.TYPES.tag('EmailAddress'))
                address_node.text = self.mailbox
        else:
            node = etree_.SubElement(parent, ns_hlp.TYPES.tag('FolderId'), attrib={'Id': self.id})
            if self.change_key:
                node.set('ChangeKey', self.change_key)


@dataclass(frozen=True)
class FolderInfo:
    """The folder properties that GetFolder reads."""

    folder_class: str
    folder_id: FolderId
    display_name: str | None = None
    total_count: int | None = None
    child_folder_count: int | None = None
    unread_count: int | None = None

    @classmethod
    def from_node(cls, node: xml_utils.LxmlElement) -> FolderInfo:
        id_node = node.find(ns_hlp.TYPES.tag('FolderId'))
        if id_node is None:
            raise ValueError('folder has no FolderId')
        folder_id = FolderId(id_node.attrib['Id'], id_node.get('ChangeKey'))

        def _int(name: str) -> int | None:
            text = node.findtext(ns_hlp.TYPES.tag(name))
            return None if text is None else int(text)

        return cls(etree_.QName(node.tag).localname,
                   folder_id,
                   node.findtext(ns_hlp.TYPES.tag('DisplayName')),
                   _int('TotalCount'),
                   _int('ChildFolderCount'),
                   _int('UnreadCount'))


class GetFolder(MultiResponseOperation):
    """Read folders by id."""

    element_name = 'GetFolder'
    response_element_name = 'GetFolderResponse'
    response_message_element_name = 'GetFolderResponseMessage'

    def __init__(self, folder_ids: list[FolderId], base_shape: BaseShape = BaseShape.DEFAULT,
                 anchor_mailbox: str | None = None):
        super().__init__(anchor_mailbox)
        self.folder_ids = list(folder_ids)
        self.base_shape = base_shape

    def validate(self):
        if not self.folder_ids:
            raise LocalValidationError('folder_ids must not be empty')
        if not isinstance(self.base_shape, BaseShape):
            raise LocalValidationError(f'invalid base shape {self.base_shape!r}')
        for folder_id in self.folder_ids:
            if not folder_id.id:
                raise LocalValidationError('a folder id must not be empty')

    def write_elements(self, node: xml_utils.LxmlElement):
        shape_node = etree_.SubElement(node, ns_hlp.MSG.tag('FolderShape'))
        base_shape_node = etree_.SubElement(shape_node, ns_hlp.TYPES.tag('BaseShape'))
        base_shape_node.text = self.base_shape.value
        ids_node = etree_.SubElement(node, ns_hlp.MSG.tag('FolderIds'))
        for folder_id in self.folder_ids:
            folder_id.write_to(ids_node)

    def expected_response_count(self) -> int:
        return len(self.folder_ids)

    def parse_response_message(self, node: xml_utils.LxmlElement) -> list[FolderInfo]:
        folders_node = node.find(ns_hlp.MSG.tag('Folders'))
        if folders_node is None:
            return []
        return [FolderInfo.from_node(folder_node) for folder_node in child_elements(folders_node)]


def _check_non_blank(value: str | None, name: str):
    if value is not None and not value.strip():
        raise LocalValidationError(f'{name} must not be blank')


class GetAppManifests(ServiceOperation):
    """Read the manifests of the apps that are installed for the mailbox.

    The result is a ServiceResponse whose payload is the list of manifests (xml documents as bytes).
    """

    element_name = 'GetAppManifests'
    response_element_name = 'GetAppManifestsResponse'
    minimum_version = ExchangeVersion.Exchange2013

    def __init__(self, api_version_supported: str | None = None,
                 schema_version_supported: str | None = None,
                 anchor_mailbox: str | None = None):
        super().__init__(anchor_mailbox)
        self.api_version_supported = api_version_supported
        self.schema_version_supported = schema_version_supported

    def validate(self):
        _check_non_blank(self.api_version_supported, 'api_version_supported')
        _check_non_blank(self.schema_version_supported, 'schema_version_supported')

    def write_elements(self, node: xml_utils.LxmlElement):
        if self.api_version_supported:
            etree_.SubElement(node, ns_hlp.MSG.tag('ApiVersionSupported')).text = self.api_version_supported
        if self.schema_version_supported:
            etree_.SubElement(node, ns_hlp.MSG.tag('SchemaVersionSupported')).text = self.schema_version_supported

    def parse_response(self, node: xml_utils.LxmlElement, http_headers: Mapping[str, str]) -> ServiceResponse:
        response = ServiceResponse.from_node(node)
        if response.is_error:
            return response
        manifests = []
        # older servers return Manifests/Manifest, newer ones Apps/App/Manifest
        manifest_nodes = node.findall(f'{ns_hlp.MSG.tag("Manifests")}/{ns_hlp.MSG.tag("Manifest")}')
        manifest_nodes.extend(node.findall(f'{ns_hlp.MSG.tag("Apps")}/{ns_hlp.TYPES.tag("App")}/'
                                           f'{ns_hlp.TYPES.tag("Manifest")}'))
        for manifest_node in manifest_nodes:
            try:
                encoded = ''.join((manifest_node.text or '').split())
                manifests.append(base64.b64decode(encoded, validate=True))
            except binascii.Error as ex:
                raise ValueError(f'manifest is not base64 encoded: {ex}') from ex
        response.payload = manifests
        return response

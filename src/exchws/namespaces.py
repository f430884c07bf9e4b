"""A helper for xml name space handling."""
from __future__ import annotations

from enum import Enum
from typing import NamedTuple

from lxml import etree as etree_


class PrefixNamespace(NamedTuple):
    """A namespace together with the prefix that is used for it in created documents."""

    prefix: str
    namespace: str

    def tag(self, localname: str) -> etree_.QName:
        return etree_.QName(self.namespace, localname)

    def doc_name(self, localname: str) -> str:
        if self.prefix:
            return f'{self.prefix}:{localname}'
        return localname


class PrefixesEnum(PrefixNamespace, Enum):
    SOAP = PrefixNamespace('soap', 'http://schemas.xmlsoap.org/soap/envelope/')
    SOAP12 = PrefixNamespace('soap12', 'http://www.w3.org/2003/05/soap-envelope')
    MSG = PrefixNamespace('m', 'http://schemas.microsoft.com/exchange/services/2006/messages')
    TYPES = PrefixNamespace('t', 'http://schemas.microsoft.com/exchange/services/2006/types')
    ERRORS = PrefixNamespace('e', 'http://schemas.microsoft.com/exchange/services/2006/errors')
    XSI = PrefixNamespace('xsi', 'http://www.w3.org/2001/XMLSchema-instance')
    XSD = PrefixNamespace('xsd', 'http://www.w3.org/2001/XMLSchema')
    WSU = PrefixNamespace('wsu',
                          'http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd')
    WSSE = PrefixNamespace('wsse',
                           'http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd')


class NamespaceHelper:
    def __init__(self, prefixes_enum: type[PrefixesEnum]):
        self.prefix_enum = prefixes_enum
        self._lookup = {enum_item.name: enum_item.value for enum_item in prefixes_enum}
        self._prefix_map = {x.namespace: x.prefix for x in self._lookup.values()}  # map namespace to prefix
        self.ns_map = {x.prefix: x.namespace for x in self._lookup.values()}  # map prefix to namespace

    @property
    def SOAP(self) -> PrefixNamespace:
        return self._lookup['SOAP']

    @property
    def SOAP12(self) -> PrefixNamespace:
        return self._lookup['SOAP12']

    @property
    def MSG(self) -> PrefixNamespace:
        return self._lookup['MSG']

    @property
    def TYPES(self) -> PrefixNamespace:
        return self._lookup['TYPES']

    @property
    def ERRORS(self) -> PrefixNamespace:
        return self._lookup['ERRORS']

    @property
    def XSI(self) -> PrefixNamespace:
        return self._lookup['XSI']

    @property
    def XSD(self) -> PrefixNamespace:
        return self._lookup['XSD']

    @property
    def WSU(self) -> PrefixNamespace:
        return self._lookup['WSU']

    @property
    def WSSE(self) -> PrefixNamespace:
        return self._lookup['WSSE']

    def partial_map(self, *prefix: PrefixNamespace) -> dict[str, str]:
        """Return a dictionary with prefix as key, namespace as value."""
        return {p.prefix: p.namespace for p in prefix}

    def doc_name_from_qname(self, qname: etree_.QName) -> str:
        """Return the prefix:name string of qname."""
        prefix = self._prefix_map[qname.namespace]
        return f'{prefix}:{qname.localname}'

    def soap_namespace_of(self, uri: str | None) -> PrefixNamespace | None:
        """Return SOAP or SOAP12 if uri is one of the soap envelope namespaces, else None."""
        for candidate in (self.SOAP, self.SOAP12):
            if candidate.namespace == uri:
                return candidate
        return None


default_ns_helper = NamespaceHelper(PrefixesEnum)


class ElementNames:
    """Local names of elements that the request core reads or writes."""

    Envelope = 'Envelope'
    Header = 'Header'
    Body = 'Body'
    Fault = 'Fault'
    RequestServerVersion = 'RequestServerVersion'
    ServerVersionInfo = 'ServerVersionInfo'
    TimeZoneContext = 'TimeZoneContext'
    TimeZoneDefinition = 'TimeZoneDefinition'
    MailboxCulture = 'MailboxCulture'
    DateTimePrecision = 'DateTimePrecision'
    ExchangeImpersonation = 'ExchangeImpersonation'
    OpenAsAdminOrSystemService = 'OpenAsAdminOrSystemService'
    ConnectingSID = 'ConnectingSID'
    ManagementRole = 'ManagementRole'
    UserRoles = 'UserRoles'
    ApplicationRoles = 'ApplicationRoles'
    Role = 'Role'
    ResponseMessages = 'ResponseMessages'
    ResponseCode = 'ResponseCode'
    MessageText = 'MessageText'
    MessageXml = 'MessageXml'
    DescriptiveLinkKey = 'DescriptiveLinkKey'
    Value = 'Value'

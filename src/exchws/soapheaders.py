"""Soap header elements that select the identity and context of a request."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from lxml import etree as etree_

from exchws.namespaces import ElementNames
from exchws.namespaces import default_ns_helper as ns_hlp

if TYPE_CHECKING:
    from exchws import xml_utils


class ConnectingIdType(enum.Enum):
    """How the connecting user is identified. The value is the name of the xml element."""

    PRINCIPAL_NAME = 'PrincipalName'
    SID = 'SID'
    SMTP_ADDRESS = 'PrimarySmtpAddress'


class PrivilegedLogonType(enum.Enum):
    ADMIN = 'Admin'
    SYSTEM_SERVICE = 'SystemService'


class PrivilegedUserIdBudgetType(enum.Enum):
    DEFAULT = 'Default'
    RUNNING_AS_BACKGROUND_LOAD = 'RunningAsBackgroundLoad'
    UNTHROTTLED = 'Unthrottled'


def _write_connecting_sid(parent: xml_utils.LxmlElement, id_type: ConnectingIdType, user_id: str):
    if not user_id:
        raise ValueError('id of connecting user must not be empty')
    connecting_sid = etree_.SubElement(parent, ns_hlp.TYPES.tag(ElementNames.ConnectingSID))
    id_node = etree_.SubElement(connecting_sid, ns_hlp.TYPES.tag(id_type.value))
    id_node.text = user_id


@dataclass(frozen=True)
class ImpersonatedUserId:
    """The request is executed in the name of this user."""

    id_type: ConnectingIdType
    id: str  # noqa: A003

    def write_to(self, header_node: xml_utils.LxmlElement):
        node = etree_.SubElement(header_node, ns_hlp.TYPES.tag(ElementNames.ExchangeImpersonation))
        _write_connecting_sid(node, self.id_type, self.id)


@dataclass(frozen=True)
class PrivilegedUserId:
    """The mailbox of this user is opened with a privileged logon type."""

    logon_type: PrivilegedLogonType
    id_type: ConnectingIdType
    id: str  # noqa: A003
    budget_type: PrivilegedUserIdBudgetType | None = None

    def write_to(self, header_node: xml_utils.LxmlElement):
        node = etree_.SubElement(header_node, ns_hlp.TYPES.tag(ElementNames.OpenAsAdminOrSystemService))
        node.set('LogonType', self.logon_type.value)
        if self.budget_type is not None:
            node.set('BudgetType', self.budget_type.value)
        _write_connecting_sid(node, self.id_type, self.id)


@dataclass(frozen=True)
class ManagementRoles:
    """Roles of the user and of the application that shall be used for authorization."""

    user_roles: list[str] = field(default_factory=list)
    application_roles: list[str] = field(default_factory=list)

    def write_to(self, header_node: xml_utils.LxmlElement):
        node = etree_.SubElement(header_node, ns_hlp.TYPES.tag(ElementNames.ManagementRole))
        for list_name, roles in ((ElementNames.UserRoles, self.user_roles),
                                 (ElementNames.ApplicationRoles, self.application_roles)):
            if not roles:
                continue
            roles_node = etree_.SubElement(node, ns_hlp.TYPES.tag(list_name))
            for role in roles:
                role_node = etree_.SubElement(roles_node, ns_hlp.TYPES.tag(ElementNames.Role))
                role_node.text = role


def write_time_zone_context(header_node: xml_utils.LxmlElement, time_zone_id: str):
    """Append a TimeZoneContext element that references the time zone by its id."""
    node = etree_.SubElement(header_node, ns_hlp.TYPES.tag(ElementNames.TimeZoneContext))
    tz_node = etree_.SubElement(node, ns_hlp.TYPES.tag(ElementNames.TimeZoneDefinition))
    tz_node.set('Id', time_zone_id)

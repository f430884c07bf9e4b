"""Credentials plug into the request core at a few well defined points.

A credentials implementation can adjust the service url, add http headers, add namespace declarations and
security headers to the soap envelope, and sign the serialized envelope.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from aiohttp import BasicAuth

if TYPE_CHECKING:
    from exchws import xml_utils


class CredentialsProtocol(Protocol):
    """The interface that the request core expects from credentials."""

    @property
    def need_signature(self) -> bool:
        """Return True if the serialized envelope must be signed."""

    def sign(self, xml_bytes: bytes) -> bytes:
        """Return signed envelope."""

    def emit_extra_soap_header_namespace_aliases(self, nsmap: dict[str, str]):
        """Add namespace declarations that the security headers need to nsmap (prefix => namespace)."""

    def serialize_ws_security_headers(self, header_node: xml_utils.LxmlElement):
        """Append security header elements to the soap header node."""

    def adjust_url(self, url: str) -> str:
        """Return the url that shall be used instead of the configured url."""

    def additional_headers(self, url: str) -> dict[str, str]:
        """Return http headers that shall be sent with every request."""


class BasicCredentials:
    """User name and password, sent in the Authorization header.

    No signing, no soap security headers.
    """

    def __init__(self, user_name: str, password: str, encoding: str = 'utf-8'):
        self._auth = BasicAuth(user_name, password, encoding)

    @property
    def user_name(self) -> str:
        return self._auth.login

    @property
    def need_signature(self) -> bool:
        return False

    def sign(self, xml_bytes: bytes) -> bytes:
        return xml_bytes

    def emit_extra_soap_header_namespace_aliases(self, nsmap: dict[str, str]):
        pass

    def serialize_ws_security_headers(self, header_node: xml_utils.LxmlElement):
        pass

    def adjust_url(self, url: str) -> str:
        return url

    def additional_headers(self, url: str) -> dict[str, str]:  # noqa: ARG002
        return {'Authorization': self._auth.encode()}

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(user_name={self.user_name})'

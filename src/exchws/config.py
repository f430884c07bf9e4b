"""Configuration of a service instance."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from exchws.exceptions import LocalValidationError
from exchws.versions import ExchangeVersion, validate_target_version

if TYPE_CHECKING:
    from ssl import SSLContext

    from exchws.credentials import CredentialsProtocol
    from exchws.pysoap.msgfactory import MessageFactory
    from exchws.pysoap.msgreader import MessageReader
    from exchws.transport import TransportProtocol

DEFAULT_USER_AGENT = 'ExchangeServicesClient/15.0 (exchws)'


class DateTimePrecision(enum.Enum):
    """Precision of date time values in responses."""

    DEFAULT = 'Default'
    SECONDS = 'Seconds'
    MILLISECONDS = 'Milliseconds'


@dataclass
class ServiceConfig:
    """Settings of a service. The instance is shared by all requests of the service, do not modify it later.

    :param url: url of the service endpoint, http or https
    :param timeout: timeout of a request in seconds
    :param client_statistics_cache_size: max. number of latency records that are kept for later requests
    """

    url: str
    requested_server_version: ExchangeVersion = ExchangeVersion.Exchange2013_SP1
    credentials: CredentialsProtocol | None = None
    timeout: float = 100
    user_agent: str = DEFAULT_USER_AGENT
    accept_gzip_encoding: bool = True
    keep_alive: bool = True
    client_request_id: str | None = None
    return_client_request_id: bool = False
    target_server_version: str | None = None
    send_client_latencies: bool = True
    client_statistics_cache_size: int = 100
    time_zone_id: str = 'UTC'
    preferred_culture: str | None = None
    date_time_precision: DateTimePrecision = DateTimePrecision.DEFAULT
    exchange2007_compatibility_mode: bool = False
    suppress_version_header: bool = False
    additional_http_headers: dict[str, str] = field(default_factory=dict)
    ssl_context: SSLContext | None = None

    def __post_init__(self):
        if self.credentials is not None:
            self.url = self.credentials.adjust_url(self.url)
        scheme = urlparse(self.url).scheme.lower()
        if scheme not in ('http', 'https'):
            raise LocalValidationError(f'protocol "{scheme}" of url "{self.url}" is not supported')
        if self.target_server_version is not None:
            try:
                validate_target_version(self.target_server_version)
            except ValueError as ex:
                raise LocalValidationError(str(ex), ex) from ex
        if self.client_statistics_cache_size < 1:
            raise LocalValidationError('client_statistics_cache_size must be a positive number')
        if self.timeout <= 0:
            raise LocalValidationError('timeout must be a positive number')

    @property
    def need_signature(self) -> bool:
        return self.credentials is not None and self.credentials.need_signature


@dataclass
class ServiceComponents:
    """Dependency injection: This class defines which component implementations the service will use."""

    transport_class: type[TransportProtocol] | None = None
    msg_factory_class: type[MessageFactory] | None = None
    msg_reader_class: type[MessageReader] | None = None

    def merge(self, other: ServiceComponents):
        """Add data from other to self."""
        def _merge(attr_name: str):
            other_value = getattr(other, attr_name)
            if other_value:
                setattr(self, attr_name, other_value)

        _merge('transport_class')
        _merge('msg_factory_class')
        _merge('msg_reader_class')

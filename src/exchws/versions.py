"""Protocol versions and the version information that the server reports in response headers."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from exchws import xml_utils


class ExchangeVersion(enum.IntEnum):
    """Protocol versions a client can request. Order of members is the order of versions."""

    Exchange2007_SP1 = 0  # noqa: N815
    Exchange2010 = 1
    Exchange2010_SP1 = 2  # noqa: N815
    Exchange2010_SP2 = 3  # noqa: N815
    Exchange2013 = 4
    Exchange2013_SP1 = 5  # noqa: N815
    Exchange2016 = 6


LEGACY_BASELINE_VERSION = ExchangeVersion.Exchange2007_SP1
LEGACY_VERSION_TOKEN = 'Exchange2007'  # sent instead of Exchange2007_SP1 in compatibility mode


@dataclass(frozen=True)
class ServerInfo:
    """Version and build of the server that processed the last request."""

    major_version: int
    minor_version: int
    major_build_number: int
    minor_build_number: int
    version_string: str | None = None

    @classmethod
    def from_node(cls, node: xml_utils.LxmlElement) -> ServerInfo:
        """Construct from a ServerVersionInfo element.

        Missing numeric attributes default to 0, a non-numeric value raises ValueError.
        """
        return cls(int(node.get('MajorVersion', '0')),
                   int(node.get('MinorVersion', '0')),
                   int(node.get('MajorBuildNumber', '0')),
                   int(node.get('MinorBuildNumber', '0')),
                   node.get('Version'))

    @property
    def is_legacy_baseline(self) -> bool:
        """Return True for 8.0.x servers, the first server generation that implemented the protocol."""
        return self.major_version == 8 and self.minor_version == 0  # noqa: PLR2004

    def __str__(self) -> str:
        return (f'{self.major_version:02d}.{self.minor_version:02d}.'
                f'{self.major_build_number:04d}.{self.minor_build_number:03d}')


def _is_major_minor(version_part: str) -> bool:
    parts = version_part.split('.')
    if len(parts) != 2:  # noqa: PLR2004
        return False
    return all(part.isdigit() for part in parts)


def validate_target_version(version: str):
    """Check the value of the X-EWS-TargetVersion http header.

    Accepted forms are "X.Y", "Exchange20XX" and both of them with an optional ";minimum=X.Y" suffix.
    The check is loose, the server does the complete validation.
    :param version: the header value
    :raises ValueError: if the value does not have one of the accepted forms
    """
    if not version:
        raise ValueError('Target version must not be empty.')
    parts = version.strip().split(';')
    if len(parts) > 2:  # noqa: PLR2004
        raise ValueError('Target version should have the form "X.Y" or "Exchange20XX" '
                         'with an optional ";minimum=X.Y" parameter.')
    if len(parts) == 2:  # noqa: PLR2004
        param = parts[1].split('=')
        if len(param) != 2 or param[0].strip().lower() != 'minimum' or not _is_major_minor(param[1].strip()):  # noqa: PLR2004
            raise ValueError('Target version must match X.Y or Exchange20XX.')
    first = parts[0].strip()
    if not (first.startswith('Exchange20') or _is_major_minor(first)):
        raise ValueError('Target version must match X.Y or Exchange20XX.')

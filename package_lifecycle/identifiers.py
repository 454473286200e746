"""
Identifier validation for packaging records.

Record ids are 15 or 18 alphanumeric characters. The first three characters
identify the record type; an 18-character id carries a 3-character
case-checksum suffix. Ids are validated here, before any remote call.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidIdentifierError

_ID_PATTERN = re.compile(r"^[a-zA-Z0-9]{15}(?:[a-zA-Z0-9]{3})?$")
_CHECKSUM_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ012345"


@dataclass(frozen=True)
class IdKind:
    """A record type identified by its 3-character key prefix."""
    prefix: str
    label: str


PACKAGE_ID = IdKind("0Ho", "package ID")
PACKAGE_VERSION_ID = IdKind("05i", "package version ID")
SUBSCRIBER_PACKAGE_VERSION_ID = IdKind("04t", "subscriber package version ID")
PACKAGE_VERSION_CREATE_REQUEST_ID = IdKind("08c", "package version create request ID")
PACKAGE_INSTALL_REQUEST_ID = IdKind("0Hf", "package install request ID")
PACKAGE_UNINSTALL_REQUEST_ID = IdKind("06y", "package uninstall request ID")


def compute_checksum(id15: str) -> str:
    """Compute the 3-character case-checksum suffix for a 15-character id."""
    suffix = ""
    for chunk_start in range(0, 15, 5):
        chunk = id15[chunk_start:chunk_start + 5]
        flags = 0
        for position, char in enumerate(chunk):
            if "A" <= char <= "Z":
                flags |= 1 << position
        suffix += _CHECKSUM_ALPHABET[flags]
    return suffix


def is_valid_record_id(value: Optional[str]) -> bool:
    """Check length, charset and (for 18-character ids) the checksum."""
    if not value or not _ID_PATTERN.match(value):
        return False
    if len(value) == 18:
        return value[15:] == compute_checksum(value[:15])
    return True


def validate_id(kind: IdKind, value: Optional[str]) -> str:
    """
    Validate that value is a well-formed id of the given kind.

    Raises:
        InvalidIdentifierError: wrong prefix or malformed id
    """
    if not value or not value.startswith(kind.prefix) or not is_valid_record_id(value):
        raise InvalidIdentifierError(kind.label, value or "")
    return value


def escape_installation_key(key: str) -> str:
    """Escape an installation key for use inside a single-quoted query literal."""
    return key.replace("\\", "\\\\").replace("'", "\\'")

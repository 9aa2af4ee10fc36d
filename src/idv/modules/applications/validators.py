"""
Identity Document Validation

Format checks for the two supported identity documents:

- Resident ID (居民身份证): 18 characters. 6-digit region code, 8-digit
  birth date, 3-digit sequence and a check character (digit or X).
- HK/Macau/Taiwan residence permit (港澳台居民居住证): same layout with the
  region code fixed to 810000 (HK), 820000 (Macau) or 830000 (Taiwan).

The embedded birth date must be a real calendar date that is not in the
future. Only ASCII digits are accepted. The ISO 7064 check character is
NOT verified.
"""

import re
from datetime import date

from .exceptions import InvalidIdentityFormatError, ValidationError
from .models import IdentityDocumentType

RESIDENT_ID_PATTERN = re.compile(
    r"^[1-9][0-9]{5}(?P<birth>(?:18|19|20)[0-9]{2}(?:0[1-9]|1[0-2])(?:0[1-9]|[12][0-9]|3[01]))[0-9]{3}[0-9Xx]$"
)
RESIDENCE_PERMIT_PATTERN = re.compile(
    r"^8[123]0000(?P<birth>(?:19|20)[0-9]{2}(?:0[1-9]|1[0-2])(?:0[1-9]|[12][0-9]|3[01]))[0-9]{3}[0-9X]$"
)
PHONE_NUMBER_PATTERN = re.compile(r"^1[3-9][0-9]{9}$")

_PATTERNS = {
    IdentityDocumentType.RESIDENT_ID: RESIDENT_ID_PATTERN,
    IdentityDocumentType.RESIDENCE_PERMIT: RESIDENCE_PERMIT_PATTERN,
}

_MESSAGES = {
    IdentityDocumentType.RESIDENT_ID: (
        "Invalid resident ID number: expected 18 characters with a valid birth date "
        "and a trailing digit or X."
    ),
    IdentityDocumentType.RESIDENCE_PERMIT: (
        "Invalid residence permit number: expected 18 characters starting with "
        "810000, 820000 or 830000, with a valid birth date and a trailing digit or X."
    ),
}


def type_specific_message(id_type: IdentityDocumentType) -> str:
    """Human-readable format requirement for a document type."""
    return _MESSAGES[id_type]


def _parse_birth_date(value: str) -> date | None:
    try:
        return date(int(value[:4]), int(value[4:6]), int(value[6:8]))
    except ValueError:
        return None


def validate_identity_number(
    id_type: IdentityDocumentType,
    id_number: str,
    today: date | None = None,
) -> str:
    """
    Validate an identity number against its document type.

    Args:
        id_type: Document type the number claims to be
        id_number: Raw number as entered
        today: Reference date for the birth-date check (defaults to today)

    Returns:
        The normalized number (check character upper-cased)

    Raises:
        InvalidIdentityFormatError: If the number does not match the type
    """
    candidate = (id_number or "").strip()
    match = _PATTERNS[id_type].match(candidate)
    if not match:
        raise InvalidIdentityFormatError(id_type, type_specific_message(id_type))

    birth_date = _parse_birth_date(match.group("birth"))
    if birth_date is None or birth_date > (today or date.today()):
        raise InvalidIdentityFormatError(id_type, type_specific_message(id_type))

    return candidate.upper()


def validate_phone_number(phone_number: str) -> str:
    """
    Validate a mainland mobile number.

    Raises:
        ValidationError: If the number is not 11 digits starting with 13-19
    """
    candidate = (phone_number or "").strip()
    if not PHONE_NUMBER_PATTERN.match(candidate):
        raise ValidationError("Invalid phone number: expected an 11-digit mobile number.")
    return candidate

"""
Sanitization of raw log records uploaded by the mobile client.

Device content providers occasionally hand back NUL bytes and other control
characters that the database rejects or that break JSON consumers, so every
string field is scrubbed before it reaches the merge engine.
"""

import re
from typing import Any, Mapping

# Control characters except \t (0x09), \n (0x0A) and \r (0x0D)
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


def clean_value(value: Any) -> Any:
    """Strip control characters from strings; return anything else unchanged."""
    if not isinstance(value, str):
        return value
    return CONTROL_CHARS.sub("", value)


def normalize_record(record: Mapping[str, Any]) -> dict:
    """
    Return a sanitized copy of a raw log record.

    No validation happens here: malformed numeric or timestamp fields are
    passed through and rejected when the record is merged.
    """
    return {key: clean_value(value) for key, value in record.items()}

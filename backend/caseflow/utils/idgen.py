"""ID Generation Utilities"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from ..domain.enums import RecordType


# Case number prefixes per record kind
CASE_NUMBER_PREFIXES = {
    RecordType.INCIDENT: "INC",
    RecordType.REQUEST: "REQ",
    RecordType.COMPLAINT: "CMP",
    RecordType.QUERY: "QRY",
}


def generate_id(prefix: Optional[str] = None) -> str:
    """
    Generate a unique ID with optional prefix

    Args:
        prefix: Optional prefix for the ID (e.g., 'WF', 'WST', 'HST')

    Returns:
        Unique ID string

    Examples:
        >>> generate_id('WF')
        'WF-a1b2c3d4e5f6'
        >>> generate_id()
        'a1b2c3d4e5f6'
    """
    unique_part = uuid.uuid4().hex[:12]

    if prefix:
        return f"{prefix}-{unique_part}"
    return unique_part


def generate_workflow_id() -> str:
    return generate_id("WF")


def generate_state_id() -> str:
    return generate_id("WST")


def generate_transition_id() -> str:
    return generate_id("WTR")


def generate_requirement_id() -> str:
    return generate_id("WRQ")


def generate_action_id() -> str:
    return generate_id("WAC")


def generate_case_id() -> str:
    return generate_id("CASE")


def generate_case_number(record_type: RecordType) -> str:
    """Human facing case number, e.g. INC-20260101-1a2b3c"""
    prefix = CASE_NUMBER_PREFIXES.get(RecordType(record_type), "CASE")
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"{prefix}-{day}-{uuid.uuid4().hex[:6].upper()}"


def generate_history_id() -> str:
    return generate_id("HST")


def generate_comment_id() -> str:
    return generate_id("CMT")


def generate_outbox_id() -> str:
    return generate_id("AOB")


def generate_notification_id() -> str:
    return generate_id("NTF")


def generate_lookup_id(prefix: str) -> str:
    """Directory records created during import (classifications, locations)"""
    return generate_id(prefix)


def generate_correlation_id() -> str:
    """
    Generate a correlation ID for request tracing

    Returns:
        Correlation ID string with timestamp prefix
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    unique_part = uuid.uuid4().hex[:8]
    return f"COR-{timestamp}-{unique_part}"

"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class RecordType(str, Enum):
    """Kinds of cases handled by the console"""
    INCIDENT = "incident"
    REQUEST = "request"
    COMPLAINT = "complaint"
    QUERY = "query"


class MatchRecordType(str, Enum):
    """Record types a workflow's match config may target"""
    INCIDENT = "incident"
    REQUEST = "request"
    COMPLAINT = "complaint"
    QUERY = "query"
    BOTH = "both"  # Legacy: incident and request
    ALL = "all"


# Record types covered by the legacy "both" match type
LEGACY_BOTH_TYPES = (RecordType.INCIDENT, RecordType.REQUEST)


class StateType(str, Enum):
    """Role of a state in its workflow"""
    INITIAL = "initial"
    NORMAL = "normal"
    TERMINAL = "terminal"


class RequirementType(str, Enum):
    """Preconditions a transition may demand"""
    COMMENT = "comment"
    ATTACHMENT = "attachment"
    FEEDBACK = "feedback"
    FIELD_VALUE = "field_value"


class ActionType(str, Enum):
    """Automated side effects fired after a transition commits"""
    NOTIFICATION = "notification"
    EMAIL = "email"
    WEBHOOK = "webhook"
    FIELD_UPDATE = "field_update"


class EmailRecipient(str, Enum):
    """Recipient groups resolved from the case at dispatch time"""
    ASSIGNEE = "assignee"
    PREVIOUS_ASSIGNEE = "previous_assignee"
    REPORTER = "reporter"
    CREATOR = "creator"
    DEPARTMENT_HEAD = "department_head"
    CUSTOM = "custom"


class CaseSource(str, Enum):
    """Channels a case can be raised from"""
    FIELD = "field"
    SYSTEM_940 = "940_system"
    MANUAL = "manual"
    API = "api"
    EMAIL = "email"


class ActionResultStatus(str, Enum):
    """Outcome of one action run"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    DEFERRED = "deferred"  # Moved to the async outbox after the sync budget expired
    TIMED_OUT = "timed_out"


class OutboxStatus(str, Enum):
    """Action / notification outbox status"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NotificationStatus(str, Enum):
    """Email outbox status"""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class UnmetReason(str, Enum):
    """Why an available transition cannot execute right now"""
    FORBIDDEN_ROLE = "forbidden_role"
    REQUIREMENT_UNMET = "requirement_unmet"


class AssignmentKind(str, Enum):
    DEPARTMENT = "department"
    USER = "user"


# Case fields a field_update action may write (besides custom_fields.<key>)
UPDATABLE_CASE_FIELDS = (
    "title",
    "description",
    "priority",
    "severity",
    "source",
    "due_date",
)

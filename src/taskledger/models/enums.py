"""Task Ledger enumerations."""

from enum import Enum


class TaskLedgerType(str, Enum):
    """What kind of actor the entry is waiting on."""

    AI_ACTION = "AI_ACTION"
    SYSTEM_TASK = "SYSTEM_TASK"
    HUMAN_TASK = "HUMAN_TASK"
    APPROVAL = "APPROVAL"


class TaskLedgerCategory(str, Enum):
    """Business area the entry belongs to."""

    BILLING = "BILLING"
    SCHEDULING = "SCHEDULING"
    MESSAGING = "MESSAGING"
    MARKETING = "MARKETING"
    OPERATIONS = "OPERATIONS"


class TaskLedgerStatus(str, Enum):
    """Entry lifecycle status."""

    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNDONE = "UNDONE"

    @classmethod
    def terminal_states(cls) -> set["TaskLedgerStatus"]:
        """Return terminal states."""
        return {cls.COMPLETED, cls.FAILED, cls.CANCELLED, cls.UNDONE}

    def is_terminal(self) -> bool:
        """Check if status is terminal."""
        return self in self.terminal_states()


class TaskActionType(str, Enum):
    """Action types with a dedicated outbound event."""

    # Billing
    SEND_PAYMENT_REMINDER = "SEND_PAYMENT_REMINDER"
    APPLY_LATE_FEE = "APPLY_LATE_FEE"
    SEND_QUOTE_FOLLOWUP = "SEND_QUOTE_FOLLOWUP"

    # Scheduling
    SEND_APPOINTMENT_CONFIRMATION = "SEND_APPOINTMENT_CONFIRMATION"
    SEND_APPOINTMENT_REMINDER = "SEND_APPOINTMENT_REMINDER"
    MARK_NO_SHOW = "MARK_NO_SHOW"

    # Messaging
    SEND_SMS = "SEND_SMS"
    SEND_EMAIL = "SEND_EMAIL"
    SEND_AI_RESPONSE = "SEND_AI_RESPONSE"

    # Marketing
    SEND_REVIEW_REQUEST = "SEND_REVIEW_REQUEST"
    SEND_WINBACK = "SEND_WINBACK"
    SEND_CAMPAIGN = "SEND_CAMPAIGN"

    # Operations
    ASSIGN_TECHNICIAN = "ASSIGN_TECHNICIAN"
    UPDATE_JOB_STATUS = "UPDATE_JOB_STATUS"


class LedgerOperation(str, Enum):
    """Operations that move an entry through the state machine."""

    APPROVE = "approve"
    DECLINE = "decline"
    EXECUTE = "execute"
    COMPLETE = "complete"
    UNDO = "undo"
    CANCEL_ENTITY = "cancel_entity"

"""Event names emitted by the Task Ledger."""


class EVENTS:
    """Event name constants."""

    # Ledger lifecycle notifications
    TASK_LEDGER_CREATED = "task-ledger.created"
    TASK_LEDGER_APPROVED = "task-ledger.approved"
    TASK_LEDGER_DECLINED = "task-ledger.declined"
    TASK_LEDGER_COMPLETED = "task-ledger.completed"
    TASK_LEDGER_EXECUTED = "task-ledger.executed"
    TASK_LEDGER_UNDO_REQUESTED = "task-ledger.undo-requested"
    TASK_LEDGER_UNDONE = "task-ledger.undone"

    # Billing
    PAYMENT_REMINDER_REQUESTED = "payment-reminder-requested"
    LATE_FEE_REQUESTED = "late-fee-requested"
    QUOTE_FOLLOWUP_REQUESTED = "quote-followup-requested"

    # Scheduling
    APPOINTMENT_CONFIRMATION_REQUESTED = "appointment-confirmation-requested"
    APPOINTMENT_REMINDER_REQUESTED = "appointment-reminder-requested"
    NO_SHOW_REQUESTED = "no-show-requested"

    # Messaging
    SMS_REQUESTED = "sms-requested"
    EMAIL_REQUESTED = "email-requested"
    AI_RESPONSE_REQUESTED = "ai-response-requested"

    # Marketing
    REVIEW_REQUEST_REQUESTED = "review-request-requested"
    WINBACK_REQUESTED = "winback-requested"
    CAMPAIGN_SEND_REQUESTED = "campaign-send-requested"

    # Operations
    TECHNICIAN_ASSIGNMENT_REQUESTED = "technician-assignment-requested"
    JOB_STATUS_UPDATE_REQUESTED = "job-status-update-requested"

    # Fallback for unknown action types
    TASK_ACTION_REQUESTED = "task-action-requested"

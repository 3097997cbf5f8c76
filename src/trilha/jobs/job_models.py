from enum import Enum


class Task(str, Enum):
    """Worker functions that can be enqueued. Values must match the registered function names."""

    LOG_AUDIT_EVENT = "log_audit_event"
    LOG_AUDIT_BATCH = "log_audit_batch"

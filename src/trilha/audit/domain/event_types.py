from enum import Enum

from trilha.audit.domain.operation_types import OperationType


class AuditEventType(str, Enum):
    ENTITY_CREATED = "entity.created"
    ENTITY_UPDATED = "entity.updated"
    ENTITY_DELETED = "entity.deleted"
    ENTITY_ACCESSED = "entity.accessed"

    SENSITIVE_DATA_ACCESSED = "sensitive_data.accessed"
    SENSITIVE_DATA_EXPORTED = "sensitive_data.exported"

    SECURITY_PERMISSION_DENIED = "security.permission_denied"
    SECURITY_SUSPICIOUS_ACTIVITY = "security.suspicious_activity"
    SECURITY_ALERT = "security.alert"

    SYSTEM_INFO = "system.info"
    SYSTEM_WARNING = "system.warning"
    SYSTEM_ERROR = "system.error"

    USER_LOGIN = "auth.login"
    USER_LOGOUT = "auth.logout"
    USER_FAILED_LOGIN = "auth.failed_login"


class AuditTopic(str, Enum):
    """Bus topics. Each event variant is published on exactly one topic."""

    ENTITY_CREATED = "audit.entity.created"
    ENTITY_UPDATED = "audit.entity.updated"
    ENTITY_DELETED = "audit.entity.deleted"
    ENTITY_ACCESSED = "audit.entity.accessed"
    SENSITIVE_DATA = "audit.sensitive"
    SECURITY = "audit.security"
    SYSTEM = "audit.system"
    AUTH = "audit.auth"

    # Published by the core service after a record is persisted
    LOG_CREATED = "audit.log.created"
    CRITICAL_EVENT = "audit.critical.event"
    LGPD_EVENT = "audit.lgpd.event"


_OPERATION_BY_EVENT: dict[AuditEventType, OperationType] = {
    AuditEventType.ENTITY_CREATED: OperationType.CREATE,
    AuditEventType.ENTITY_UPDATED: OperationType.UPDATE,
    AuditEventType.ENTITY_DELETED: OperationType.DELETE,
    AuditEventType.ENTITY_ACCESSED: OperationType.READ,
    AuditEventType.SENSITIVE_DATA_ACCESSED: OperationType.ACCESS,
    AuditEventType.SENSITIVE_DATA_EXPORTED: OperationType.EXPORT,
    AuditEventType.USER_LOGIN: OperationType.LOGIN,
    AuditEventType.USER_LOGOUT: OperationType.LOGOUT,
    AuditEventType.USER_FAILED_LOGIN: OperationType.FAILED_LOGIN,
}


def operation_type_for(event_type: AuditEventType | str) -> OperationType:
    """Map an event type to the operation it is persisted as.

    Security, system and unknown values are recorded as ACCESS.
    """
    try:
        event_type = AuditEventType(event_type)
    except ValueError:
        return OperationType.ACCESS
    return _OPERATION_BY_EVENT.get(event_type, OperationType.ACCESS)

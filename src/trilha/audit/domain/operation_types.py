from enum import Enum


class OperationType(str, Enum):
    """Kind of operation recorded in an audit log.

    Values are persisted and must never be renamed.
    """

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    ACCESS = "access"
    EXPORT = "export"
    ANONYMIZE = "anonymize"
    LOGIN = "login"
    LOGOUT = "logout"
    FAILED_LOGIN = "failed_login"

"""In-process audit events.

Events form a closed set of variants discriminated by ``event_type``. Each
variant only carries the fields that make sense for it, and every variant maps
to exactly one bus topic.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from trilha.audit.domain.event_types import AuditEventType, AuditTopic
from trilha.audit.domain.risk_level import RiskLevel


class RequestContext(BaseModel):
    """Where an event came from, as seen by the request layer."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ip: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = Field(default=None, max_length=10)

    @field_validator("method")
    @classmethod
    def upper_method(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class AuditEventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    topic: ClassVar[AuditTopic]

    entity_name: str = Field(min_length=1, max_length=100)
    entity_id: Optional[str] = Field(default=None, max_length=100)
    user_id: Optional[str] = Field(default=None, max_length=100)
    user_role: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    risk_level: RiskLevel = RiskLevel.LOW
    request_context: Optional[RequestContext] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("entity_id", "user_id", mode="before")
    @classmethod
    def stringify_ids(cls, value: Any) -> Any:
        # UUIDs and integer keys are both common at call sites
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("timestamp")
    @classmethod
    def timestamp_not_in_future(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value > datetime.now(timezone.utc):
            raise ValueError("timestamp cannot be in the future")
        return value


class EntityCreatedEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.ENTITY_CREATED

    event_type: Literal[AuditEventType.ENTITY_CREATED] = AuditEventType.ENTITY_CREATED
    new_data: Optional[dict[str, Any]] = None
    lgpd_relevant: bool = False


class EntityUpdatedEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.ENTITY_UPDATED

    event_type: Literal[AuditEventType.ENTITY_UPDATED] = AuditEventType.ENTITY_UPDATED
    previous_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None
    changed_fields: list[str] = Field(default_factory=list)
    sensitive_fields_changed: list[str] = Field(default_factory=list)
    lgpd_relevant: bool = False


class EntityDeletedEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.ENTITY_DELETED

    event_type: Literal[AuditEventType.ENTITY_DELETED] = AuditEventType.ENTITY_DELETED
    previous_data: Optional[dict[str, Any]] = None
    lgpd_relevant: bool = False


class EntityAccessedEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.ENTITY_ACCESSED

    event_type: Literal[AuditEventType.ENTITY_ACCESSED] = AuditEventType.ENTITY_ACCESSED
    lgpd_relevant: bool = False


class SensitiveDataEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.SENSITIVE_DATA

    event_type: Literal[
        AuditEventType.SENSITIVE_DATA_ACCESSED,
        AuditEventType.SENSITIVE_DATA_EXPORTED,
    ] = AuditEventType.SENSITIVE_DATA_ACCESSED
    sensitive_fields: list[str] = Field(min_length=1)
    reason: Optional[str] = None


class SecurityEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.SECURITY

    event_type: Literal[
        AuditEventType.SECURITY_PERMISSION_DENIED,
        AuditEventType.SECURITY_SUSPICIOUS_ACTIVITY,
        AuditEventType.SECURITY_ALERT,
    ]
    entity_name: str = Field(default="Sistema", min_length=1, max_length=100)
    description: str = Field(min_length=1)


class SystemEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.SYSTEM

    event_type: Literal[
        AuditEventType.SYSTEM_INFO,
        AuditEventType.SYSTEM_WARNING,
        AuditEventType.SYSTEM_ERROR,
    ]
    entity_name: str = Field(default="Sistema", min_length=1, max_length=100)
    message: str = Field(min_length=1)
    error_details: Optional[str] = None


class AuthEvent(AuditEventBase):
    topic: ClassVar[AuditTopic] = AuditTopic.AUTH

    event_type: Literal[
        AuditEventType.USER_LOGIN,
        AuditEventType.USER_LOGOUT,
        AuditEventType.USER_FAILED_LOGIN,
    ]
    entity_name: str = Field(default="Usuario", min_length=1, max_length=100)
    username: Optional[str] = None
    reason: Optional[str] = None


AuditEvent = Annotated[
    Union[
        EntityCreatedEvent,
        EntityUpdatedEvent,
        EntityDeletedEvent,
        EntityAccessedEvent,
        SensitiveDataEvent,
        SecurityEvent,
        SystemEvent,
        AuthEvent,
    ],
    Field(discriminator="event_type"),
]

audit_event_adapter: TypeAdapter[AuditEvent] = TypeAdapter(AuditEvent)


def parse_audit_event(data: Any) -> AuditEventBase:
    """Validate a mapping (or an existing event) into its event variant.

    Raises:
        pydantic.ValidationError: on a missing or unknown event_type, unknown
            enum values, extra fields or a future timestamp.
    """
    if isinstance(data, AuditEventBase):
        return data
    return audit_event_adapter.validate_python(data)

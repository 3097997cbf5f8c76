"""Audit domain models and enums."""

from trilha.audit.domain.event_types import AuditEventType, AuditTopic
from trilha.audit.domain.operation_types import OperationType
from trilha.audit.domain.risk_level import RiskLevel

__all__ = ["AuditEventType", "AuditTopic", "OperationType", "RiskLevel"]

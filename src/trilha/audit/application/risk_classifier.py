"""Risk scoring for audit events.

Everything in this module is pure: the same inputs always produce the same
risk level, and nothing reads the clock or global state.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Iterable, Optional

from trilha.audit.domain.constants import (
    BUSINESS_HOURS_END,
    BUSINESS_HOURS_START,
    CRITICAL_FIELDS,
    ELEVATED_ROLES,
    SENSITIVE_FIELDS,
)
from trilha.audit.domain.event_types import AuditEventType
from trilha.audit.domain.risk_level import RiskLevel

EVENT_TYPE_POINTS: dict[AuditEventType, int] = {
    AuditEventType.USER_FAILED_LOGIN: 30,
    AuditEventType.SENSITIVE_DATA_ACCESSED: 25,
    AuditEventType.ENTITY_DELETED: 20,
    AuditEventType.ENTITY_UPDATED: 15,
    AuditEventType.ENTITY_CREATED: 10,
    AuditEventType.ENTITY_ACCESSED: 5,
}
DEFAULT_EVENT_POINTS = 5

# Checked in order, first matching group wins
KEYWORD_POINTS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("delete", "remove", "destroy", "purge"), 15),
    (("update", "modify", "change", "edit"), 10),
)

SENSITIVE_ACCESS_POINTS = 20
ELEVATED_ROLE_POINTS = 10
OFF_HOURS_POINTS = 10

# Inclusive lower bounds
CRITICAL_THRESHOLD = 50
HIGH_THRESHOLD = 35
MEDIUM_THRESHOLD = 20


@dataclass(frozen=True)
class RiskFactors:
    occurred_at: datetime
    event_type: Optional[AuditEventType] = None
    operation_name: Optional[str] = None
    sensitive_data_accessed: bool = False
    actor_role: Optional[str] = None


def _keyword_points(operation_name: Optional[str]) -> int:
    if not operation_name:
        return 0
    name = operation_name.lower()
    for keywords, points in KEYWORD_POINTS:
        if any(keyword in name for keyword in keywords):
            return points
    return 0


def is_off_hours(occurred_at: datetime, tz: Optional[tzinfo] = None) -> bool:
    """Whether the timestamp falls before 06:00 or at/after 22:00 local time.

    Naive timestamps are taken as UTC. Without ``tz`` the timestamp's own
    offset is used.
    """
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    local = occurred_at.astimezone(tz) if tz is not None else occurred_at
    return local.hour < BUSINESS_HOURS_START or local.hour >= BUSINESS_HOURS_END


def score_risk(factors: RiskFactors, tz: Optional[tzinfo] = None) -> int:
    score = EVENT_TYPE_POINTS.get(factors.event_type, DEFAULT_EVENT_POINTS)
    score += _keyword_points(factors.operation_name)

    if factors.sensitive_data_accessed:
        score += SENSITIVE_ACCESS_POINTS

    if factors.actor_role and factors.actor_role.lower() in ELEVATED_ROLES:
        score += ELEVATED_ROLE_POINTS

    if is_off_hours(factors.occurred_at, tz):
        score += OFF_HOURS_POINTS

    return score


def risk_level_for_score(score: int) -> RiskLevel:
    if score >= CRITICAL_THRESHOLD:
        return RiskLevel.CRITICAL
    if score >= HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def classify_risk(factors: RiskFactors, tz: Optional[tzinfo] = None) -> RiskLevel:
    return risk_level_for_score(score_risk(factors, tz))


def classify_changed_fields(changed_fields: Iterable[str]) -> RiskLevel:
    """Risk of an update, judged only by which fields changed.

    Any critical field makes it HIGH, otherwise any sensitive field makes it
    MEDIUM. Field names are compared case-insensitively.
    """
    fields = {field.lower() for field in changed_fields}
    if fields & CRITICAL_FIELDS:
        return RiskLevel.HIGH
    if fields & SENSITIVE_FIELDS:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def sensitive_fields_in(fields: Iterable[str]) -> list[str]:
    """Return the fields, in input order, that hold personal data."""
    return [field for field in fields if field.lower() in SENSITIVE_FIELDS]

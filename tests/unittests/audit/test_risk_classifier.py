"""Unit tests for risk scoring."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from trilha.audit.application.risk_classifier import (
    RiskFactors,
    classify_changed_fields,
    classify_risk,
    is_off_hours,
    risk_level_for_score,
    score_risk,
    sensitive_fields_in,
)
from trilha.audit.domain.event_types import AuditEventType
from trilha.audit.domain.risk_level import RiskLevel

NOON_UTC = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
LATE_UTC = datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "score, expected",
    [
        (0, RiskLevel.LOW),
        (19, RiskLevel.LOW),
        (20, RiskLevel.MEDIUM),
        (34, RiskLevel.MEDIUM),
        (35, RiskLevel.HIGH),
        (49, RiskLevel.HIGH),
        (50, RiskLevel.CRITICAL),
        (120, RiskLevel.CRITICAL),
    ],
)
def test_thresholds_are_inclusive_lower_bounds(score, expected):
    assert risk_level_for_score(score) == expected


def test_failed_login_with_sensitive_access_reaches_critical_exactly():
    factors = RiskFactors(
        occurred_at=NOON_UTC,
        event_type=AuditEventType.USER_FAILED_LOGIN,
        sensitive_data_accessed=True,
    )

    assert score_risk(factors) == 50
    assert classify_risk(factors) == RiskLevel.CRITICAL


def test_sensitive_access_off_hours_reaches_high_exactly():
    factors = RiskFactors(occurred_at=LATE_UTC, event_type=AuditEventType.SENSITIVE_DATA_ACCESSED)

    assert score_risk(factors) == 35
    assert classify_risk(factors) == RiskLevel.HIGH


def test_deletion_during_business_hours_is_medium():
    factors = RiskFactors(occurred_at=NOON_UTC, event_type=AuditEventType.ENTITY_DELETED)

    assert score_risk(factors) == 20
    assert classify_risk(factors) == RiskLevel.MEDIUM


def test_unknown_event_type_uses_default_points():
    assert score_risk(RiskFactors(occurred_at=NOON_UTC)) == 5


def test_delete_keywords_win_over_update_keywords():
    factors = RiskFactors(occurred_at=NOON_UTC, operation_name="update_then_delete_beneficio")

    assert score_risk(factors) == 5 + 15


def test_update_keyword_points():
    factors = RiskFactors(occurred_at=NOON_UTC, operation_name="modifyCidadao")

    assert score_risk(factors) == 5 + 10


def test_elevated_role_is_case_insensitive():
    factors = RiskFactors(occurred_at=NOON_UTC, actor_role="Gestor")

    assert score_risk(factors) == 5 + 10


def test_scoring_is_deterministic():
    factors = RiskFactors(
        occurred_at=LATE_UTC,
        event_type=AuditEventType.ENTITY_UPDATED,
        operation_name="removeDocumento",
        sensitive_data_accessed=True,
        actor_role="admin",
    )

    results = {classify_risk(factors) for _ in range(20)}

    assert results == {RiskLevel.CRITICAL}


@pytest.mark.parametrize(
    "hour, expected",
    [(5, True), (6, False), (21, False), (22, True), (0, True)],
)
def test_off_hours_window(hour, expected):
    assert is_off_hours(datetime(2026, 3, 2, hour, 59, tzinfo=timezone.utc)) is expected


def test_off_hours_uses_local_timezone():
    sao_paulo = ZoneInfo("America/Sao_Paulo")
    # 08:00 UTC is 05:00 in Sao Paulo (UTC-3)
    occurred_at = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    assert is_off_hours(occurred_at) is False
    assert is_off_hours(occurred_at, tz=sao_paulo) is True


def test_naive_timestamps_are_treated_as_utc():
    assert is_off_hours(datetime(2026, 3, 2, 23, 0)) is True


@pytest.mark.parametrize(
    "changed_fields, expected",
    [
        (["email"], RiskLevel.HIGH),
        (["nome", "Password"], RiskLevel.HIGH),
        (["cpf"], RiskLevel.MEDIUM),
        (["ENDERECO", "nome"], RiskLevel.MEDIUM),
        (["nome", "data_nascimento"], RiskLevel.LOW),
        ([], RiskLevel.LOW),
    ],
)
def test_classify_changed_fields(changed_fields, expected):
    assert classify_changed_fields(changed_fields) == expected


def test_sensitive_fields_keep_input_order():
    assert sensitive_fields_in(["salario", "nome", "CPF"]) == ["salario", "CPF"]

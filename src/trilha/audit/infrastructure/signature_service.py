"""Tamper-evidence tokens for audit logs.

A token is an HS256 JWT binding the log id to a sha256 digest of a fixed set of
immutable log fields. Verification recomputes the digest from the record as it
is stored now, so any change to one of those fields is detected.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

import jwt
import orjson

from trilha.audit.domain.audit_log import AuditLog
from trilha.audit.domain.signature import (
    SignatureRecord,
    VerificationFailure,
    VerificationResult,
)
from trilha.main.config import Settings, get_settings
from trilha.main.exceptions import ConfigurationError
from trilha.main.logging import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"

# Changing this list invalidates every signature issued so far
SIGNED_FIELDS = (
    "operation_type",
    "affected_entity",
    "affected_entity_id",
    "user_id",
    "endpoint",
    "http_method",
    "source_ip",
    "occurred_at",
)


def _normalize_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def canonical_content(record: AuditLog) -> bytes:
    content = {}
    for name in SIGNED_FIELDS:
        value = getattr(record, name)
        if isinstance(value, datetime):
            value = _normalize_timestamp(value)
        elif isinstance(value, Enum):
            value = value.value
        content[name] = value
    return orjson.dumps(content, option=orjson.OPT_SORT_KEYS)


def content_hash(record: AuditLog) -> str:
    return hashlib.sha256(canonical_content(record)).hexdigest()


class SignatureService:
    def __init__(self, signing_key: str):
        if not signing_key:
            raise ConfigurationError("A signing key is required to sign audit logs")
        self._key = signing_key

    def issue(self, record: AuditLog, issued_at: Optional[datetime] = None) -> SignatureRecord:
        issued_at = issued_at or datetime.now(timezone.utc)
        digest = content_hash(record)
        token = jwt.encode(
            {"sub": str(record.id), "hash": digest, "iat": int(issued_at.timestamp())},
            self._key,
            algorithm=ALGORITHM,
        )
        return SignatureRecord(
            log_id=record.id,
            content_hash=digest,
            issued_at=issued_at,
            token=token,
        )

    def sign(self, record: AuditLog) -> str:
        return self.issue(record).token

    def check(self, record: AuditLog, token: str) -> VerificationResult:
        """Verify a token and explain the outcome."""
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "hash", "iat"], "verify_exp": False},
            )
        except jwt.InvalidTokenError as e:
            return VerificationResult(
                id=record.id,
                intact=False,
                reason=VerificationFailure.INVALID_TOKEN,
                detail=str(e),
            )

        if claims["sub"] != str(record.id):
            return VerificationResult(
                id=record.id, intact=False, reason=VerificationFailure.ID_MISMATCH
            )

        if claims["hash"] != content_hash(record):
            return VerificationResult(
                id=record.id, intact=False, reason=VerificationFailure.HASH_MISMATCH
            )

        return VerificationResult(id=record.id, intact=True)

    def verify(self, record: AuditLog, token: str) -> bool:
        return self.check(record, token).intact

    def verify_batch(
        self, entries: Iterable[tuple[AuditLog, str]]
    ) -> list[VerificationResult]:
        """Verify each (record, token) pair independently of the others."""
        results = []
        for record, token in entries:
            try:
                results.append(self.check(record, token))
            except Exception as e:
                logger.warning(
                    "Could not verify audit log signature",
                    extra={"audit_log_id": str(getattr(record, "id", None)), "error": str(e)},
                )
                results.append(
                    VerificationResult(
                        id=getattr(record, "id", None),
                        intact=False,
                        reason=VerificationFailure.ERROR,
                        detail=str(e),
                    )
                )
        return results


def resolve_signing_key(settings: Settings) -> str:
    if settings.audit_signing_key and settings.audit_signing_key.strip():
        return settings.audit_signing_key

    if settings.jwt_secret and settings.jwt_secret.strip():
        logger.warning(
            "AUDIT_SIGNING_KEY is not set, signing audit logs with JWT_SECRET. "
            "A compromised JWT secret also compromises audit integrity."
        )
        return settings.jwt_secret

    raise ConfigurationError(
        "AUDIT_SIGNING_KEY is required to sign audit logs (no JWT_SECRET fallback available). "
        "Generate one with: python -m trilha.cli.generate_signing_key"
    )


def build_signature_service(settings: Optional[Settings] = None) -> SignatureService:
    return SignatureService(signing_key=resolve_signing_key(settings or get_settings()))

"""Integrity signature domain models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class SignatureRecord:
    """Integrity token issued for one audit log."""

    log_id: UUID
    content_hash: str
    issued_at: datetime
    token: str


class VerificationFailure(str, Enum):
    INVALID_TOKEN = "invalid_token"
    ID_MISMATCH = "id_mismatch"
    HASH_MISMATCH = "hash_mismatch"
    UNSIGNED = "unsigned"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class VerificationResult:
    id: Optional[UUID]
    intact: bool
    reason: Optional[VerificationFailure] = None
    detail: Optional[str] = None

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from trilha.audit.domain.signature import SignatureRecord


class AuditSignatureRepository(ABC):
    @abstractmethod
    async def save_many(self, signatures: list[SignatureRecord]) -> None:
        pass

    @abstractmethod
    async def get(self, log_id: UUID) -> Optional[SignatureRecord]:
        pass

    @abstractmethod
    async def get_many(self, log_ids: list[UUID]) -> dict[UUID, SignatureRecord]:
        pass

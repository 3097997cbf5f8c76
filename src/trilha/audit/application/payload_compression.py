"""Compression of bulky audit payloads before they are persisted.

``previous_data``, ``new_data`` and ``metadata`` are packed together into one
gzip + base64 blob stored in ``metadata`` when their serialized size exceeds
the threshold. Fields covered by the integrity signature are never touched.
"""

import base64
import dataclasses
import gzip
from datetime import datetime, timezone
from typing import Any, Optional

import orjson

from trilha.audit.domain.audit_log import AuditLog, AuditLogDraft

ALGORITHM = "gzip"

COMPRESSED = "_compressed"
COMPRESSED_DATA = "_compressedData"
COMPRESSION_ALGORITHM = "_compressionAlgorithm"
ORIGINAL_SIZE = "_originalSize"
COMPRESSED_SIZE = "_compressedSize"
COMPRESSION_RATIO = "_compressionRatio"
COMPRESSED_AT = "_compressedAt"


def _packed(previous_data: Optional[dict], new_data: Optional[dict], metadata: dict) -> bytes:
    return orjson.dumps(
        {"previous_data": previous_data, "new_data": new_data, "metadata": metadata}
    )


def compress_draft(draft: AuditLogDraft, threshold_bytes: int = 1024) -> AuditLogDraft:
    """Return a copy of the draft with its payload compressed when it is large enough.

    Drafts at or under the threshold are only marked ``_compressed: False``.
    """
    if draft.metadata.get(COMPRESSED):
        return draft

    raw = _packed(draft.previous_data, draft.new_data, draft.metadata)
    if len(raw) <= threshold_bytes:
        return draft.model_copy(update={"metadata": {**draft.metadata, COMPRESSED: False}})

    compressed = gzip.compress(raw)
    metadata: dict[str, Any] = {
        COMPRESSED: True,
        COMPRESSED_DATA: base64.b64encode(compressed).decode("ascii"),
        COMPRESSION_ALGORITHM: ALGORITHM,
        ORIGINAL_SIZE: len(raw),
        COMPRESSED_SIZE: len(compressed),
        COMPRESSION_RATIO: round(len(compressed) / len(raw), 4),
        COMPRESSED_AT: datetime.now(timezone.utc).isoformat(),
    }
    return draft.model_copy(
        update={"previous_data": None, "new_data": None, "metadata": metadata}
    )


def is_compressed(metadata: Optional[dict]) -> bool:
    return bool(metadata and metadata.get(COMPRESSED) is True and COMPRESSED_DATA in metadata)


def decompress_payload(metadata: dict) -> dict[str, Any]:
    """Unpack a compressed payload into previous_data, new_data and metadata."""
    algorithm = metadata.get(COMPRESSION_ALGORITHM, ALGORITHM)
    if algorithm != ALGORITHM:
        raise ValueError(f"Unsupported compression algorithm: {algorithm}")
    raw = gzip.decompress(base64.b64decode(metadata[COMPRESSED_DATA]))
    return orjson.loads(raw)


def expand_log(audit_log: AuditLog) -> AuditLog:
    """Return the log with its compressed payload restored. Uncompressed logs are returned as is."""
    if not is_compressed(audit_log.metadata):
        return audit_log

    payload = decompress_payload(audit_log.metadata)
    return dataclasses.replace(
        audit_log,
        previous_data=payload["previous_data"],
        new_data=payload["new_data"],
        metadata=payload["metadata"],
    )

from datetime import datetime, timezone
from uuid import uuid4

from trilha.audit.application.payload_compression import (
    COMPRESSED,
    COMPRESSION_ALGORITHM,
    ORIGINAL_SIZE,
    compress_draft,
    decompress_payload,
    expand_log,
    is_compressed,
)
from trilha.audit.domain.audit_log import AuditLog, AuditLogDraft
from trilha.audit.domain.operation_types import OperationType


def make_draft(**overrides) -> AuditLogDraft:
    values = {
        "operation_type": "update",
        "affected_entity": "Beneficiario",
        "affected_entity_id": "900",
        "previous_data": {"endereco": "Rua A, 1"},
        "new_data": {"endereco": "Rua B, 2"},
        "metadata": {"source": "import"},
    }
    values.update(overrides)
    return AuditLogDraft(**values)


def test_small_payload_is_left_alone_and_marked():
    draft = make_draft()

    result = compress_draft(draft, threshold_bytes=1024)

    assert result.metadata == {"source": "import", COMPRESSED: False}
    assert result.new_data == draft.new_data
    assert not is_compressed(result.metadata)


def test_large_payload_is_compressed_into_metadata():
    draft = make_draft(new_data={"historico": ["pagamento"] * 500})

    result = compress_draft(draft, threshold_bytes=1024)

    assert is_compressed(result.metadata)
    assert result.metadata[COMPRESSION_ALGORITHM] == "gzip"
    assert result.metadata[ORIGINAL_SIZE] > 1024
    assert result.previous_data is None
    assert result.new_data is None
    # Identity fields are untouched
    assert result.affected_entity == "Beneficiario"
    assert result.affected_entity_id == "900"


def test_compressed_payload_restores_the_original():
    draft = make_draft(new_data={"historico": ["pagamento"] * 500})

    restored = decompress_payload(compress_draft(draft, threshold_bytes=100).metadata)

    assert restored == {
        "previous_data": draft.previous_data,
        "new_data": draft.new_data,
        "metadata": draft.metadata,
    }


def test_compressing_twice_is_a_no_op():
    once = compress_draft(make_draft(new_data={"blob": "y" * 5000}), threshold_bytes=100)

    assert compress_draft(once, threshold_bytes=100) is once


def test_expand_log_restores_stored_payload():
    draft = compress_draft(make_draft(new_data={"blob": "z" * 5000}), threshold_bytes=100)
    stored = AuditLog(
        id=uuid4(),
        operation_type=OperationType.UPDATE,
        affected_entity=draft.affected_entity,
        new_data=draft.new_data,
        previous_data=draft.previous_data,
        metadata=draft.metadata,
        occurred_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
    )

    expanded = expand_log(stored)

    assert expanded.new_data == {"blob": "z" * 5000}
    assert expanded.metadata == {"source": "import"}
    assert expand_log(expanded) is expanded

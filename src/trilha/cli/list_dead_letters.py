"""List audit jobs parked in the dead-letter store.

Parked jobs were not persisted. Each entry keeps the original payload so it
can be inspected and requeued by an operator.

Usage:
    python -m trilha.cli.list_dead_letters [--limit N]
"""

import argparse
import asyncio

from trilha.audit.infrastructure.dead_letter_store import DeadLetterRecord, DeadLetterStore
from trilha.main.logging import get_logger
from trilha.redis.connection import create_redis_client

logger = get_logger(__name__)


def format_record(record: DeadLetterRecord) -> str:
    entities = ", ".join(record.entity_names) or "-"
    retry = "retryable" if record.retryable else "not retryable"
    return (
        f"{record.failed_at.isoformat()}  {record.job_id}  {record.kind.value:<6}  "
        f"{entities}  {record.attempts_made}/{record.max_attempts} ({retry})  "
        f"{record.error_type}: {record.failure_reason}"
    )


async def list_dead_letters(limit: int) -> list[DeadLetterRecord]:
    redis = create_redis_client()
    try:
        store = DeadLetterStore(redis)
        total = await store.count()
        records = await store.list_recent(limit=limit)
    finally:
        await redis.aclose()

    logger.info(f"{total} audit jobs parked, showing {len(records)}")
    return records


def main():
    """Entry point for CLI script."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--limit", type=int, default=50)
    args = parser.parse_args()

    try:
        records = asyncio.run(list_dead_letters(args.limit))
    except KeyboardInterrupt:
        logger.info("Listing interrupted by user")
        return
    except Exception as e:
        logger.error(f"Could not read the dead-letter store: {e}", exc_info=True)
        raise

    for record in records:
        print(format_record(record))


if __name__ == "__main__":
    main()

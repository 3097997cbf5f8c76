"""Check the health of the audit pipeline and print the report as JSON.

Exits with status 1 when any component is critical, so the command can back
a container liveness check.

Usage:
    python -m trilha.cli.check_audit_health
"""

import argparse
import asyncio
import sys

import orjson

from trilha.audit.application.audit_health_service import AuditHealthReport, HealthStatus
from trilha.main.lifespan import lifespan, run_lifespan
from trilha.main.logging import get_logger

logger = get_logger(__name__)


async def check_audit_health() -> AuditHealthReport:
    async with run_lifespan():
        return await lifespan.check_health()


def render_report(report: AuditHealthReport) -> str:
    return orjson.dumps(report.model_dump(mode="json"), option=orjson.OPT_INDENT_2).decode()


def main():
    """Entry point for CLI script."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.parse_args()

    try:
        report = asyncio.run(check_audit_health())
    except KeyboardInterrupt:
        logger.info("Health check interrupted by user")
        return
    except Exception as e:
        logger.error(f"Could not check audit health: {e}", exc_info=True)
        raise

    print(render_report(report))
    if report.status == HealthStatus.CRITICAL:
        sys.exit(1)


if __name__ == "__main__":
    main()

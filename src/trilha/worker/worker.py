from __future__ import annotations

import inspect
from functools import wraps
from typing import Callable

from trilha.audit.application.audit_queue_processor import PARK_RETRIES
from trilha.database.database import sessionmanager
from trilha.main.config import get_settings
from trilha.main.container.container import Container
from trilha.main.exceptions import DuplicateRegistrationError
from trilha.main.lifespan import lifespan
from trilha.main.logging import get_logger
from trilha.main.request_context import bound_request_context
from trilha.redis.connection import build_arq_redis_settings

logger = get_logger(__name__)


class Worker:
    """
    Worker class responsible for registering and executing queue functions.

    Attributes:
        functions (list): List of registered functions.
        cron_jobs (list): List of registered cron jobs.
        redis_settings (RedisSettings): Redis settings for the worker.
        on_startup (callable): Function to call on startup.
        on_shutdown (callable): Function to call on shutdown.
        retry_jobs (bool): Honour arq.Retry raised by functions.
        max_tries (int): Attempt ceiling enforced by arq itself, including the
            extra attempts reserved for parking a failed job.
        job_timeout (int): Timeout for jobs in seconds.
        max_jobs (int): Maximum number of concurrent jobs.

    Function names are unique per worker. Registering a name twice, directly
    or through include_subworker, raises DuplicateRegistrationError, since
    arq would otherwise run one job through two handlers.
    """

    def __init__(self):
        settings = get_settings()
        self.functions = []
        self.cron_jobs = []
        self._registered: set[str] = set()
        self.redis_settings = build_arq_redis_settings(settings)
        self.on_startup = self.startup
        self.on_shutdown = self.shutdown
        self.retry_jobs = True
        self.max_tries = settings.audit_queue_max_attempts + PARK_RETRIES
        self.job_timeout = settings.audit_job_timeout_seconds
        self.max_jobs = settings.worker_max_jobs
        self.expires_extra_ms = 86400000  # 1 day
        self.health_check_interval = 60

    @property
    def registered_names(self) -> frozenset[str]:
        return frozenset(self._registered)

    def _register(self, name: str) -> None:
        if name in self._registered:
            raise DuplicateRegistrationError(name)
        self._registered.add(name)

    def _get_kwargs(self, func: Callable, ctx: dict) -> dict:
        sig = inspect.signature(func)
        parameters = {k for k in sig.parameters if k not in {"job_id", "params", "container"}}
        kwargs = {}

        if "job_try" in parameters:
            kwargs["job_try"] = ctx.get("job_try", 1)

        return kwargs

    async def startup(self, ctx):
        await lifespan.startup()

    async def shutdown(self, ctx):
        await lifespan.shutdown()

    def function(self, name: str | None = None):
        def decorator(func):
            self._register(name or func.__name__)

            @wraps(func)
            async def wrapper(*args):
                ctx, params = args[0], args[1]
                job_id = ctx["job_id"]
                logger.debug(
                    f"Executing {func.__name__}",
                    extra={"job_id": job_id, "job_try": ctx.get("job_try", 1)},
                )

                with bound_request_context(job_id=job_id):
                    async with sessionmanager.session() as session:
                        async with session.begin():
                            container = Container.for_session(session, redis=ctx.get("redis"))
                            result = await func(
                                job_id,
                                params,
                                container=container,
                                **self._get_kwargs(func, ctx),
                            )

                    # Subscribers only hear about records that were committed
                    await container.notification_outbox().flush()
                    return result

            if name is not None:
                wrapper.__name__ = name
            self.functions.append(wrapper)
            return wrapper

        return decorator

    def include_subworker(self, sub_worker: Worker):
        clashes = self._registered & sub_worker._registered
        if clashes:
            raise DuplicateRegistrationError(", ".join(sorted(clashes)))

        self._registered |= sub_worker._registered
        self.functions.extend(sub_worker.functions)
        self.cron_jobs.extend(sub_worker.cron_jobs)

        logger.debug(
            "Including functions from subworker: %s",
            [func.__name__ for func in sub_worker.functions],
        )

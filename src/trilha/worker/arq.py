from trilha.worker.routes import worker as audit_worker
from trilha.worker.worker import Worker

# Assembled once per process; including a worker twice raises
worker = Worker()
worker.include_subworker(audit_worker)


class WorkerSettings:
    functions = worker.functions
    cron_jobs = worker.cron_jobs
    redis_settings = worker.redis_settings
    on_startup = worker.on_startup
    on_shutdown = worker.on_shutdown
    retry_jobs = worker.retry_jobs
    max_tries = worker.max_tries
    job_timeout = worker.job_timeout
    max_jobs = worker.max_jobs
    expires_extra_ms = worker.expires_extra_ms
    health_check_interval = worker.health_check_interval

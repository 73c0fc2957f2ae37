import os
import multiprocessing

from backend.core.config import settings

bind = f"0.0.0.0:{settings.PORT}"
workers = int(os.environ.get('WEB_CONCURRENCY', min(multiprocessing.cpu_count() * 2 + 1, 8)))
worker_class = 'uvicorn.workers.UvicornWorker'

# A caption request may run up to four OpenAI calls plus backoff
timeout = int(settings.OPENAI_TIMEOUT_SECONDS * 4 + settings.RECOVERY_MAX_DELAY_MS / 1000)
graceful_timeout = 60
keepalive = 5

max_requests = 1000
max_requests_jitter = 50

accesslog = '-'
errorlog = '-'
loglevel = settings.LOG_LEVEL.lower()

preload_app = True

def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info(f"Starting {settings.APP_NAME} {settings.VERSION} with {workers} workers (timeout {timeout}s)")

def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    The app is preloaded in the master, so the worker drops the pooled
    connections it inherited and opens its own.
    """
    from backend.db.session import engine
    engine.dispose(close=False)
    server.log.info(f"Worker spawned (pid: {worker.pid})")

def worker_int(worker):
    """Called just after a worker exited on SIGINT or SIGQUIT."""
    from backend.services.caption_service import in_flight_requests
    if len(in_flight_requests):
        worker.log.warning(f"Worker {worker.pid} interrupted with {len(in_flight_requests)} generation(s) in flight")
    else:
        worker.log.info(f"Worker interrupted (pid: {worker.pid})")

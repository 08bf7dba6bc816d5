"""
Production Server Configuration

Run the popularity API with Uvicorn workers under Gunicorn.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", f"{os.getenv('API_HOST', '0.0.0.0')}:{os.getenv('API_PORT', '8000')}")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
keepalive = 5
graceful_timeout = 30

# The rollup trigger runs inside a request; keep above POPULARITY_ROLLUP_TIMEOUT_SECONDS
timeout = int(os.getenv(
    "GUNICORN_TIMEOUT",
    int(float(os.getenv("POPULARITY_ROLLUP_TIMEOUT_SECONDS", 300))) + 30,
))

# Process naming
proc_name = "gear-popularity-api"

# Server mechanics
daemon = False
pidfile = "/tmp/gunicorn.pid"

# Logging
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
# Requests are logged by RequestLoggingMiddleware
accesslog = None


def when_ready(server):
    """Called when server is ready to receive connections."""
    server.log.info("gear-popularity-api ready with %s workers", workers)


def worker_abort(worker):
    """Called when worker receives SIGABRT signal (usually a timeout)."""
    worker.log.warning("Worker %s aborted; a rollup may have exceeded its budget", worker.pid)

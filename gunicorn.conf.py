"""
Gunicorn configuration for the analytics API.

Env vars that override defaults:
  PORT     — TCP port to bind
  WORKERS  — number of worker processes (default: 2)
  TIMEOUT  — worker timeout in seconds (default: 120)

Backfill runs as an in-process background task after the 202 response, so
the worker timeout and graceful shutdown window bound how long a run can be
interrupted by a restart.
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

workers = int(os.environ.get("WORKERS", "2"))

# Each worker runs Uvicorn's ASGI event loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

timeout = int(os.environ.get("TIMEOUT", "120"))

# Application logs are structlog JSON on stdout; gunicorn's own go to stdout too.
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30

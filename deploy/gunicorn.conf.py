"""Gunicorn configuration for the stream completion probe server.

Usage:
    gunicorn main:app -c deploy/gunicorn.conf.py

Every worker owns its own session router; a connection is served start to
finish by the worker that accepted it, so workers share nothing.
"""

import multiprocessing
import os

# ─── Server socket ──────────────────────────────────────────────

bind = os.getenv("BIND", f"0.0.0.0:{os.getenv('SERVICE_PORT', '3031')}")
backlog = 2048

# ─── Worker processes ───────────────────────────────────────────

workers = int(os.getenv("WORKERS", min(multiprocessing.cpu_count(), 4)))
worker_class = "uvicorn.workers.UvicornWorker"

# ─── Timeouts ───────────────────────────────────────────────────
#
# A tool call may take up to TOOL_TIMEOUT_S (60s by default) and a
# streamed message stays open for the whole turn.

timeout = 180
graceful_timeout = 60
keepalive = 120

# ─── Worker recycling ──────────────────────────────────────────

max_requests = 3000
max_requests_jitter = 500

# ─── Logging ────────────────────────────────────────────────────

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
access_log_format = (
    '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" %(D)sμs'
)

# ─── Process naming ─────────────────────────────────────────────

proc_name = "stream-completion-probe"

# ─── Server hooks ───────────────────────────────────────────────


def on_starting(server):
    server.log.info(
        "Starting stream completion probe — workers=%d, timeout=%ds, bind=%s",
        workers,
        timeout,
        bind,
    )


def post_fork(server, worker):
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def worker_exit(server, worker):
    server.log.info("Worker exit (pid: %s)", worker.pid)

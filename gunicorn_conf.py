"""
Gunicorn Configuration for the Jastip backend
Uvicorn worker serving api_server:app

    gunicorn -c gunicorn_conf.py api_server:app
"""
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '3000')}"
backlog = 2048

# Exactly one worker: the reconciliation scheduler runs inside the worker,
# and a second worker would run every job twice
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 120
keepalive = 30

# Logging
accesslog = "-"  # Log to stdout
errorlog = "-"   # Log to stderr
loglevel = os.getenv("LOG_LEVEL", "info").lower()

# Process naming
proc_name = "jastip_backend"

daemon = False
preload_app = False


def when_ready(server):
    """Called just after the server is started."""
    print(f"✅ Gunicorn ready with {workers} uvicorn worker on {bind}")


def worker_exit(server, worker):
    """Called just after a worker has been exited."""
    print(f"👋 Worker {worker.pid} exited")

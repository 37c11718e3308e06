"""
Gunicorn configuration.

gunicorn -c gunicorn.conf.py run:app
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Sync workers: every request is one short unit of work against the database
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = int(os.getenv('GUNICORN_TIMEOUT', '30'))
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'rewards-engine'

# Workers must not share DB connections opened before fork
preload_app = False

graceful_timeout = 30


def on_starting(server):
    server.log.info("Starting rewards engine")


def on_exit(server):
    server.log.info("Rewards engine shutting down")

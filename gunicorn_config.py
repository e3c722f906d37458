"""
Gunicorn Configuration File
Production WSGI server configuration for the Campus Timetable service

Run with: gunicorn -c gunicorn_config.py
"""
import multiprocessing
import os

wsgi_app = 'app:application'

bind = os.getenv('GUNICORN_BIND', '0.0.0.0:5000')

# Workers share nothing but the uploads folder
workers = int(os.getenv('GUNICORN_WORKERS', (multiprocessing.cpu_count() * 2) + 1))
worker_class = os.getenv('GUNICORN_WORKER_CLASS', 'gthread')
threads = int(os.getenv('GUNICORN_THREADS', 4))

# Large workbook parses block the worker for the whole request
timeout = int(os.getenv('GUNICORN_TIMEOUT', 120))
max_requests = int(os.getenv('GUNICORN_MAX_REQUESTS', 1000))
max_requests_jitter = 50

proc_name = 'campus_timetable'

accesslog = os.getenv('GUNICORN_ACCESS_LOG', '-')
errorlog = os.getenv('GUNICORN_ERROR_LOG', '-')
loglevel = os.getenv('GUNICORN_LOG_LEVEL', 'info')

# Multipart uploads up to MAX_FILE_SIZE are spooled here; None uses the system temp dir
tmp_upload_dir = os.getenv('GUNICORN_TMP_UPLOAD_DIR') or None


def when_ready(server):
    server.log.info(f"Campus Timetable ready on {bind} ({workers} workers x {threads} threads)")


def worker_abort(worker):
    """A worker timed out, usually while parsing an oversized workbook."""
    worker.log.warning(f"Worker {worker.pid} aborted after {timeout}s")

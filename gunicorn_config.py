"""
Gunicorn config: bind to 0.0.0.0 and PORT for Railway/Render.
Threads share one Daraja token cache per worker.
"""
import os

bind = "0.0.0.0:{}".format(os.environ.get("PORT", "8080"))
workers = int(os.environ.get("WEB_CONCURRENCY", "1"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
# Daraja calls use a 30s timeout; leave room for token + push in one request
timeout = 90
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"

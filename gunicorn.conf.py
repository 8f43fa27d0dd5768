"""Gunicorn configuration for the point-of-sale back office."""
import os

# Network binding configuration. Defaults are suitable for containerized deployments.
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:5000")

# Every worker opens its own transactions; the database is the only throttle.
workers = int(os.getenv("GUNICORN_WORKERS", "2"))

# Log to stdout/stderr by default so container orchestrators can capture logs.
accesslog = os.getenv("GUNICORN_ACCESS_LOGFILE", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOGFILE", "-")

forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "*")

"""
Configuration

All settings come from environment variables with development defaults.
Components receive tunables through their constructors; these constants are
only the values the HTTP app wires in.
"""

import os

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./fulfillment.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
EMAIL_SERVICE_URL = os.environ.get("EMAIL_SERVICE_URL", "http://localhost:8025")

RESERVATION_EXPIRATION_MINUTES = int(os.environ.get("RESERVATION_EXPIRATION_MINUTES", "30"))
STORE_CURRENCY = os.environ.get("STORE_CURRENCY", "USD")
JOB_POLL_INTERVAL_SECONDS = float(os.environ.get("JOB_POLL_INTERVAL_SECONDS", "1.0"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

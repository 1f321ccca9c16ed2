"""
Centralized configuration — env vars, runner defaults, Run status values.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis / RQ ───────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
QUEUE_NAME = os.getenv('QUEUE_NAME', 'maintenance_tasks')
JOB_TIMEOUT_SECONDS = int(os.getenv('JOB_TIMEOUT_SECONDS', '3600'))

# ── Database ─────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Runner defaults ──────────────────────────────────────────────────────────
BATCH_SIZE = int(os.getenv('BATCH_SIZE', '100'))
MAX_ITEMS_PER_JOB = int(os.getenv('MAX_ITEMS_PER_JOB', '0'))  # 0 = unlimited
MAX_JOB_SECONDS = float(os.getenv('MAX_JOB_SECONDS', '300'))
TICKER_INTERVAL_SECONDS = float(os.getenv('TICKER_INTERVAL_SECONDS', '1.0'))
STUCK_RUN_TIMEOUT_SECONDS = int(os.getenv('STUCK_RUN_TIMEOUT_SECONDS', '300'))

# ── Task discovery ───────────────────────────────────────────────────────────
# Comma-separated modules imported at startup so their @register calls run
TASK_MODULES = [m.strip() for m in os.getenv('TASK_MODULES', '').split(',') if m.strip()]

# ── Run status values ────────────────────────────────────────────────────────
RUN_STATUSES = [
    'enqueued',
    'running',
    'pausing',
    'paused',
    'interrupted',
    'cancelling',
    'cancelled',
    'succeeded',
    'errored',
]

ACTIVE_STATUSES = [
    'enqueued',
    'running',
    'pausing',
    'paused',
    'interrupted',
    'cancelling',
]

COMPLETED_STATUSES = [
    'succeeded',
    'cancelled',
    'errored',
]

# Statuses a worker invocation may pick up and drive forward
RESUMABLE_STATUSES = [
    'enqueued',
    'running',
    'interrupted',
]

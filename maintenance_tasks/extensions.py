"""
Shared client instances — Redis connection and the RQ queue.

The queue is built lazily on first access so importing this module never
touches Redis (tests and the CLI `list` command run without it).
"""
import logging

import redis

from maintenance_tasks.config import REDIS_URL, QUEUE_NAME

logger = logging.getLogger('maintenance_tasks.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
# from_url() does not connect until the first command is issued
redis_client = redis.from_url(REDIS_URL)

# ── RQ ────────────────────────────────────────────────────────────────────────
_queue = None


def get_queue():
    """Return the shared RQ queue, creating it on first use."""
    global _queue
    if _queue is None:
        from rq import Queue
        _queue = Queue(QUEUE_NAME, connection=redis_client)
        logger.info("RQ queue '%s' initialized", QUEUE_NAME)
    return _queue

import logging

import dramatiq
from django.db import InterfaceError, OperationalError
from requests.exceptions import ConnectionError, Timeout

from .services import store

logger = logging.getLogger(__name__)

PACKING_WEBHOOK_QUEUE = "packing_webhooks"


def should_retry(retries_so_far, exception):
    """Return True for transient errors, False for permanent ones.

    Transient (retry): dropped database connections, lock timeouts,
    ConnectionError, Timeout.
    Permanent (fail):  integrity errors, ValueError, KeyError, etc.
    """
    if isinstance(exception, (OperationalError, InterfaceError)):
        return True
    if isinstance(exception, (ConnectionError, Timeout, OSError)):
        return True
    return False


@dramatiq.actor(
    queue_name=PACKING_WEBHOOK_QUEUE,
    max_retries=5,
    min_backoff=30_000,
    max_backoff=600_000,
    retry_when=should_retry,
)
def purge_old_webhooks(older_than_days=None):
    """Delete sales-order deliveries past the retention window."""
    deleted = store.delete_old_webhooks(older_than_days)
    logger.info("Purged %d old webhook orders", deleted)
    return deleted


@dramatiq.actor(
    queue_name=PACKING_WEBHOOK_QUEUE,
    max_retries=5,
    min_backoff=30_000,
    max_backoff=600_000,
    retry_when=should_retry,
)
def purge_stale_assortments(older_than_days=None):
    """Delete rarely read standalone assortments past the retention window."""
    deleted = store.cleanup_stale_assortments(older_than_days)
    logger.info("Purged %d stale individual assortments", deleted)
    return deleted

import logging

from django.core.cache import cache
from django.db import transaction

from common.utils import to_json_compatible
from core.models import ActivityLog

logger = logging.getLogger("audit")

AUDIT_FAILURE_CACHE_KEY = "audit.failures"


def _count_failure():
    try:
        cache.incr(AUDIT_FAILURE_CACHE_KEY)
    except ValueError:
        cache.set(AUDIT_FAILURE_CACHE_KEY, 1, timeout=None)


def audit_failure_count():
    return cache.get(AUDIT_FAILURE_CACHE_KEY, 0)


def _resolve_actor(actor):
    if actor is None or not getattr(actor, "is_authenticated", False):
        return None
    return actor


def record_activity(*, actor=None, action, description, metadata=None):
    """Append one activity log entry.

    The write runs in its own savepoint so a failure here never poisons the
    caller's transaction. Errors are logged and counted, never raised.
    """
    try:
        with transaction.atomic():
            return ActivityLog.objects.create(
                actor=_resolve_actor(actor),
                action=action,
                description=description,
                metadata=to_json_compatible(metadata) if metadata is not None else None,
            )
    except Exception:
        _count_failure()
        logger.exception(
            "activity_log_write_failed",
            extra={"action": action, "user_id": str(getattr(actor, "id", "")) or None},
        )
        return None


def record_activity_from_request(request, *, action, description, metadata=None):
    return record_activity(
        actor=getattr(request, "user", None),
        action=action,
        description=description,
        metadata=metadata,
    )

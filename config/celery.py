"""
Celery configuration for Inspecta.
"""
import os
from celery import Celery
from celery.signals import task_failure, task_retry
import logging

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('inspecta')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, traceback=None, einfo=None, **extra):
    """Log task failure and send to Sentry."""
    logger.error(
        f"Task failed: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'exception': str(exception)[:500] if exception else None,
        },
        exc_info=einfo
    )

    try:
        from apps.core.sentry_utils import capture_exception
        capture_exception(
            exception,
            task={
                'task_id': task_id,
                'task_name': sender.name,
            }
        )
    except Exception as e:
        # Don't fail if Sentry capture fails
        logger.warning(f"Failed to send task failure to Sentry: {e}")


@task_retry.connect
def task_retry_handler(sender=None, task_id=None, reason=None, einfo=None, **extra):
    """Log task retry."""
    logger.warning(
        f"Task retry: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'reason': str(reason)[:200] if reason else None,
            'retry_count': getattr(sender.request, 'retries', 0),
        }
    )


# Celery Beat Schedule for Periodic Tasks
app.conf.beat_schedule = {
    # Reconcile the protected identity against its expected configuration
    'verify-protected-identity': {
        'task': 'apps.security.tasks.verify_protected_identity',
        'schedule': float(os.environ.get('INTEGRITY_CHECK_INTERVAL_SECONDS', 900)),
    },
}

app.conf.timezone = 'UTC'

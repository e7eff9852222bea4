"""
Base Celery task class with enhanced logging and error handling.
"""
import logging
from celery import Task
from apps.core.logging import PIIMasker
from apps.core.sentry_utils import add_breadcrumb, capture_exception, start_transaction

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class with enhanced logging and Sentry integration.

    This task class automatically:
    - Logs task start and completion
    - Logs task failures with error details and sends them to Sentry
    - Logs retry attempts with reason
    - Creates Sentry transactions for performance monitoring

    Task arguments are masked before logging; audit payloads carry request
    bodies that may hold emails or credentials.
    """

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        transaction = start_transaction(
            name=f"task.{task_name}",
            op="celery.task"
        )

        try:
            logger.info(
                f"Task started: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'task_args': self._sanitize_args(args),
                    'task_kwargs': PIIMasker.mask_dict(kwargs),
                }
            )
            add_breadcrumb(
                category="task",
                message=f"Task started: {task_name}",
                data={'task_id': task_id, 'task_name': task_name}
            )

            result = super().__call__(*args, **kwargs)

            logger.info(
                f"Task completed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'result': self._sanitize_result(result),
                }
            )

            if transaction:
                transaction.set_status("ok")
                transaction.finish()

            return result

        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                },
                exc_info=True
            )
            add_breadcrumb(
                category="task",
                message=f"Task failed: {task_name}",
                level="error",
                data={'task_id': task_id, 'task_name': task_name, 'exception': str(exc)}
            )
            capture_exception(
                exc,
                task={'task_id': task_id, 'task_name': task_name}
            )

            if transaction:
                transaction.set_status("internal_error")
                transaction.finish()

            raise

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        """
        Log task retry attempts.
        """
        retry_count = self.request.retries
        max_retries = self.max_retries

        logger.warning(
            f"Task retry: {self.name} (attempt {retry_count}/{max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'retry_count': retry_count,
                'max_retries': max_retries,
                'exception': str(exc),
            }
        )
        add_breadcrumb(
            category="task",
            message=f"Task retry: {self.name}",
            level="warning",
            data={'task_id': task_id, 'retry_count': retry_count, 'exception': str(exc)}
        )

        super().on_retry(exc, task_id, args, kwargs, einfo)

    def _sanitize_args(self, args):
        if not args:
            return []

        sanitized = [PIIMasker.mask_value(arg) for arg in args[:10]]
        if len(args) > 10:
            sanitized.append('... (truncated)')
        return sanitized

    def _sanitize_result(self, result):
        if result is None:
            return None

        result_str = str(result)
        if len(result_str) > 200:
            return result_str[:200] + '... (truncated)'
        return result_str

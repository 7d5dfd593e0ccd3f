import logging

from celery import current_task


class CeleryTaskIDFilter(logging.Filter):
    """
    Tags each record with the id and name of the Celery task emitting it, so
    crawl log lines can be traced back to a worker invocation
    """

    def filter(self, record):
        request = getattr(current_task, "request", None)
        task_id = getattr(request, "id", None)
        if task_id:
            record.task_id = f"/[{task_id}]"
            record.task_name = current_task.name
        else:
            record.task_id = ""
            record.task_name = ""
        # Filters only decorate here, never drop records
        return True

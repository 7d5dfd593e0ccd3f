from celery import Task

from civicache.celery import app as civicache_celery_app


def get_registered_task(name: str) -> Task:
    """
    Look up a Celery task in the app registry by its dotted name.

    The pipeline and the orchestrator enqueue tasks defined in
    `crawler.tasks`, which imports both of them, so they resolve the task at
    call time instead of importing it. The task returned still respects
    `CELERY_TASK_ALWAYS_EAGER`, which `app.send_task` would not.

    Raises RuntimeError for a name nothing has registered.
    """
    task = civicache_celery_app.tasks.get(name)
    if task is None:
        raise RuntimeError(f"No Celery task is registered as {name!r}")
    return task

from celery import shared_task

from stacks.celery.task import Task
from stacks.circulation.data import OverdueSweepResult
from stacks.circulation.exceptions import StoreUnavailable
from stacks.circulation.sweeps import run_overdue_sweep, run_reminder_sweep
from stacks.service.celery.celery import QueueNames


@shared_task(
    queue=QueueNames.default,
    bind=True,
    autoretry_for=(StoreUnavailable,),
    max_retries=4,
    retry_backoff=30,
)
def overdue_sweep(task: Task) -> OverdueSweepResult:
    """
    Mark loans that are past their grace period as overdue and charge their overdue fines.

    Scheduled daily by Celery beat. Safe to run again at any time.
    """
    settings = task.services.circulation.settings()
    dispatcher = task.services.notification.dispatcher()
    with task.transaction() as session:
        result = run_overdue_sweep(session, settings, dispatcher)
    task.log.info(
        f"Overdue sweep finished: {result.loans_marked_overdue} marked overdue, "
        f"{result.fines_created} fines created, {result.failures} failures."
    )
    return result


@shared_task(
    queue=QueueNames.default,
    bind=True,
    autoretry_for=(StoreUnavailable,),
    max_retries=4,
    retry_backoff=30,
)
def reminder_sweep(task: Task) -> int:
    """
    Send due-date reminders for loans coming due soon. At most one reminder per loan
    per day, so this is safe to run again at any time.
    """
    settings = task.services.circulation.settings()
    dispatcher = task.services.notification.dispatcher()
    with task.transaction() as session:
        return run_reminder_sweep(session, settings, dispatcher)

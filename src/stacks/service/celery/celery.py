from enum import StrEnum, auto
from typing import Any

from celery.schedules import crontab
from kombu import Exchange, Queue

from stacks.celery.celery import Celery


class QueueNames(StrEnum):
    default = auto()
    """Scheduled circulation work: the daily overdue and reminder sweeps."""


def beat_schedule() -> dict[str, Any]:
    """When Celery beat runs each periodic task. Times are in the
    `timezone` Celery is configured with.
    """
    from stacks.celery.tasks import circulation

    return {
        "due_date_reminders": {
            "task": circulation.reminder_sweep.name,
            "schedule": crontab(minute="0", hour="8"),
        },
        "overdue_fines": {
            "task": circulation.overdue_sweep.name,
            "schedule": crontab(minute="0", hour="9"),
        },
    }


def task_queue_config() -> dict[str, Any]:
    return {
        "task_queues": [
            Queue(queue, Exchange(queue), routing_key=queue) for queue in QueueNames
        ],
        "task_default_queue": QueueNames.default,
        "task_default_exchange": QueueNames.default,
        "task_default_routing_key": QueueNames.default,
    }


def celery_factory(config: dict[str, Any]) -> Celery:
    """Build the Celery app and make it the default, so the tasks declared
    with `shared_task` bind to it.
    """
    app = Celery(task_cls="stacks.celery.task:Task")
    app.conf.update(config)
    app.conf.update(task_queue_config())
    app.conf.update(beat_schedule=beat_schedule())
    app.set_default()
    return app

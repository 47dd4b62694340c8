from __future__ import annotations

import celery
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from stacks.celery.session import SessionMixin
from stacks.service.container import Services, container_instance
from stacks.sqlalchemy.session import SessionManager
from stacks.util.log import LoggerMixin


class Task(celery.Task, LoggerMixin, SessionMixin):
    """Base class for every circulation task.

    Tasks declared with `@shared_task(bind=True)` get this as their first
    argument, which gives them the services container and a database
    transaction:

        @shared_task(bind=True)
        def overdue_sweep(task: Task) -> OverdueSweepResult:
            with task.transaction() as session:
                ...
    """

    _session_maker: sessionmaker[Session] | None = None

    @property
    def session_maker(self) -> sessionmaker[Session]:
        # One per worker process. The sweeps run once a day, so no
        # connections are pooled between runs.
        if self._session_maker is None:
            engine = SessionManager.engine(
                poolclass=NullPool, application_name=self.name
            )
            self._session_maker = sessionmaker(bind=engine)
        return self._session_maker

    @property
    def services(self) -> Services:
        return container_instance()

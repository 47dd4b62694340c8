from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker


class SessionMixin(ABC):
    @property
    @abstractmethod
    def session_maker(self) -> sessionmaker[Session]: ...

    @contextmanager
    def transaction(self) -> Generator[Session]:
        """A session whose work is committed when the block exits cleanly.

        The sweeps make all of their changes through this, so a task that
        raises (and is retried) leaves nothing half done behind it.
        """
        with self.session_maker.begin() as session:
            yield session

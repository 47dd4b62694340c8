from typing import Any


def _restore_exception[E: BaseException](
    cls: type[E], args: tuple[Any, ...], state: dict[str, Any]
) -> E:
    exception = cls.__new__(cls)
    exception.args = args
    exception.__dict__.update(state)
    return exception


class BaseStacksException(Exception):
    """Root of every exception raised by the circulation engine.

    :param message: Safe to show to patrons.
    :param debug_message: Extra detail for staff and logs only.
    """

    def __init__(
        self, message: str | None = None, debug_message: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.debug_message = debug_message

    def __reduce__(self) -> tuple[Any, ...]:
        # Subclasses take different constructor arguments, so rebuild from
        # state rather than from args. Celery pickles these across workers.
        return _restore_exception, (type(self), self.args, dict(self.__dict__))

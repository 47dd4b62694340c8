"""Errors raised by circulation operations.

Every error maps to a problem detail document through its `base`, so the
layer above can turn any of them into an HTTP response without knowing
the specific class. Catch the family (`NotFound`, `Conflict`,
`InvalidInput`, `LimitExceeded`, `Forbidden`) unless the specific case
matters.
"""

from typing import ClassVar

from stacks.circulation import problem_details as pd
from stacks.util.problem_detail import BaseProblemDetailException, ProblemDetail


class CirculationException(BaseProblemDetailException):
    base: ClassVar[ProblemDetail]
    retryable: ClassVar[bool] = False

    def __init__(
        self, message: str | None = None, debug_info: str | None = None
    ) -> None:
        super().__init__(message, debug_info)
        # Keep a readable str() even when there is nothing to tell the patron.
        if message is None:
            self.args = (type(self).__name__,)

    @property
    def problem_detail(self) -> ProblemDetail:
        if self.message is not None:
            return self.base.detailed(self.message, debug_message=self.debug_message)
        if self.debug_message is not None:
            return self.base.with_debug(self.debug_message)
        return self.base


class NotFound(CirculationException):
    """A record the operation needs does not exist."""

    base = pd.NOT_FOUND


class ItemNotFound(NotFound): ...


class PatronNotFound(NotFound): ...


class LoanNotFound(NotFound): ...


class QueueNotFound(NotFound): ...


class HoldRequestNotFound(NotFound): ...


class RenewalNotFound(NotFound): ...


class FineNotFound(NotFound): ...


class NoActiveLoan(NotFound):
    base = pd.NO_ACTIVE_LOAN


class NotQueued(NotFound):
    """The patron has no open hold on the item."""

    base = pd.NOT_QUEUED


class Conflict(CirculationException):
    """The operation is not allowed in the current state of the records."""

    base = pd.CONFLICT


class NoAvailableCopies(Conflict):
    base = pd.NO_AVAILABLE_COPIES


class AlreadyQueued(Conflict):
    base = pd.ALREADY_QUEUED


class AlreadyCheckedOut(Conflict):
    base = pd.ALREADY_CHECKED_OUT


class PatronInactive(Conflict):
    base = pd.PATRON_INACTIVE


class RenewalAlreadyPending(Conflict):
    base = pd.RENEWAL_ALREADY_PENDING


class RequestAlreadyProcessed(Conflict):
    base = pd.REQUEST_ALREADY_PROCESSED


class InvalidStateTransition(Conflict):
    base = pd.INVALID_STATE_TRANSITION


class CannotRenew(Conflict):
    base = pd.CANNOT_RENEW


class FineAlreadySettled(Conflict):
    base = pd.FINE_ALREADY_SETTLED


class InvalidInput(CirculationException):
    """The caller supplied a value the operation can't accept."""

    base = pd.INVALID_INPUT


class InvalidDueDate(InvalidInput):
    base = pd.INVALID_DUE_DATE


class CannotExtend(InvalidInput):
    base = pd.CANNOT_EXTEND


class InvalidPaymentAmount(InvalidInput):
    base = pd.INVALID_PAYMENT_AMOUNT


class LimitExceeded(CirculationException):
    """A library policy cap has been reached."""

    base = pd.LIMIT_EXCEEDED


class ExtensionLimitReached(LimitExceeded):
    base = pd.EXTENSION_LIMIT_REACHED


class RenewalLimitReached(LimitExceeded):
    base = pd.RENEWAL_LIMIT_REACHED


class Forbidden(CirculationException):
    base = pd.FORBIDDEN


class NotAQueueMember(Forbidden):
    base = pd.NOT_A_QUEUE_MEMBER


class StoreUnavailable(CirculationException):
    """The database could not be reached. The operation can be retried."""

    base = pd.STORE_UNAVAILABLE
    retryable = True

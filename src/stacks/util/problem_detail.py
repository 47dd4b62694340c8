"""Problem detail documents (RFC 7807), the form in which circulation
errors are reported to API clients.
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod

from pydantic import BaseModel

from stacks.core.exceptions import BaseStacksException

JSON_MEDIA_TYPE = "application/api-problem+json"


class ProblemDetailModel(BaseModel):
    type: str | None = None
    status: int | None = None
    title: str | None = None
    detail: str | None = None
    debug_message: str | None = None


@dataclasses.dataclass(frozen=True)
class ProblemDetail:
    """One kind of problem, identified by `uri`.

    Module level constants describe the general case. `detailed` and
    `with_debug` make copies that describe one occurrence.
    """

    JSON_MEDIA_TYPE = JSON_MEDIA_TYPE

    uri: str
    status_code: int | None = None
    title: str | None = None
    detail: str | None = None
    debug_message: str | None = None

    @property
    def response(self) -> tuple[str, int, dict[str, str]]:
        """(body, status, headers), ready to hand to a web framework."""
        body = self.to_model().model_dump_json(exclude_none=True)
        return body, self.status_code or 400, {"Content-Type": JSON_MEDIA_TYPE}

    def to_model(self) -> ProblemDetailModel:
        return ProblemDetailModel(
            type=self.uri,
            status=self.status_code,
            title=self.title,
            detail=self.detail,
            debug_message=self.debug_message,
        )

    def detailed(
        self, detail: str, debug_message: str | None = None
    ) -> ProblemDetail:
        """The same problem, with a patron-facing explanation of this case."""
        return dataclasses.replace(self, detail=detail, debug_message=debug_message)

    def with_debug(self, debug_message: str) -> ProblemDetail:
        """The same problem, with an explanation for staff only."""
        return dataclasses.replace(self, debug_message=debug_message)


class BaseProblemDetailException(BaseStacksException, ABC):
    @property
    @abstractmethod
    def problem_detail(self) -> ProblemDetail: ...

"""Exceptions raised while executing flow steps."""

from __future__ import annotations


class StepError(Exception):
    """A step did not complete successfully.

    The message is what ends up in the step result's ``error`` field.
    ``http_status`` and ``response_body`` carry whatever the step observed
    before failing.
    """

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


class StepAssertionError(StepError):
    """A status, schema, text, URL or expression check failed."""


class ExpressionError(StepError):
    """An assertion expression could not be parsed or evaluated."""


class FlowInFlightError(Exception):
    """A run was requested for a flow that is already executing."""

    def __init__(self, flow_id: str) -> None:
        super().__init__(f"flow {flow_id} is already running")
        self.flow_id = flow_id

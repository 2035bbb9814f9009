"""Exception hierarchy for the definitions source and result sink boundary."""

from __future__ import annotations


class FlowError(Exception):
    """Base exception for flow definition / submission errors."""


class DefinitionError(FlowError):
    """A flow or step definition failed validation."""


class DefinitionsUnavailableError(FlowError):
    """The definitions source could not be reached or returned garbage."""


class FlowNotFoundError(FlowError):
    """The requested flow id does not exist."""


class ResultSinkError(FlowError):
    """A completed run could not be submitted."""

"""Boundary with the persistence collaborator: flow definitions in, run results out."""

from flowwatch.flows.exceptions import (
    DefinitionError,
    DefinitionsUnavailableError,
    FlowError,
    FlowNotFoundError,
    ResultSinkError,
)
from flowwatch.flows.sink import HttpResultSink, LoggingResultSink, ResultSink, run_payload
from flowwatch.flows.source import (
    DefinitionsSource,
    FileDefinitionsSource,
    HttpDefinitionsSource,
    build_flow,
)

__all__ = [
    "DefinitionError",
    "DefinitionsSource",
    "DefinitionsUnavailableError",
    "FileDefinitionsSource",
    "FlowError",
    "FlowNotFoundError",
    "HttpDefinitionsSource",
    "HttpResultSink",
    "LoggingResultSink",
    "ResultSink",
    "ResultSinkError",
    "build_flow",
    "run_payload",
]

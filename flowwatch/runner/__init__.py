"""Flow execution: step runners, executor, scheduler and manual trigger."""

from flowwatch.runner.api import ApiStepRunner
from flowwatch.runner.base import BaseStepRunner, StepOutcome
from flowwatch.runner.browser import BrowserDriver, BrowserStepRunner, PlaywrightDriver
from flowwatch.runner.exceptions import (
    ExpressionError,
    FlowInFlightError,
    StepAssertionError,
    StepError,
)
from flowwatch.runner.executor import FlowExecutor
from flowwatch.runner.scheduler import Scheduler

__all__ = [
    "ApiStepRunner",
    "BaseStepRunner",
    "BrowserDriver",
    "BrowserStepRunner",
    "ExpressionError",
    "FlowExecutor",
    "FlowInFlightError",
    "PlaywrightDriver",
    "Scheduler",
    "StepAssertionError",
    "StepError",
    "StepOutcome",
]

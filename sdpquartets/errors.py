#!/usr/bin/env python
"""
Errors Module - Exception types raised by the SDP quartets pipeline

All errors are fatal to the run that raised them. The pipeline and the
orchestrator fill in ``stage`` and ``task`` so the message tells which
quartet, replicate or stage failed.
"""


class SDPQuartetsError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message, stage=None, task=None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.task = task

    def __str__(self):
        context = []
        if self.stage:
            context.append(f"stage={self.stage}")
        if self.task is not None:
            context.append(f"task={self.task}")
        if context:
            return f"{self.message} [{', '.join(context)}]"
        return self.message


class InsufficientTaxaError(SDPQuartetsError):
    """Fewer than four taxa are available for quartet enumeration."""


class OracleInvocationError(SDPQuartetsError):
    """The PAUP* executable could not be run or its output could not be read."""


class UnexpectedOptimaCountError(SDPQuartetsError):
    """The oracle returned a number of optimal trees the caller cannot use."""


class MalformedMatrixError(SDPQuartetsError):
    """A character matrix is inconsistent or cannot be parsed."""


class ConfigurationError(SDPQuartetsError):
    """A required setting is missing or a setting has an invalid value."""

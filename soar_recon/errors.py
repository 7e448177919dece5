"""
errors.py
---------

Exception hierarchy for the reconnaissance pipeline.

Fatal errors (``PipelineError`` and its subclasses) abort the orchestrator and
reach the caller annotated with the phase that failed.  Probe and check
errors are non-fatal: they are caught where they happen and only show up as
missing records or findings.
"""

from __future__ import annotations

from typing import Any, Optional


class ReconError(Exception):
    """Base class for every error raised by ``soar_recon``."""


class ResolutionError(ReconError):
    """The target could not be resolved to an address."""

    def __init__(self, target: str, reason: str = "") -> None:
        self.target = target
        message = f"Could not resolve target: {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ProbeError(ReconError):
    """A single socket, banner, TLS or HTTP operation failed."""


class ProtocolCheckError(ReconError):
    """An exception escaped from one protocol check."""

    def __init__(self, check: str, port: int, cause: BaseException) -> None:
        self.check = check
        self.port = port
        self.cause = cause
        super().__init__(f"{check} failed on port {port}: {cause}")


class ReportGenerationError(ReconError):
    """The optional report-writing phase failed."""


class PhaseTransitionError(ReconError):
    """A phase record was asked to make an illegal state transition."""


class OrchestratorStateError(ReconError):
    """The orchestrator was used out of order (e.g. executed twice)."""


class PipelineError(ReconError):
    """A fatal pipeline failure.

    ``phase`` names the phase that failed and ``report`` holds the partial
    :class:`~soar_recon.models.ScanReport` built from the phases that did
    complete.
    """

    def __init__(self, phase: str, message: str, report: Optional[Any] = None) -> None:
        self.phase = phase
        self.report = report
        super().__init__(f"{phase}: {message}")


class PhaseTimeoutError(PipelineError):
    """The shared deadline expired while a phase was still running."""

    def __init__(self, phase: str, report: Optional[Any] = None) -> None:
        super().__init__(phase, f"{phase} phase timed out", report)


class PhaseFailedError(PipelineError):
    """A phase the rest of the pipeline depends on raised an exception."""

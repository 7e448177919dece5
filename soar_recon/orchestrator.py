"""
orchestrator.py
---------------

Runs the reconnaissance phases in a fixed order against a single target.

Each phase is owned by exactly one plugin.  The orchestrator tracks a
:class:`~soar_recon.models.PhaseRecord` per phase, threads an immutable
:class:`~soar_recon.models.ReportBuilder` from one phase to the next and
bounds the whole run with one :class:`~soar_recon.core.Deadline`.

Discovery and Vulnerability Assessment are hard phases: if either fails the
run stops with a :class:`~soar_recon.errors.PhaseFailedError`.  The later
phases only enrich the report, so their errors are recorded on the phase and
the run carries on.  Running out of time is always fatal.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import Any, Callable, Dict, List, Optional

from soar_recon.core import Deadline, PluginManager, ScanContext, log_message
from soar_recon.errors import OrchestratorStateError, PhaseFailedError, PhaseTimeoutError, PipelineError
from soar_recon.models import (
    HARD_PHASES,
    PHASE_ORDER,
    PhaseId,
    PhaseRecord,
    PhaseStatus,
    PipelineStatus,
    ReportBuilder,
    ScanReport,
)
from soar_recon.resolver import Resolver
from soar_recon.risk import final_score, risk_level


class SOAROrchestrator:
    def __init__(
        self,
        target: str,
        context: ScanContext,
        manager: Optional[PluginManager] = None,
        resolver: Optional[Resolver] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.target = target
        self.context = context
        self._clock = clock
        if manager is None:
            manager = PluginManager(context)
            manager.discover_plugins()
            manager.load_additional()
            manager.instantiate_plugins()
        self.manager = manager

        self.phase_ids: List[PhaseId] = [
            phase for phase in PHASE_ORDER
            if phase is not PhaseId.REPORT_GENERATION or context.output is not None
        ]
        self._plugins = manager.plugins_for(self.phase_ids)
        self._records: List[PhaseRecord] = [PhaseRecord(phase) for phase in self.phase_ids]
        self._status = PipelineStatus.NOT_STARTED
        self._started_at: Optional[float] = None
        self._cancellation = asyncio.Event()

        discovery = self._plugins[PhaseId.DISCOVERY]
        if hasattr(discovery, "cancellation"):
            discovery.cancellation = self._cancellation
        if resolver is not None:
            discovery.resolver = resolver
        reporter = self._plugins.get(PhaseId.REPORT_GENERATION)
        if reporter is not None:
            reporter.report_provider = self._snapshot

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def phases(self) -> List[PhaseRecord]:
        """Copies of the phase records; safe to read while a run is active."""
        return [record.snapshot() for record in self._records]

    def get_status(self) -> Dict[str, Any]:
        current = next((r.name for r in self._records if r.status is PhaseStatus.RUNNING), None)
        return {
            "target": self.target,
            "status": self._status.value,
            "currentPhase": current,
            "phases": [r.to_dict() for r in self._records],
        }

    def cancel(self) -> None:
        """Ask the port scan to stop before its next probe."""
        self._cancellation.set()
        self.log("Cancellation requested", "WARN")

    def log(self, message: str, level: str = "INFO") -> None:
        log_message(self.context, "Orchestrator", message, level)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self) -> ScanReport:
        if self._status is not PipelineStatus.NOT_STARTED:
            raise OrchestratorStateError("An orchestrator can only be executed once")
        self._status = PipelineStatus.RUNNING
        self._started_at = self._clock()
        deadline = Deadline(self.context.timeout)
        builder = ReportBuilder(target=self.target)
        self.log(f"Starting reconnaissance of {self.target} ({self.context.timeout:g}s budget)")

        try:
            await self.manager.setup()
            for record in self._records:
                builder = await self._run_phase(record, builder, deadline)
        except BaseException as exc:
            self._status = PipelineStatus.FAILED
            if not isinstance(exc, PipelineError):
                self.log(f"Pipeline aborted: {exc!r}", "ERROR")
            raise
        finally:
            await self.manager.teardown()

        self._status = PipelineStatus.COMPLETED
        report = self._build(builder, PipelineStatus.COMPLETED)
        self.log(f"Reconnaissance complete: risk score {report.risk_score}/100 ({report.risk_level})")
        return report

    async def _run_phase(self, record: PhaseRecord, builder: ReportBuilder, deadline: Deadline) -> ReportBuilder:
        plugin = self._plugins[record.phase]
        record.start(self._clock())
        self.log(f"Phase started: {record.name}")
        task = asyncio.ensure_future(plugin.run(builder, deadline))
        try:
            result = await asyncio.wait_for(task, timeout=deadline.remaining())
        except asyncio.TimeoutError as exc:
            # a TimeoutError raised by the plugin itself is an ordinary failure
            if not (task.cancelled() or deadline.expired):
                return self._phase_failed(record, builder, exc)
            record.fail(self._clock(), f"{record.name} phase timed out")
            self._status = PipelineStatus.FAILED
            self.log(f"{record.name} phase timed out", "ERROR")
            # the timed-out phase's partial output is never merged
            raise PhaseTimeoutError(record.name, self._build(builder, PipelineStatus.FAILED)) from None
        except Exception as exc:
            return self._phase_failed(record, builder, exc)
        record.complete(self._clock())
        self.log(f"Phase completed: {record.name} ({record.duration:.2f}s)")
        return result

    def _phase_failed(self, record: PhaseRecord, builder: ReportBuilder, exc: Exception) -> ReportBuilder:
        """Record a failed phase; hard phases abort the pipeline, soft ones pass the builder on."""
        message = str(exc) or type(exc).__name__
        record.fail(self._clock(), message)
        if record.phase in HARD_PHASES:
            self._status = PipelineStatus.FAILED
            self.log(f"{record.name} failed: {message}", "ERROR")
            raise PhaseFailedError(
                record.name, message, self._build(builder, PipelineStatus.FAILED)
            ) from exc
        self.log(f"{record.name} failed, continuing: {message}", "WARN")
        return builder

    def _build(self, builder: ReportBuilder, status: PipelineStatus) -> ScanReport:
        base = builder.vulnerabilities.risk_score if builder.vulnerabilities else 0
        distribution = builder.exploits.risk_distribution if builder.exploits else {}
        score = final_score(base, distribution)
        started = self._started_at if self._started_at is not None else self._clock()
        return builder.build(
            status=status,
            phases=self._records,
            started_at=started,
            finished_at=self._clock(),
            risk_score=score,
            risk_level=risk_level(score),
        )

    def _snapshot(self, builder: ReportBuilder) -> ScanReport:
        # Analysis is finished once the report phase runs
        return self._build(builder, PipelineStatus.COMPLETED)


async def full_scan(target: str, context: Optional[ScanContext] = None, **options: Any) -> ScanReport:
    """Scan ``target`` with the configured (or default) port list."""
    if context is None:
        context = ScanContext(**options)
    return await SOAROrchestrator(target, context).execute()


async def quick_scan(target: str, context: Optional[ScanContext] = None, **options: Any) -> ScanReport:
    """Scan only the first few ports of the port list."""
    if context is None:
        context = ScanContext(quick=True, **options)
    else:
        context = dataclasses.replace(context, quick=True)
    return await SOAROrchestrator(target, context).execute()

"""
Tests for the phase orchestrator: ordering, the hard/soft failure policy,
the shared deadline and status reporting.
"""

import asyncio
import json

import pytest

from soar_recon.core import BasePlugin, PluginManager, ScanContext
from soar_recon.errors import (
    OrchestratorStateError,
    PhaseFailedError,
    PhaseTimeoutError,
    ResolutionError,
)
from soar_recon.models import PhaseId, PhaseStatus, PipelineStatus
from soar_recon.orchestrator import SOAROrchestrator, quick_scan
from soar_recon.plugins.attack_surface import AttackSurfacePlugin
from soar_recon.plugins.exploit_simulator import ExploitSimulatorPlugin
from soar_recon.plugins.port_scanner import PortScannerPlugin
from soar_recon.plugins.report_generator import ReportGeneratorPlugin
from soar_recon.plugins.vuln_assessor import VulnerabilityAssessorPlugin

BUILTIN_PLUGINS = [
    PortScannerPlugin,
    VulnerabilityAssessorPlugin,
    ExploitSimulatorPlugin,
    AttackSurfacePlugin,
    ReportGeneratorPlugin,
]


def manager_with(ctx, *replacements):
    """Built-in plugins, with any phase owned by a replacement swapped out."""
    manager = PluginManager(ctx)
    for cls in BUILTIN_PLUGINS:
        manager.register(next((r for r in replacements if r.phase is cls.phase), cls))
    manager.instantiate_plugins()
    return manager


class SlowAssessor(BasePlugin):
    name = "SlowAssessor"
    phase = PhaseId.VULNERABILITY_ASSESSMENT

    async def run(self, builder, deadline):
        await asyncio.sleep(30)
        return builder


class BrokenSimulator(BasePlugin):
    name = "BrokenSimulator"
    phase = PhaseId.EXPLOIT_SIMULATION

    async def run(self, builder, deadline):
        raise RuntimeError("simulator exploded")


class BrokenReporter(BasePlugin):
    name = "BrokenReporter"
    phase = PhaseId.REPORT_GENERATION

    async def run(self, builder, deadline):
        raise OSError("disk full")


class UpstreamTimeoutSimulator(BasePlugin):
    name = "UpstreamTimeoutSimulator"
    phase = PhaseId.EXPLOIT_SIMULATION

    async def run(self, builder, deadline):
        raise asyncio.TimeoutError("upstream lookup timed out")


class UpstreamTimeoutAssessor(BasePlugin):
    name = "UpstreamTimeoutAssessor"
    phase = PhaseId.VULNERABILITY_ASSESSMENT

    async def run(self, builder, deadline):
        raise asyncio.TimeoutError()


class UnpreparedAssessor(BasePlugin):
    name = "UnpreparedAssessor"
    phase = PhaseId.VULNERABILITY_ASSESSMENT

    async def setup(self):
        raise RuntimeError("no check catalogue")

    async def run(self, builder, deadline):
        return builder


def statuses(phases):
    return {p.phase: p.status for p in phases}


class TestConstruction:
    def test_report_phase_only_with_output(self, tmp_path, local_resolver):
        without = SOAROrchestrator("x", ScanContext(quiet=True), resolver=local_resolver)
        assert PhaseId.REPORT_GENERATION not in without.phase_ids
        with_output = SOAROrchestrator("x", ScanContext(quiet=True, output=tmp_path), resolver=local_resolver)
        assert with_output.phase_ids[-1] is PhaseId.REPORT_GENERATION

    def test_initial_status(self, context):
        orchestrator = SOAROrchestrator("x", context)
        assert orchestrator.status is PipelineStatus.NOT_STARTED
        assert all(p.status is PhaseStatus.PENDING for p in orchestrator.phases)
        status = orchestrator.get_status()
        assert status["status"] == "not_started"
        assert status["currentPhase"] is None
        assert [p["name"] for p in status["phases"]] == [
            "Discovery",
            "Vulnerability Assessment",
            "Exploit Simulation",
            "Attack Surface Analysis",
        ]

    def test_missing_plugin_fails_construction(self, context):
        manager = PluginManager(context)
        manager.register(PortScannerPlugin)
        manager.instantiate_plugins()
        with pytest.raises(OrchestratorStateError):
            SOAROrchestrator("x", context, manager=manager)


class TestExecute:
    def test_full_run_against_local_http_service(self, servers, local_resolver, tmp_path):
        async def scenario():
            server, port = await servers.http()
            ctx = ScanContext(
                ports=[port],
                service_overrides={port: "http"},
                banner_timeout=0.2,
                output=tmp_path,
                quiet=True,
            )
            orchestrator = SOAROrchestrator("lab.local", ctx, resolver=local_resolver)
            async with server:
                report = await orchestrator.execute()
            return orchestrator, report

        orchestrator, report = asyncio.run(scenario())
        assert orchestrator.status is PipelineStatus.COMPLETED
        assert report.status is PipelineStatus.COMPLETED
        assert report.ip == "127.0.0.1"
        assert all(p.status is PhaseStatus.COMPLETED for p in report.phases)
        assert len(report.phases) == 5

        assert len(report.findings) == 3
        assert report.exploits.total_simulations == 2
        assert report.attack_surface.total_vectors == 3
        # (5 + 5 + 2.5) / 30 -> 42; 42 * 0.6 -> 25
        assert report.vulnerabilities.risk_score == 42
        assert report.risk_score == 25
        assert report.risk_level == "LOW"

        data = json.loads((tmp_path / "report.json").read_text())
        assert data["summary"]["riskScore"] == 25
        assert (tmp_path / "report.md").exists()
        assert (tmp_path / "report.html").exists()
        assert "[Orchestrator]" in (tmp_path / "scanner.log").read_text()

    def test_unresolvable_target_aborts_after_discovery(self, context):
        async def unresolvable(raw):
            raise ResolutionError(raw, "no address records")

        orchestrator = SOAROrchestrator("nowhere.invalid", context, resolver=unresolvable)
        with pytest.raises(PhaseFailedError) as excinfo:
            asyncio.run(orchestrator.execute())

        error = excinfo.value
        assert error.phase == "Discovery"
        assert isinstance(error.__cause__, ResolutionError)
        assert orchestrator.status is PipelineStatus.FAILED
        phases = statuses(orchestrator.phases)
        assert phases[PhaseId.DISCOVERY] is PhaseStatus.FAILED
        assert phases[PhaseId.VULNERABILITY_ASSESSMENT] is PhaseStatus.PENDING
        assert phases[PhaseId.EXPLOIT_SIMULATION] is PhaseStatus.PENDING
        assert error.report.status is PipelineStatus.FAILED
        assert error.report.discovery is None
        assert "Could not resolve target" in error.report.phase(PhaseId.DISCOVERY).error

    def test_timeout_keeps_completed_phases(self, servers, local_resolver):
        async def scenario():
            closed = await servers.closed_port()
            ctx = ScanContext(timeout=0.5, ports=[closed], quiet=True)
            orchestrator = SOAROrchestrator(
                "lab.local", ctx, manager=manager_with(ctx, SlowAssessor), resolver=local_resolver
            )
            with pytest.raises(PhaseTimeoutError) as excinfo:
                await orchestrator.execute()
            return orchestrator, excinfo.value

        orchestrator, error = asyncio.run(scenario())
        assert str(error) == "Vulnerability Assessment: Vulnerability Assessment phase timed out"
        phases = statuses(orchestrator.phases)
        assert phases[PhaseId.DISCOVERY] is PhaseStatus.COMPLETED
        assert phases[PhaseId.VULNERABILITY_ASSESSMENT] is PhaseStatus.FAILED
        assert phases[PhaseId.EXPLOIT_SIMULATION] is PhaseStatus.PENDING
        assert error.report.discovery is not None
        assert error.report.vulnerabilities is None

    def test_soft_phase_failures_are_recorded(self, local_resolver, tmp_path):
        ctx = ScanContext(ports=[1], probe_timeout=0.05, quiet=True, output=tmp_path)
        orchestrator = SOAROrchestrator(
            "lab.local",
            ctx,
            manager=manager_with(ctx, BrokenSimulator, BrokenReporter),
            resolver=local_resolver,
        )
        report = asyncio.run(orchestrator.execute())

        assert report.status is PipelineStatus.COMPLETED
        assert report.exploits is None
        assert report.attack_surface is not None
        assert report.phase(PhaseId.EXPLOIT_SIMULATION).error == "simulator exploded"
        assert report.phase(PhaseId.ATTACK_SURFACE_ANALYSIS).status is PhaseStatus.COMPLETED
        assert report.phase(PhaseId.REPORT_GENERATION).error == "disk full"
        assert statuses(orchestrator.phases)[PhaseId.REPORT_GENERATION] is PhaseStatus.FAILED

    def test_plugin_timeout_in_soft_phase_is_not_a_deadline_timeout(self, local_resolver):
        ctx = ScanContext(ports=[1], probe_timeout=0.05, quiet=True)
        orchestrator = SOAROrchestrator(
            "lab.local", ctx, manager=manager_with(ctx, UpstreamTimeoutSimulator), resolver=local_resolver
        )
        report = asyncio.run(orchestrator.execute())

        assert orchestrator.status is PipelineStatus.COMPLETED
        assert report.status is PipelineStatus.COMPLETED
        assert report.phase(PhaseId.EXPLOIT_SIMULATION).status is PhaseStatus.FAILED
        assert report.phase(PhaseId.EXPLOIT_SIMULATION).error == "upstream lookup timed out"
        assert report.phase(PhaseId.ATTACK_SURFACE_ANALYSIS).status is PhaseStatus.COMPLETED

    def test_plugin_timeout_in_hard_phase_is_a_phase_failure(self, local_resolver):
        ctx = ScanContext(ports=[1], probe_timeout=0.05, quiet=True)
        orchestrator = SOAROrchestrator(
            "lab.local", ctx, manager=manager_with(ctx, UpstreamTimeoutAssessor), resolver=local_resolver
        )
        with pytest.raises(PhaseFailedError) as excinfo:
            asyncio.run(orchestrator.execute())

        assert not isinstance(excinfo.value, PhaseTimeoutError)
        assert excinfo.value.phase == "Vulnerability Assessment"
        assert orchestrator.status is PipelineStatus.FAILED
        assert excinfo.value.report.phase(PhaseId.VULNERABILITY_ASSESSMENT).error == "TimeoutError"

    def test_setup_failure_marks_pipeline_failed(self, local_resolver):
        ctx = ScanContext(ports=[1], probe_timeout=0.05, quiet=True)
        orchestrator = SOAROrchestrator(
            "lab.local", ctx, manager=manager_with(ctx, UnpreparedAssessor), resolver=local_resolver
        )
        with pytest.raises(RuntimeError, match="no check catalogue"):
            asyncio.run(orchestrator.execute())

        assert orchestrator.status is PipelineStatus.FAILED
        assert orchestrator.get_status()["status"] == "failed"
        assert all(p.status is PhaseStatus.PENDING for p in orchestrator.phases)

    def test_no_open_ports_means_zero_risk(self, local_resolver):
        ctx = ScanContext(ports=[1], probe_timeout=0.05, quiet=True)
        report = asyncio.run(SOAROrchestrator("lab.local", ctx, resolver=local_resolver).execute())
        assert report.findings == ()
        assert report.risk_score == 0
        assert report.risk_level == "MINIMAL"

    def test_execute_only_once(self, local_resolver):
        ctx = ScanContext(ports=[1], probe_timeout=0.05, quiet=True)
        orchestrator = SOAROrchestrator("lab.local", ctx, resolver=local_resolver)

        async def twice():
            await orchestrator.execute()
            await orchestrator.execute()

        with pytest.raises(OrchestratorStateError):
            asyncio.run(twice())

    def test_cancel_skips_remaining_probes(self, servers, local_resolver):
        async def scenario():
            server, port = await servers.silent()
            ctx = ScanContext(ports=[port], quiet=True)
            orchestrator = SOAROrchestrator("lab.local", ctx, resolver=local_resolver)
            orchestrator.cancel()
            async with server:
                return await orchestrator.execute()

        report = asyncio.run(scenario())
        assert report.discovery.cancelled
        assert report.discovery.open_ports == ()


class TestHelpers:
    def test_quick_scan(self):
        report = asyncio.run(quick_scan("127.0.0.1", ScanContext(ports=[1], probe_timeout=0.05, quiet=True)))
        assert report.status is PipelineStatus.COMPLETED
        assert report.discovery.total_ports_scanned == 1

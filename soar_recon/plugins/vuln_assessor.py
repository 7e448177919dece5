"""
vuln_assessor.py
----------------

This plugin runs the Vulnerability Assessment phase.  Each open service from
discovery is looked up in the check registry by service name and every
matching check is run against it.  Services without registered checks are
skipped.

Checks are isolated from each other: a probe that fails, or a check that
raises, costs only that check's findings.  The rest of the service list is
still assessed.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

import aiohttp

from soar_recon.core import BasePlugin, Deadline, ScanContext
from soar_recon.errors import ProbeError, ProtocolCheckError
from soar_recon.models import Finding, PhaseId, ReportBuilder, ServiceRecord, VulnerabilityResult
from soar_recon.plugins.vuln_checks import DEFAULT_REGISTRY, Check, CheckRegistry, CheckTarget
from soar_recon.risk import findings_score

LogFn = Callable[[str, str], None]


class VulnerabilityAssessor:
    def __init__(
        self,
        registry: Optional[CheckRegistry] = None,
        http_timeout: float = 5.0,
        tls_timeout: float = 5.0,
        log: Optional[LogFn] = None,
    ) -> None:
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self.http_timeout = http_timeout
        self.tls_timeout = tls_timeout
        self._log = log or (lambda message, level: None)

    async def assess(
        self,
        host: str,
        services: Iterable[ServiceRecord],
        deadline: Optional[Deadline] = None,
    ) -> VulnerabilityResult:
        """Run every registered check for every service, in service order."""
        records = list(services)
        findings: List[Finding] = []
        if not records:
            return VulnerabilityResult(findings=(), risk_score=0)

        connector = aiohttp.TCPConnector(ssl=False, force_close=True)
        async with aiohttp.ClientSession(connector=connector) as session:
            for record in records:
                checks = self.registry.checks_for(record.service)
                if not checks:
                    self._log(f"No specific checks for {record.service} on port {record.port}", "DEBUG")
                    continue
                target = CheckTarget(
                    host=host,
                    service=record,
                    http_timeout=deadline.clip(self.http_timeout) if deadline else self.http_timeout,
                    tls_timeout=deadline.clip(self.tls_timeout) if deadline else self.tls_timeout,
                    session=session,
                )
                for name, check in checks:
                    findings.extend(await self._run_check(name, check, target))

        return VulnerabilityResult(findings=tuple(findings), risk_score=findings_score(findings))

    async def _run_check(self, name: str, check: Check, target: CheckTarget) -> List[Finding]:
        try:
            return list(await check(target))
        except ProbeError as exc:
            self._log(f"{name} on port {target.port}: {exc}", "DEBUG")
        except Exception as exc:
            self._log(str(ProtocolCheckError(name, target.port, exc)), "DEBUG")
        return []


class VulnerabilityAssessorPlugin(BasePlugin):
    name = "VulnerabilityAssessor"
    description = "Run protocol-specific checks against open services"
    priority = 20
    phase = PhaseId.VULNERABILITY_ASSESSMENT

    def __init__(self, context: ScanContext) -> None:
        super().__init__(context)
        self.assessor = VulnerabilityAssessor(
            http_timeout=context.http_timeout,
            tls_timeout=context.tls_timeout,
            log=self.log,
        )

    async def run(self, builder: ReportBuilder, deadline: Deadline) -> ReportBuilder:
        if builder.discovery is None:
            raise ValueError("Vulnerability assessment needs discovery results")
        services = builder.open_ports
        self.log(f"Assessing {len(services)} open services...")
        result = await self.assessor.assess(builder.discovery.ip, services, deadline)
        self.log(f"Found {len(result.findings)} potential issues")
        return builder.with_vulnerabilities(result)

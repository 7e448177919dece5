"""
attack_surface.py
-----------------

Attack-surface synthesis.  Every (open port, finding on that port) pair is
one attack vector.  The analysis is a pure function of the discovery and
vulnerability results; it performs no I/O.
"""

from __future__ import annotations

from typing import Iterable

from soar_recon.core import BasePlugin, Deadline
from soar_recon.models import (
    AttackSurface,
    Finding,
    PhaseId,
    ReportBuilder,
    ServiceRecord,
    Severity,
)

CRITICAL_RECOMMENDATION = (
    "Immediate action required: {count} critical attack vector(s) expose this host. "
    "Restrict network access to the affected services and remediate the critical "
    "findings before anything else."
)
HIGH_RECOMMENDATION = (
    "Prioritise remediation of {count} high-risk attack vector(s): close or firewall "
    "services that do not need to be reachable and replace cleartext protocols."
)
GENERAL_RECOMMENDATION = (
    "No critical exposures found. Continue general hardening: keep services patched, "
    "expose only required ports, and enable security headers and modern TLS."
)


def analyze_attack_surface(
    open_ports: Iterable[ServiceRecord],
    findings: Iterable[Finding],
) -> AttackSurface:
    ports = {record.port for record in open_ports}
    vectors = [f for f in findings if f.port in ports]
    critical = sum(1 for f in vectors if f.severity is Severity.CRITICAL)
    high = sum(1 for f in vectors if f.severity is Severity.HIGH)
    if critical > 0:
        recommendation = CRITICAL_RECOMMENDATION.format(count=critical)
    elif high > 0:
        recommendation = HIGH_RECOMMENDATION.format(count=high)
    else:
        recommendation = GENERAL_RECOMMENDATION
    return AttackSurface(
        total_vectors=len(vectors),
        critical_vectors=critical,
        high_vectors=high,
        recommendation=recommendation,
    )


class AttackSurfacePlugin(BasePlugin):
    name = "AttackSurfaceAnalyzer"
    description = "Count attack vectors and recommend next steps"
    priority = 40
    phase = PhaseId.ATTACK_SURFACE_ANALYSIS

    async def run(self, builder: ReportBuilder, deadline: Deadline) -> ReportBuilder:
        findings = builder.vulnerabilities.findings if builder.vulnerabilities else ()
        surface = analyze_attack_surface(builder.open_ports, findings)
        self.log(
            f"{surface.total_vectors} attack vectors "
            f"({surface.critical_vectors} critical, {surface.high_vectors} high)"
        )
        return builder.with_attack_surface(surface)

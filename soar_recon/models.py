"""
models.py
---------

Data structures shared by the scanner plugins and the orchestrator.

Everything a phase produces is a frozen dataclass.  Phases never mutate a
shared report; instead each one receives a :class:`ReportBuilder` and returns
a new builder carrying its own result.  The orchestrator turns the final
builder into an immutable :class:`ScanReport`, which is the only object handed
to report writers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from soar_recon.errors import PhaseTransitionError


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Higher rank means more severe (critical=4 ... info=0)."""
        return len(SEVERITY_ORDER) - 1 - SEVERITY_ORDER.index(self)

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown severity: {value!r}") from None


# Most severe first
SEVERITY_ORDER: Tuple[Severity, ...] = (
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
)


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceRecord:
    """One open TCP port.  Closed and filtered ports are never recorded."""

    port: int
    service: str = "unknown"
    state: str = "open"
    banner: Optional[str] = None
    version: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not 1 <= self.port <= 65535:
            raise ValueError(f"Port out of range: {self.port!r}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"port": self.port, "service": self.service, "state": self.state}
        if self.banner is not None:
            data["banner"] = self.banner
        if self.version is not None:
            data["version"] = self.version
        return data


@dataclass(frozen=True)
class DiscoveryResult:
    target: str
    ip: str
    target_type: str
    open_ports: Tuple[ServiceRecord, ...]
    total_ports_scanned: int
    scan_time: float
    timestamp: str
    using_fallback_dns: bool = False
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "ip": self.ip,
            "targetType": self.target_type,
            "usingFallbackDns": self.using_fallback_dns,
            "openPorts": [s.to_dict() for s in self.open_ports],
            "totalPortsScanned": self.total_ports_scanned,
            "openPortCount": len(self.open_ports),
            "scanTime": round(self.scan_time, 2),
            "timestamp": self.timestamp,
            "cancelled": self.cancelled,
        }


# ----------------------------------------------------------------------
# Findings and simulations
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Finding:
    id: str
    title: str
    severity: Severity
    cvss: float
    port: int
    service: str
    description: str
    evidence: str
    remediation: str

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.cvss) <= 10.0:
            raise ValueError(f"CVSS score out of range: {self.cvss!r}")

    @classmethod
    def create(
        cls,
        title: str,
        severity: Severity,
        cvss: float,
        port: int,
        service: str,
        description: str,
        evidence: str,
        remediation: str,
    ) -> "Finding":
        """Build a finding whose id is derived from service, port and title.

        Deriving the id keeps repeated assessments of the same services
        comparable: the same weakness on the same port always gets the same
        id.
        """
        finding_id = f"{_slug(service)}-{port}-{_slug(title)}"
        return cls(
            id=finding_id,
            title=title,
            severity=Severity.parse(severity),
            cvss=float(cvss),
            port=port,
            service=service,
            description=description,
            evidence=evidence,
            remediation=remediation,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.title,
            "severity": self.severity.value,
            "cvss": self.cvss,
            "port": self.port,
            "service": self.service,
            "description": self.description,
            "evidence": self.evidence,
            "remediation": self.remediation,
        }


@dataclass(frozen=True)
class VulnerabilityResult:
    findings: Tuple[Finding, ...] = ()
    risk_score: int = 0

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity is severity)

    @property
    def critical_count(self) -> int:
        return self.count(Severity.CRITICAL)

    @property
    def high_count(self) -> int:
        return self.count(Severity.HIGH)

    @property
    def medium_count(self) -> int:
        return self.count(Severity.MEDIUM)

    @property
    def low_count(self) -> int:
        return self.count(Severity.LOW)

    @property
    def info_count(self) -> int:
        return self.count(Severity.INFO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "riskScore": self.risk_score,
            "criticalCount": self.critical_count,
            "highCount": self.high_count,
            "mediumCount": self.medium_count,
            "lowCount": self.low_count,
            "infoCount": self.info_count,
        }


@dataclass(frozen=True)
class ExploitSimulation:
    """Descriptive narrative of how a finding could be abused.

    Carries no payload and nothing executable.
    """

    name: str
    finding_id: str
    severity: Severity
    cvss: float
    technique: str
    description: str
    remediation: str
    port: int
    service: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "findingId": self.finding_id,
            "severity": self.severity.value,
            "cvss": self.cvss,
            "technique": self.technique,
            "description": self.description,
            "remediation": self.remediation,
            "port": self.port,
            "service": self.service,
        }


@dataclass(frozen=True)
class ExploitResult:
    simulations: Tuple[ExploitSimulation, ...] = ()
    risk_distribution: Dict[str, int] = field(default_factory=dict)

    @property
    def total_simulations(self) -> int:
        return len(self.simulations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulations": [s.to_dict() for s in self.simulations],
            "totalSimulations": self.total_simulations,
            "riskDistribution": dict(self.risk_distribution),
        }


@dataclass(frozen=True)
class AttackSurface:
    total_vectors: int
    critical_vectors: int
    high_vectors: int
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalVectors": self.total_vectors,
            "criticalVectors": self.critical_vectors,
            "highVectors": self.high_vectors,
            "recommendation": self.recommendation,
        }


# ----------------------------------------------------------------------
# Phase state machine
# ----------------------------------------------------------------------


class PhaseId(Enum):
    DISCOVERY = "Discovery"
    VULNERABILITY_ASSESSMENT = "Vulnerability Assessment"
    EXPLOIT_SIMULATION = "Exploit Simulation"
    ATTACK_SURFACE_ANALYSIS = "Attack Surface Analysis"
    REPORT_GENERATION = "Report Generation"


PHASE_ORDER: Tuple[PhaseId, ...] = (
    PhaseId.DISCOVERY,
    PhaseId.VULNERABILITY_ASSESSMENT,
    PhaseId.EXPLOIT_SIMULATION,
    PhaseId.ATTACK_SURFACE_ANALYSIS,
    PhaseId.REPORT_GENERATION,
)

# Later phases cannot run without these
HARD_PHASES = frozenset({PhaseId.DISCOVERY, PhaseId.VULNERABILITY_ASSESSMENT})


class PhaseStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


PHASE_TRANSITIONS: Dict[PhaseStatus, frozenset] = {
    PhaseStatus.PENDING: frozenset({PhaseStatus.RUNNING}),
    PhaseStatus.RUNNING: frozenset({PhaseStatus.COMPLETED, PhaseStatus.FAILED}),
    PhaseStatus.COMPLETED: frozenset(),
    PhaseStatus.FAILED: frozenset(),
}


class PipelineStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PhaseRecord:
    phase: PhaseId
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.phase.value

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    def _transition(self, new: PhaseStatus) -> None:
        if new not in PHASE_TRANSITIONS[self.status]:
            raise PhaseTransitionError(
                f"{self.name}: cannot move from {self.status.value} to {new.value}"
            )
        self.status = new

    def start(self, now: float) -> None:
        self._transition(PhaseStatus.RUNNING)
        self.started_at = now

    def complete(self, now: float) -> None:
        self._transition(PhaseStatus.COMPLETED)
        self.ended_at = now

    def fail(self, now: float, error: str) -> None:
        self._transition(PhaseStatus.FAILED)
        self.ended_at = now
        self.error = error

    def snapshot(self) -> "PhaseRecord":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "startTime": _iso(self.started_at),
            "endTime": _iso(self.ended_at),
            "duration": round(self.duration, 2) if self.duration is not None else None,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


# ----------------------------------------------------------------------
# Report
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ScanReport:
    target: str
    ip: Optional[str]
    status: PipelineStatus
    started_at: float
    finished_at: float
    risk_score: int
    risk_level: str
    phases: Tuple[PhaseRecord, ...]
    discovery: Optional[DiscoveryResult] = None
    vulnerabilities: Optional[VulnerabilityResult] = None
    exploits: Optional[ExploitResult] = None
    attack_surface: Optional[AttackSurface] = None
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    @property
    def findings(self) -> Tuple[Finding, ...]:
        return self.vulnerabilities.findings if self.vulnerabilities else ()

    def phase(self, phase_id: PhaseId) -> Optional[PhaseRecord]:
        for record in self.phases:
            if record.phase is phase_id:
                return record
        return None

    def summary(self) -> Dict[str, Any]:
        vulns = self.vulnerabilities or VulnerabilityResult()
        open_ports = self.discovery.open_ports if self.discovery else ()
        return {
            "target": self.target,
            "ip": self.ip,
            "status": self.status.value,
            "scanDate": _iso(self.started_at),
            "scanDuration": round(self.duration, 2),
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
            "stats": {
                "openPorts": len(open_ports),
                "services": len(open_ports),
                "vulnerabilities": {
                    "critical": vulns.critical_count,
                    "high": vulns.high_count,
                    "medium": vulns.medium_count,
                    "low": vulns.low_count,
                    "info": vulns.info_count,
                    "total": len(vulns.findings),
                },
                "simulations": self.exploits.total_simulations if self.exploits else 0,
                "attackVectors": self.attack_surface.total_vectors if self.attack_surface else 0,
            },
            "phases": [p.to_dict() for p in self.phases],
            "recommendation": self.attack_surface.recommendation if self.attack_surface else "",
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "ip": self.ip,
            "discovery": self.discovery.to_dict() if self.discovery else None,
            "vulnerabilities": self.vulnerabilities.to_dict() if self.vulnerabilities else None,
            "exploits": self.exploits.to_dict() if self.exploits else None,
            "attackSurface": self.attack_surface.to_dict() if self.attack_surface else None,
            "summary": self.summary(),
            "generatedAt": self.generated_at,
        }


@dataclass(frozen=True)
class ReportBuilder:
    """Accumulates phase results without shared mutable state.

    Each ``with_*`` method returns a new builder; the original is untouched,
    so a phase that fails or times out leaves the previous builder intact.
    """

    target: str
    discovery: Optional[DiscoveryResult] = None
    vulnerabilities: Optional[VulnerabilityResult] = None
    exploits: Optional[ExploitResult] = None
    attack_surface: Optional[AttackSurface] = None

    @property
    def ip(self) -> Optional[str]:
        return self.discovery.ip if self.discovery else None

    @property
    def open_ports(self) -> Tuple[ServiceRecord, ...]:
        return self.discovery.open_ports if self.discovery else ()

    def with_discovery(self, result: DiscoveryResult) -> "ReportBuilder":
        return replace(self, discovery=result)

    def with_vulnerabilities(self, result: VulnerabilityResult) -> "ReportBuilder":
        return replace(self, vulnerabilities=result)

    def with_exploits(self, result: ExploitResult) -> "ReportBuilder":
        return replace(self, exploits=result)

    def with_attack_surface(self, result: AttackSurface) -> "ReportBuilder":
        return replace(self, attack_surface=result)

    def build(
        self,
        status: PipelineStatus,
        phases: List[PhaseRecord],
        started_at: float,
        finished_at: float,
        risk_score: int,
        risk_level: str,
    ) -> ScanReport:
        return ScanReport(
            target=self.target,
            ip=self.ip,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            risk_score=risk_score,
            risk_level=risk_level,
            phases=tuple(p.snapshot() for p in phases),
            discovery=self.discovery,
            vulnerabilities=self.vulnerabilities,
            exploits=self.exploits,
            attack_surface=self.attack_surface,
        )

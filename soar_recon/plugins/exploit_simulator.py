"""
exploit_simulator.py
--------------------

Educational exploit simulation.  For each qualifying finding this plugin
writes a short narrative of how an attacker could abuse the weakness and
what stops them.  It is a pure mapping from findings to text: nothing is
sent to the target, and no simulation carries a payload.

Findings qualify when their severity is at least the context's
``exploit_min_severity`` (medium by default); low and informational
findings describe hygiene rather than an attack path.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List

from soar_recon.core import BasePlugin, Deadline, ScanContext
from soar_recon.models import (
    SEVERITY_ORDER,
    ExploitResult,
    ExploitSimulation,
    Finding,
    PhaseId,
    ReportBuilder,
    Severity,
)


@dataclass(frozen=True)
class Technique:
    name: str
    cwe: int
    narrative: str

    @property
    def label(self) -> str:
        return f"{self.name} (CWE-{self.cwe})"


# Keyed on Finding.title
TECHNIQUES: Dict[str, Technique] = {
    "Database Exposed": Technique(
        "Direct Database Access",
        284,
        "An attacker who can reach the database listener can try default or "
        "leaked credentials, brute-force weak passwords, or exploit unpatched "
        "engine flaws to read and alter stored data without touching the "
        "application layer.",
    ),
    "FTP Service Exposed": Technique(
        "Cleartext Credential Capture",
        319,
        "FTP sends usernames, passwords and file contents unencrypted.  Anyone "
        "on the network path can capture a login and reuse it against this or "
        "other services.",
    ),
    "RDP Service Exposed": Technique(
        "Remote Desktop Brute Force",
        307,
        "Internet-facing RDP is a common entry point for ransomware operators, "
        "who spray common passwords or exploit pre-authentication flaws to gain "
        "an interactive session.",
    ),
    "SMTP Open Relay Risk": Technique(
        "Mail Relay Abuse",
        284,
        "If the server relays mail for unauthenticated senders it can be used "
        "to send spam or phishing that appears to originate from this domain.",
    ),
    "SSH Service Exposed": Technique(
        "SSH Credential Guessing",
        307,
        "Password-based SSH logins can be guessed by automated tooling; key-only "
        "authentication removes the attack.",
    ),
    "Missing HSTS Header": Technique(
        "SSL Stripping",
        319,
        "Without HSTS a network attacker can downgrade a victim's first request "
        "to plain HTTP and read or modify the session before it is upgraded.",
    ),
    "Missing X-Frame-Options": Technique(
        "Clickjacking",
        1021,
        "A hostile page can load the site in an invisible frame and trick a "
        "logged-in user into clicking buttons that perform actions for the "
        "attacker.",
    ),
    "Missing X-Content-Type-Options": Technique(
        "MIME Sniffing",
        16,
        "Browsers may sniff uploaded content as script or HTML, letting an "
        "attacker turn a harmless-looking file into executable content.",
    ),
    "TRACE Method Enabled": Technique(
        "Cross-Site Tracing",
        693,
        "TRACE echoes request headers back to the client; combined with a "
        "script injection it can expose cookies that are otherwise protected "
        "by HttpOnly.",
    ),
    "Weak TLS Version": Technique(
        "Protocol Downgrade",
        326,
        "Legacy TLS versions are vulnerable to known attacks (BEAST, POODLE) "
        "that let a man-in-the-middle recover parts of encrypted traffic.",
    ),
    "Weak Cipher": Technique(
        "RC4 Keystream Bias Attack",
        327,
        "Statistical biases in RC4 allow recovery of repeated plaintext such as "
        "session cookies from enough captured ciphertext.",
    ),
    "Invalid SSL Certificate": Technique(
        "Man-in-the-Middle Impersonation",
        295,
        "Users trained to click through certificate warnings will accept an "
        "attacker's certificate just as readily, exposing the whole session.",
    ),
    "Information Disclosure": Technique(
        "Targeted Version Exploitation",
        200,
        "Advertised software versions let an attacker pick exploits known to "
        "work against that exact release.",
    ),
}

GENERIC_TECHNIQUE = Technique(
    "Service Exposure Abuse",
    284,
    "An exposed service widens the attack surface; any weakness in it is "
    "reachable by every host that can route to this port.",
)

# fallback for findings without a dedicated technique, keyed on the service
_WEB = Technique(
    "Web Application Attack",
    20,
    "A reachable web server exposes every route it serves; input handling "
    "flaws there are the usual first foothold.",
)
_DATABASE = Technique(
    "Direct Database Access",
    284,
    "A network-reachable database can be queried directly once credentials "
    "are guessed or leaked, bypassing the application entirely.",
)
_REMOTE_LOGIN = Technique(
    "Credential Brute Force",
    307,
    "Remote login services accept unlimited guesses unless rate limited, "
    "so weak or reused passwords are eventually found.",
)
_CLEARTEXT = Technique(
    "Credential Sniffing",
    319,
    "The protocol carries credentials in clear text; anyone on the network "
    "path can capture and replay them.",
)

SERVICE_TECHNIQUES: Dict[str, Technique] = {
    "http": _WEB,
    "https": _WEB,
    "http-proxy": _WEB,
    "https-alt": _WEB,
    "mysql": _DATABASE,
    "postgresql": _DATABASE,
    "mssql": _DATABASE,
    "oracle": _DATABASE,
    "mongodb": _DATABASE,
    "redis": _DATABASE,
    "ssh": _REMOTE_LOGIN,
    "rdp": _REMOTE_LOGIN,
    "vnc": _REMOTE_LOGIN,
    "ftp": _CLEARTEXT,
    "telnet": _CLEARTEXT,
    "smtp": _CLEARTEXT,
    "pop3": _CLEARTEXT,
    "imap": _CLEARTEXT,
}


def empty_distribution() -> Dict[str, int]:
    return {severity.value: 0 for severity in SEVERITY_ORDER}


class ExploitSimulator:
    def __init__(self, min_severity: Severity = Severity.MEDIUM) -> None:
        self.min_severity = Severity.parse(min_severity)

    def qualifies(self, finding: Finding) -> bool:
        return finding.severity.at_least(self.min_severity)

    def technique_for(self, finding: Finding) -> Technique:
        technique = TECHNIQUES.get(finding.title)
        if technique is None:
            technique = SERVICE_TECHNIQUES.get(finding.service.lower(), GENERIC_TECHNIQUE)
        return technique

    def simulate_one(self, finding: Finding) -> ExploitSimulation:
        technique = self.technique_for(finding)
        description = (
            f"{technique.narrative} Observed on port {finding.port}/{finding.service}: "
            f"{finding.description}."
        )
        return ExploitSimulation(
            name=f"{technique.name}: {finding.title}",
            finding_id=finding.id,
            severity=finding.severity,
            cvss=finding.cvss,
            technique=technique.label,
            description=description,
            remediation=finding.remediation,
            port=finding.port,
            service=finding.service,
        )

    def simulate(self, findings: Iterable[Finding]) -> ExploitResult:
        simulations: List[ExploitSimulation] = [
            self.simulate_one(f) for f in findings if self.qualifies(f)
        ]
        distribution = empty_distribution()
        for sim in simulations:
            distribution[sim.severity.value] += 1
        return ExploitResult(simulations=tuple(simulations), risk_distribution=distribution)


class ExploitSimulatorPlugin(BasePlugin):
    name = "ExploitSimulator"
    description = "Describe how findings could be exploited (educational, no network activity)"
    priority = 30
    phase = PhaseId.EXPLOIT_SIMULATION

    def __init__(self, context: ScanContext) -> None:
        super().__init__(context)
        self.simulator = ExploitSimulator(context.exploit_min_severity)

    async def run(self, builder: ReportBuilder, deadline: Deadline) -> ReportBuilder:
        findings = builder.vulnerabilities.findings if builder.vulnerabilities else ()
        result = self.simulator.simulate(findings)
        self.log(
            f"Simulated {result.total_simulations} attack scenarios "
            f"(findings at {self.simulator.min_severity.value} or above)"
        )
        return builder.with_exploits(result)

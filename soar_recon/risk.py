"""
risk.py
-------

Turns findings and exploit simulations into a single 0-100 score and a
qualitative level.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, Mapping

from soar_recon.models import Finding, Severity

SEVERITY_WEIGHTS: Dict[Severity, float] = {
    Severity.CRITICAL: 10.0,
    Severity.HIGH: 7.5,
    Severity.MEDIUM: 5.0,
    Severity.LOW: 2.5,
    Severity.INFO: 0.0,
}

FINDINGS_WEIGHT = 0.6
CRITICAL_SIMULATION_POINTS = 10
HIGH_SIMULATION_POINTS = 5

# (inclusive lower bound, level), checked top-down
RISK_LEVELS = (
    (80, "CRITICAL"),
    (60, "HIGH"),
    (40, "MEDIUM"),
    (20, "LOW"),
)


def round_half_up(value: float) -> int:
    # round() would send 62.5 to 62
    return int(math.floor(value + 0.5))


def findings_score(findings: Iterable[Finding]) -> int:
    """Average severity weight as a percentage of the maximum (10 per finding)."""
    items = list(findings)
    if not items:
        return 0
    total = sum(SEVERITY_WEIGHTS[f.severity] for f in items)
    max_score = len(items) * 10
    return round_half_up(min(100.0, total / max_score * 100))


def final_score(score: int, distribution: Mapping[str, int]) -> int:
    """Blend the findings score with the exploit-simulation distribution."""
    critical = int(distribution.get(Severity.CRITICAL.value, 0))
    high = int(distribution.get(Severity.HIGH.value, 0))
    blended = score * FINDINGS_WEIGHT + critical * CRITICAL_SIMULATION_POINTS + high * HIGH_SIMULATION_POINTS
    return max(0, min(100, round_half_up(blended)))


def risk_level(score: float) -> str:
    for threshold, level in RISK_LEVELS:
        if score >= threshold:
            return level
    return "MINIMAL"

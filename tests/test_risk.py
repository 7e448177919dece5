"""
Tests for risk scoring.
"""

import pytest

from soar_recon.models import SEVERITY_ORDER, Finding, Severity
from soar_recon.risk import findings_score, final_score, risk_level, round_half_up


def finding(severity, port=80):
    return Finding.create(
        title=f"{severity.value} issue",
        severity=severity,
        cvss=5.0,
        port=port,
        service="http",
        description="d",
        evidence="e",
        remediation="r",
    )


class TestRounding:
    @pytest.mark.parametrize("value, expected", [(62.5, 63), (62.4, 62), (0.5, 1), (0.0, 0), (99.5, 100)])
    def test_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestFindingsScore:
    def test_empty_is_zero(self):
        assert findings_score([]) == 0

    def test_average_of_weights(self):
        # (10 + 5) / 20 * 100 = 75
        assert findings_score([finding(Severity.CRITICAL), finding(Severity.MEDIUM)]) == 75
        # (7.5 + 5) / 20 * 100 = 62.5 -> 63
        assert findings_score([finding(Severity.HIGH), finding(Severity.MEDIUM)]) == 63
        assert findings_score([finding(Severity.INFO)]) == 0

    def test_monotonic_when_adding_more_severe_finding(self):
        ladder = list(reversed(SEVERITY_ORDER))  # info ... critical
        for i, base in enumerate(ladder[:-1]):
            existing = [finding(base)]
            for worse in ladder[i + 1:]:
                assert findings_score(existing + [finding(worse)]) >= findings_score(existing)


class TestFinalScore:
    def test_blend(self):
        # 75 * 0.6 + 1 * 10 + 2 * 5 = 65
        assert final_score(75, {"critical": 1, "high": 2, "medium": 0}) == 65

    def test_clamped(self):
        assert final_score(100, {"critical": 10}) == 100
        assert final_score(0, {}) == 0

    def test_no_findings_means_zero(self):
        assert final_score(findings_score([]), {}) == 0


class TestRiskLevel:
    @pytest.mark.parametrize(
        "score, level",
        [
            (0, "MINIMAL"),
            (19, "MINIMAL"),
            (20, "LOW"),
            (39, "LOW"),
            (40, "MEDIUM"),
            (59, "MEDIUM"),
            (60, "HIGH"),
            (79, "HIGH"),
            (80, "CRITICAL"),
            (100, "CRITICAL"),
        ],
    )
    def test_boundaries(self, score, level):
        assert risk_level(score) == level

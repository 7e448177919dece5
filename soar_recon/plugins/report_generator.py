"""
Report Generator
----------------

Writes the scan report to the output directory.  This phase only runs when
an output directory is configured and is purely a reader of the
:class:`~soar_recon.models.ScanReport`; if it fails, the results of the
earlier phases are unaffected.

Outputs:
- report.json     -> machine-readable report (``ScanReport.to_dict()``)
- report.md       -> human-readable markdown
- report.html     -> simple HTML wrapper for the markdown content
"""

from __future__ import annotations

import json
import re
from html import escape as html_escape
from pathlib import Path
from typing import Any, Callable, List, Optional

from soar_recon.core import BasePlugin, Deadline, ScanContext
from soar_recon.errors import ReportGenerationError
from soar_recon.models import SEVERITY_ORDER, PhaseId, ReportBuilder, ScanReport

ReportProvider = Callable[[ReportBuilder], ScanReport]

# split on "|" but not on the "\|" that _safe() produces
_CELL_SPLIT = re.compile(r"(?<!\\)\|")
_SEPARATOR_ROW = re.compile(r"^\|(\s*-+:?\s*\|)+\s*$")


class ReportGeneratorPlugin(BasePlugin):
    name = "ReportGenerator"
    description = "Write JSON, Markdown and HTML reports"
    priority = 90
    phase = PhaseId.REPORT_GENERATION

    # caps to keep the report readable
    MAX_FINDING_ROWS = 500

    def __init__(self, context: ScanContext) -> None:
        super().__init__(context)
        # Set by the orchestrator: turns the builder into a report snapshot
        self.report_provider: Optional[ReportProvider] = None

    async def run(self, builder: ReportBuilder, deadline: Deadline) -> ReportBuilder:
        if self.context.output is None:
            raise ReportGenerationError("No output directory configured")
        if self.report_provider is None:
            raise ReportGenerationError("No report provider configured")
        report = self.report_provider(builder)
        written = self.write(report, self.context.output)
        self.log(f"Report saved to: {', '.join(str(p) for p in written)}")
        return builder

    def write(self, report: ScanReport, out_dir: Path) -> List[Path]:
        out_dir = Path(out_dir)
        md = self.render_markdown(report)
        outputs = [
            (out_dir / "report.json", json.dumps(report.to_dict(), indent=2)),
            (out_dir / "report.md", md),
            (out_dir / "report.html", self._wrap_html(md)),
        ]
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            for path, content in outputs:
                with open(path, "w", encoding="utf-8") as f:
                    f.write(content)
        except OSError as exc:
            raise ReportGenerationError(f"Could not write report to {out_dir}: {exc}") from exc
        return [path for path, _ in outputs]

    # ------------------------------------------------------------------
    # Markdown report
    # ------------------------------------------------------------------

    def render_markdown(self, report: ScanReport) -> str:
        safe = self._safe  # local alias for escaping in tables
        summary = report.summary()
        stats = summary["stats"]

        md: List[str] = []
        md.append(f"# Reconnaissance Report for {safe(report.target)}\n")

        md.append("## Executive Summary")
        md.append("")
        md.append("| Metric | Value |")
        md.append("|---|---:|")
        for label, value in [
            ("IP Address", report.ip or "N/A"),
            ("Scan Date", summary["scanDate"]),
            ("Scan Duration (s)", summary["scanDuration"]),
            ("Risk Level", report.risk_level),
            ("Risk Score", f"{report.risk_score}/100"),
            ("Open Ports", stats["openPorts"]),
            ("Vulnerabilities", stats["vulnerabilities"]["total"]),
            ("Simulations", stats["simulations"]),
            ("Attack Vectors", stats["attackVectors"]),
        ]:
            md.append(f"| {label} | {safe(value)} |")

        if report.attack_surface:
            md.append("\n## Attack Surface")
            md.append("")
            md.append(f"- Total vectors: {report.attack_surface.total_vectors}")
            md.append(f"- Critical vectors: {report.attack_surface.critical_vectors}")
            md.append(f"- High-risk vectors: {report.attack_surface.high_vectors}")
            md.append(f"\n**Recommendation:** {report.attack_surface.recommendation}")

        # -------------------- Findings --------------------
        md.append("\n## Technical Findings")
        findings = list(report.findings)
        if not findings:
            md.append("\n_No vulnerabilities detected._")
        shown = 0
        for severity in SEVERITY_ORDER:
            group = [f for f in findings if f.severity is severity]
            if not group:
                continue
            md.append(f"\n### {severity.value.upper()} severity ({len(group)})")
            md.append("| Finding | Port | Service | CVSS | Evidence | Remediation |")
            md.append("|---|---:|---|---:|---|---|")
            for f in group:
                if shown >= self.MAX_FINDING_ROWS:
                    break
                md.append(
                    f"| {safe(f.title)} | {f.port} | {safe(f.service)} | {f.cvss} "
                    f"| {safe(f.evidence)} | {safe(f.remediation)} |"
                )
                shown += 1
        if len(findings) > self.MAX_FINDING_ROWS:
            md.append(f"\n_Only showing first {self.MAX_FINDING_ROWS} of {len(findings)} findings._")

        # -------------------- Open ports --------------------
        md.append("\n## Open Ports & Services")
        services = report.discovery.open_ports if report.discovery else ()
        if not services:
            md.append("\n_No open ports detected._")
        else:
            md.append("| Port | Service | State | Version |")
            md.append("|---:|---|---|---|")
            for s in services:
                md.append(
                    f"| {s.port} | {safe(s.service)} | {safe(s.state)} | {safe(s.version or s.banner or '-')} |"
                )

        # -------------------- Simulations --------------------
        if report.exploits and report.exploits.simulations:
            md.append("\n## Exploit Simulations (Educational)")
            md.append("\n_These are descriptive simulations only. No exploitation was performed._")
            for sim in report.exploits.simulations:
                md.append(f"\n**{safe(sim.name)}** ({sim.severity.value}, CVSS {sim.cvss}, {safe(sim.technique)})\n")
                md.append(sim.description)
                md.append(f"\n_Mitigation:_ {sim.remediation}")

        # -------------------- Phases --------------------
        md.append("\n## Phase Timing")
        md.append("| Phase | Status | Duration (s) | Error |")
        md.append("|---|---|---:|---|")
        for phase in summary["phases"]:
            duration = phase["duration"] if phase["duration"] is not None else "N/A"
            md.append(
                f"| {safe(phase['name'])} | {safe(phase['status'])} | {duration} | {safe(phase.get('error', ''))} |"
            )

        md.append("")  # newline at EOF
        return "\n".join(md)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def _safe(self, v: Any) -> str:
        """Escape table-breaking characters while keeping it readable."""
        s = str(v)
        s = s.replace("\n", " ").replace("\r", " ")
        s = s.replace("|", r"\|")
        return s.strip()

    def _wrap_html(self, md: str) -> str:
        # minimal Markdown -> HTML: headers and pipe tables; everything else as text
        css = """
        <style>
        body { font-family: system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif; margin: 20px; }
        table { border-collapse: collapse; width: 100%; table-layout: fixed; }
        th, td { border: 1px solid #ddd; padding: 6px 8px; vertical-align: top; word-wrap: break-word; }
        th { background: #f5f5f5; }
        h1, h2, h3 { margin-top: 1.2em; }
        </style>
        """
        out: List[str] = []
        table: List[str] = []
        for line in md.split("\n") + [""]:
            if line.startswith("|"):
                table.append(line)
                continue
            if table:
                out.append(self._table_html(table))
                table = []
            out.append(self._line_html(line))
        html = "\n".join(out).strip()
        # blank lines -> <br><br> (light)
        html = html.replace("\n\n", "<br><br>")
        return f"<!doctype html><meta charset='utf-8'>{css}<div>{html}</div>"

    def _line_html(self, line: str) -> str:
        text = html_escape(line, quote=False)
        for level in (3, 2, 1):
            prefix = "#" * level + " "
            if text.startswith(prefix):
                return f"<h{level}>{text[len(prefix):]}</h{level}>"
        return text

    def _table_html(self, rows: List[str]) -> str:
        def cells(row: str) -> List[str]:
            parts = _CELL_SPLIT.split(row.strip().strip("|"))
            return [html_escape(p.replace(r"\|", "|").strip(), quote=False) for p in parts]

        head, body = rows[0], [r for r in rows[1:] if not _SEPARATOR_ROW.match(r)]
        html = ["<table>", "<tr>" + "".join(f"<th>{c}</th>" for c in cells(head)) + "</tr>"]
        for row in body:
            html.append("<tr>" + "".join(f"<td>{c}</td>" for c in cells(row)) + "</tr>")
        html.append("</table>")
        return "".join(html)

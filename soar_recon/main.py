"""
soar_recon.main
---------------

Entry point for the reconnaissance pipeline.

Features:
- Scans one target (IP, hostname, sslip.io name or CIDR; a CIDR is reduced
  to its first host).
- Port scope controls (explicit list/ranges or quick mode).
- Options from a TOML config file, overridden by command-line flags.
- Writes report.json / report.md / report.html when --output is given.
- Prints the JSON report to stdout with --json.

Run examples:
    # Basic
    python3 -m soar_recon.main scanme.example.org

    # Quick scan, 30 second budget, reports in ./out
    python3 -m soar_recon.main 10.10.10.10 --quick --timeout 30 --output out

    # Explicit ports, machine-readable output
    python3 -m soar_recon.main 10.10.10.10 --ports 22,80,443,8000-8010 --json

Exit codes: 0 success, 1 pipeline failure, 2 bad input, 130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

import toml

from soar_recon.core import ScanContext, parse_ports
from soar_recon.errors import PipelineError, ReconError
from soar_recon.models import SEVERITY_ORDER, ScanReport
from soar_recon.orchestrator import SOAROrchestrator


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="soar_recon",
        description="Autonomous reconnaissance: discovery, vulnerability assessment and risk scoring.",
    )

    parser.add_argument(
        "target",
        help="Target: IP address, hostname, sslip.io hostname or CIDR.",
    )

    # Time and port scope
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Overall time budget for the whole run, in seconds (default: 60).",
    )
    parser.add_argument(
        "--quick",
        action="store_true",
        default=None,
        help="Only probe the first 8 ports of the port list.",
    )
    parser.add_argument(
        "--ports",
        default=None,
        help="Comma-separated ports or ranges (e.g., 22,80,443,8000-8010).",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of ports probed at once (default: 1).",
    )
    parser.add_argument(
        "--min-severity",
        choices=[s.value for s in SEVERITY_ORDER],
        default=None,
        help="Lowest finding severity that gets an exploit simulation (default: medium).",
    )

    # Output / UX
    parser.add_argument(
        "--output",
        default=None,
        help="Directory for report.json, report.md, report.html and scanner.log.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the JSON report to stdout instead of the console summary.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Show debug messages (failed probes, skipped checks).",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        default=None,
        help="Disable colorized console output.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a TOML config file; command-line flags take precedence.",
    )

    return parser.parse_args(argv)


def build_context(args: argparse.Namespace) -> ScanContext:
    overrides: Dict[str, Any] = {
        "timeout": args.timeout,
        "quick": args.quick,
        "verbose": args.verbose,
        "ports": parse_ports(args.ports) if args.ports else None,
        "output": args.output,
        "no_color": args.no_color,
        "probe_concurrency": args.concurrency,
        "exploit_min_severity": args.min_severity,
        # keep stdout clean for the JSON document
        "quiet": True if args.json else None,
    }
    if args.config:
        return ScanContext.from_toml(args.config, **overrides)
    return ScanContext(**{k: v for k, v in overrides.items() if v is not None})


def print_summary(report: ScanReport) -> None:
    summary = report.summary()
    stats = summary["stats"]
    vulns = stats["vulnerabilities"]
    print()
    print(f"[*] Target: {report.target} ({report.ip or 'unresolved'})")
    print(f"[*] Risk: {report.risk_score}/100 ({report.risk_level})")
    print(f"[*] Open ports: {stats['openPorts']}")
    print(
        f"[*] Findings: {vulns['total']} "
        f"(critical {vulns['critical']}, high {vulns['high']}, medium {vulns['medium']}, "
        f"low {vulns['low']}, info {vulns['info']})"
    )
    print(f"[*] Simulations: {stats['simulations']}, attack vectors: {stats['attackVectors']}")
    for phase in summary["phases"]:
        line = f"    - {phase['name']}: {phase['status']}"
        if phase.get("error"):
            line += f" ({phase['error']})"
        print(line)
    if summary["recommendation"]:
        print(f"[*] {summary['recommendation']}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        ctx = build_context(args)
    except (ValueError, TypeError, OSError, toml.TomlDecodeError) as exc:
        print(f"[!] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    try:
        orchestrator = SOAROrchestrator(args.target, ctx)
    except ReconError as exc:
        print(f"[!] {exc}", file=sys.stderr)
        return 1

    try:
        report = asyncio.run(orchestrator.execute())
    except PipelineError as exc:
        print(f"[!] Scan failed in {exc}", file=sys.stderr)
        if args.json and exc.report is not None:
            print(json.dumps(exc.report.to_dict(), indent=2))
        return 1
    except KeyboardInterrupt:
        print("\n[!] Interrupted by user.", file=sys.stderr)
        return 130

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_summary(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())

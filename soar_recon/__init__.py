"""
SOAR Recon Package
==================

This package contains an autonomous reconnaissance pipeline.  A scan runs in
fixed phases against a single target: discovery (port scan and banner
grabbing), vulnerability assessment (protocol-specific checks), exploit
simulation (educational narratives only), attack-surface analysis and,
optionally, report generation.  Each phase is a plugin from the ``plugins``
sub-package; the orchestrator sequences them under one time budget and
combines their results into a risk-scored report.

The main entry point for running the tool is ``soar_recon.main.main``.
Programmatic use goes through ``soar_recon.orchestrator.SOAROrchestrator``
or the ``quick_scan`` / ``full_scan`` helpers.
"""

__version__ = "0.1.0"

__all__ = [
    "core",
    "errors",
    "models",
    "orchestrator",
    "plugins",
    "resolver",
    "risk",
    "main",
]

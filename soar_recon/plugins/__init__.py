"""
Plugins package
===============

All pipeline phase plugins live in this package.  To replace a phase, create
a module that defines a subclass of ``soar_recon.core.BasePlugin`` with its
``phase`` attribute set.  The plugin manager discovers modules in this
directory automatically; modules elsewhere can be listed in the ``plugins``
configuration option.  Exactly one plugin may own each phase.

Plugins provided out of the box include:

* ``port_scanner`` – resolves the target and finds open TCP ports (Discovery).
* ``service_scanner`` – grabs banners and extracts versions for open ports.
* ``vuln_checks`` – the protocol check registry and the built-in checks.
* ``vuln_assessor`` – runs the registered checks (Vulnerability Assessment).
* ``exploit_simulator`` – describes how findings could be abused.
* ``attack_surface`` – counts attack vectors and picks a recommendation.
* ``report_generator`` – writes JSON, Markdown and HTML reports.
"""

__all__ = [
    "port_scanner",
    "service_scanner",
    "vuln_checks",
    "vuln_assessor",
    "exploit_simulator",
    "attack_surface",
    "report_generator",
]

"""
port_scanner.py
---------------

This plugin runs the Discovery phase: it resolves the target, probes the
configured TCP ports with plain connect attempts and hands the open ports to
the service fingerprinter for banner grabbing.

Ports are probed one at a time by default so the resulting service list
follows the caller's port order exactly.  A ``probe_concurrency`` above one
probes in ordered batches; order and uniqueness are kept either way.  Every
probe opens a single socket and closes it before returning, whether the
connection succeeded, failed, timed out or the task was cancelled.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from soar_recon.core import BasePlugin, Deadline, ScanContext
from soar_recon.errors import ResolutionError
from soar_recon.models import DiscoveryResult, PhaseId, ReportBuilder, ServiceRecord
from soar_recon.plugins.service_scanner import ServiceFingerprinter
from soar_recon.resolver import Resolver, resolve_target


PORT_SERVICES: Dict[int, str] = {
    20: "ftp-data",
    21: "ftp",
    22: "ssh",
    23: "telnet",
    25: "smtp",
    53: "dns",
    80: "http",
    110: "pop3",
    111: "rpcbind",
    135: "msrpc",
    139: "netbios-ssn",
    143: "imap",
    443: "https",
    445: "microsoft-ds",
    993: "imaps",
    995: "pop3s",
    1433: "mssql",
    1521: "oracle",
    3306: "mysql",
    3389: "rdp",
    5432: "postgresql",
    5900: "vnc",
    6379: "redis",
    8080: "http-proxy",
    8443: "https-alt",
    27017: "mongodb",
}


class PortScanner:
    """TCP connect scanner."""

    def __init__(self, service_overrides: Optional[Mapping[int, str]] = None) -> None:
        self.services: Dict[int, str] = dict(PORT_SERVICES)
        if service_overrides:
            self.services.update(service_overrides)

    def service_name(self, port: int) -> str:
        return self.services.get(port, "unknown")

    async def probe(self, host: str, port: int, timeout: float = 2.0) -> bool:
        """Return True if a TCP connection to ``host:port`` succeeds.

        Refused connections, unreachable hosts and timeouts all count as
        closed; this never raises for network errors.
        """
        writer = None
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
            return True
        except (OSError, asyncio.TimeoutError, ValueError):
            return False
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

    async def scan(
        self,
        host: str,
        ports: Iterable[int],
        timeout: float = 2.0,
        cancellation: Optional[asyncio.Event] = None,
        concurrency: int = 1,
        deadline: Optional[Deadline] = None,
    ) -> List[ServiceRecord]:
        """Probe ``ports`` in order and return the open ones.

        Duplicate ports are probed once.  ``cancellation`` is checked before
        every probe (or batch); a probe already in flight is allowed to
        finish.
        """
        unique = list(dict.fromkeys(ports))
        step = max(1, concurrency)
        results: List[ServiceRecord] = []
        for start in range(0, len(unique), step):
            if cancellation is not None and cancellation.is_set():
                break
            batch = unique[start:start + step]
            probe_timeout = deadline.clip(timeout) if deadline else timeout
            outcomes = await asyncio.gather(*(self.probe(host, port, probe_timeout) for port in batch))
            for port, is_open in zip(batch, outcomes):
                if is_open:
                    results.append(ServiceRecord(port=port, service=self.service_name(port)))
        return results


class PortScannerPlugin(BasePlugin):
    name = "PortScanner"
    description = "Resolve the target, find open TCP ports and grab service banners"
    priority = 10
    phase = PhaseId.DISCOVERY

    def __init__(self, context: ScanContext) -> None:
        super().__init__(context)
        self.scanner = PortScanner(context.service_overrides)
        self.fingerprinter = ServiceFingerprinter()
        self.resolver: Resolver = resolve_target
        self.cancellation: Optional[asyncio.Event] = None

    async def run(self, builder: ReportBuilder, deadline: Deadline) -> ReportBuilder:
        started = time.monotonic()
        self.log(f"Resolving target: {builder.target}")
        target = await self.resolver(builder.target)
        if not target.resolved:
            raise ResolutionError(target.raw, "resolver returned no address")
        ip = target.ip
        self.log(f"Resolved to IP: {ip}")
        if target.using_fallback_dns:
            self.log("Address taken from sslip.io hostname")
        if target.kind == "cidr":
            self.log(f"{target.raw} is a network; only {ip} will be scanned", level="WARN")

        ports = self.context.port_list()
        self.log(f"Scanning {len(ports)} ports on {ip}...")
        open_ports = await self.scanner.scan(
            ip,
            ports,
            timeout=self.context.probe_timeout,
            cancellation=self.cancellation,
            concurrency=self.context.probe_concurrency,
            deadline=deadline,
        )
        cancelled = self.cancellation is not None and self.cancellation.is_set()
        if cancelled:
            self.log("Port scan cancelled; keeping ports found so far", level="WARN")
        for record in open_ports:
            self.log(f"Port {record.port} is open ({record.service})", level="DEBUG")

        services = await self.fingerprinter.fingerprint(
            ip, open_ports, timeout=self.context.banner_timeout, deadline=deadline
        )
        elapsed = time.monotonic() - started
        self.log(f"Completed port scan on {ip}: {len(services)} open ports found")

        result = DiscoveryResult(
            target=target.raw,
            ip=ip,
            target_type=target.kind,
            using_fallback_dns=target.using_fallback_dns,
            open_ports=tuple(services),
            total_ports_scanned=len(dict.fromkeys(ports)),
            scan_time=elapsed,
            timestamp=datetime.now(timezone.utc).isoformat(),
            cancelled=cancelled,
        )
        return builder.with_discovery(result)

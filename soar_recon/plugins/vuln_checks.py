"""
vuln_checks.py
--------------

Protocol checks used by the vulnerability assessor, and the registry that
maps service names to them.

A check is an ``async`` callable taking a :class:`CheckTarget` and returning
a list of :class:`~soar_recon.models.Finding`.  Checks register themselves
with :data:`DEFAULT_REGISTRY` through the ``register`` decorator, so a module
listed in the scan context's ``plugins`` option can add a protocol without
touching the assessor::

    from soar_recon.plugins.vuln_checks import DEFAULT_REGISTRY

    @DEFAULT_REGISTRY.register("telnet")
    async def check_telnet(target):
        ...

Network helpers raise :class:`~soar_recon.errors.ProbeError` when the target
cannot be reached; the assessor absorbs it and the check contributes no
findings.  The checks only read: HEAD and OPTIONS requests, a TLS handshake,
nothing that changes state on the target.
"""

from __future__ import annotations

import asyncio
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp
from cryptography import x509

from soar_recon.errors import ProbeError
from soar_recon.models import Finding, ServiceRecord, Severity


HTTP_SERVICES = ("http", "https", "http-proxy", "https-alt")
HTTPS_SERVICES = ("https", "https-alt")
HTTPS_PORTS = (443, 8443)
DATABASE_SERVICES = ("mysql", "mssql", "postgresql", "mongodb")
WEAK_TLS_VERSIONS = frozenset({"SSLv2", "SSLv3", "TLSv1", "TLSv1.1"})


@dataclass(frozen=True)
class CheckTarget:
    """Everything a check needs to know about the service it inspects."""

    host: str
    service: ServiceRecord
    http_timeout: float = 5.0
    tls_timeout: float = 5.0
    session: Optional[aiohttp.ClientSession] = None

    @property
    def port(self) -> int:
        return self.service.port

    @property
    def is_https(self) -> bool:
        return self.port in HTTPS_PORTS or self.service.service in HTTPS_SERVICES

    @property
    def base_url(self) -> str:
        scheme = "https" if self.is_https else "http"
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{scheme}://{host}:{self.port}/"


Check = Callable[[CheckTarget], Awaitable[List[Finding]]]


class CheckRegistry:
    """Service name -> ordered list of (check name, check)."""

    def __init__(self) -> None:
        self._checks: Dict[str, List[Tuple[str, Check]]] = {}

    def add(self, services: Sequence[str], check: Check, name: Optional[str] = None) -> None:
        check_name = name or getattr(check, "__name__", repr(check))
        for service in services:
            entries = self._checks.setdefault(service.lower(), [])
            if all(existing is not check for _, existing in entries):
                entries.append((check_name, check))

    def register(self, *services: str, name: Optional[str] = None) -> Callable[[Check], Check]:
        def decorator(check: Check) -> Check:
            self.add(services, check, name)
            return check
        return decorator

    def checks_for(self, service: str) -> List[Tuple[str, Check]]:
        return list(self._checks.get(service.lower(), []))

    def services(self) -> List[str]:
        return sorted(self._checks)

    def copy(self) -> "CheckRegistry":
        clone = CheckRegistry()
        clone._checks = {k: list(v) for k, v in self._checks.items()}
        return clone


DEFAULT_REGISTRY = CheckRegistry()


# ----------------------------------------------------------------------
# Network helpers
# ----------------------------------------------------------------------


@asynccontextmanager
async def _client(target: CheckTarget) -> AsyncIterator[aiohttp.ClientSession]:
    if target.session is not None:
        yield target.session
        return
    async with aiohttp.ClientSession() as session:
        yield session


async def fetch_headers(target: CheckTarget) -> Dict[str, str]:
    """HEAD ``/`` and return the response headers with lower-cased names.

    Certificates are not verified; the point is to see the headers, not to
    trust the server.
    """
    timeout = aiohttp.ClientTimeout(total=target.http_timeout)
    try:
        async with _client(target) as session:
            async with session.head(target.base_url, allow_redirects=False, ssl=False, timeout=timeout) as resp:
                return {k.lower(): v for k, v in resp.headers.items()}
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
        raise ProbeError(f"HEAD {target.base_url} failed: {exc!r}") from exc


async def fetch_allowed_methods(target: CheckTarget) -> List[str]:
    """OPTIONS ``/`` and return the methods listed in ``Allow`` (upper-cased)."""
    timeout = aiohttp.ClientTimeout(total=target.http_timeout)
    try:
        async with _client(target) as session:
            async with session.options(target.base_url, allow_redirects=False, ssl=False, timeout=timeout) as resp:
                allow = resp.headers.get("Allow", "")
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
        raise ProbeError(f"OPTIONS {target.base_url} failed: {exc!r}") from exc
    return [m.strip().upper() for m in allow.split(",") if m.strip()]


@dataclass(frozen=True)
class TLSInfo:
    valid: bool
    version: Optional[str] = None
    cipher: Optional[str] = None
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    error: Optional[str] = None


def _permissive_tls_context() -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    # Let the server pick old protocols and ciphers so they can be reported
    try:
        ctx.minimum_version = ssl.TLSVersion.MINIMUM_SUPPORTED
        ctx.set_ciphers("ALL:@SECLEVEL=0")
    except (ValueError, ssl.SSLError):
        pass
    return ctx


def certificate_validity(der: Optional[bytes], now: Optional[datetime] = None) -> TLSInfo:
    """Judge a DER certificate purely on its validity window."""
    if not der:
        return TLSInfo(valid=False, error="No certificate presented")
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        return TLSInfo(valid=False, error=f"Unparseable certificate: {exc}")
    now = now or datetime.now(timezone.utc)
    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc
    if now > not_after:
        error: Optional[str] = f"Certificate expired on {not_after.date().isoformat()}"
    elif now < not_before:
        error = f"Certificate not valid before {not_before.date().isoformat()}"
    else:
        error = None
    return TLSInfo(valid=error is None, not_before=not_before, not_after=not_after, error=error)


async def inspect_tls(host: str, port: int, timeout: float = 5.0) -> TLSInfo:
    """Handshake with ``host:port`` and report protocol, cipher and certificate.

    A rejected handshake is reported as an invalid TLS endpoint; a refused
    or timed-out connection raises :class:`ProbeError`.
    """
    writer = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, ssl=_permissive_tls_context(), ssl_handshake_timeout=timeout),
            timeout=timeout,
        )
        ssl_object = writer.get_extra_info("ssl_object")
        version = ssl_object.version() if ssl_object else None
        cipher = ssl_object.cipher() if ssl_object else None
        der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
    except ssl.SSLError as exc:
        return TLSInfo(valid=False, error=f"TLS handshake failed: {exc.reason or exc}")
    except (OSError, asyncio.TimeoutError) as exc:
        raise ProbeError(f"TLS connection to {host}:{port} failed: {exc!r}") from exc
    finally:
        if writer is not None:
            writer.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
            except (OSError, asyncio.TimeoutError):
                pass
    cert_info = certificate_validity(der)
    return TLSInfo(
        valid=cert_info.valid,
        version=version,
        cipher=cipher[0] if cipher else None,
        not_before=cert_info.not_before,
        not_after=cert_info.not_after,
        error=cert_info.error,
    )


# ----------------------------------------------------------------------
# HTTP / HTTPS
# ----------------------------------------------------------------------

# (header, title, severity, cvss, remediation)
SECURITY_HEADER_RULES = [
    (
        "strict-transport-security",
        "Missing HSTS Header",
        Severity.MEDIUM,
        5.3,
        "Add HSTS header: Strict-Transport-Security: max-age=31536000; includeSubDomains",
    ),
    (
        "x-frame-options",
        "Missing X-Frame-Options",
        Severity.MEDIUM,
        5.3,
        "Add X-Frame-Options: DENY or SAMEORIGIN",
    ),
    (
        "x-content-type-options",
        "Missing X-Content-Type-Options",
        Severity.LOW,
        3.7,
        "Add X-Content-Type-Options: nosniff",
    ),
]

HEADER_DISPLAY_NAMES = {
    "strict-transport-security": "Strict-Transport-Security",
    "x-frame-options": "X-Frame-Options",
    "x-content-type-options": "X-Content-Type-Options",
}


@DEFAULT_REGISTRY.register(*HTTP_SERVICES, name="http-headers")
async def check_http_headers(target: CheckTarget) -> List[Finding]:
    headers = await fetch_headers(target)
    findings: List[Finding] = []
    for header, title, severity, cvss, remediation in SECURITY_HEADER_RULES:
        if header in headers:
            continue
        display = HEADER_DISPLAY_NAMES[header]
        findings.append(
            Finding.create(
                title=title,
                severity=severity,
                cvss=cvss,
                port=target.port,
                service="http",
                description=f"{display} header is not set",
                evidence=f"{header} header missing",
                remediation=remediation,
            )
        )
    server = headers.get("server")
    powered_by = headers.get("x-powered-by")
    if server or powered_by:
        findings.append(
            Finding.create(
                title="Information Disclosure",
                severity=Severity.LOW,
                cvss=3.7,
                port=target.port,
                service="http",
                description="Server information disclosure via headers",
                evidence=f"Server: {server or 'unknown'}, X-Powered-By: {powered_by or 'unknown'}",
                remediation="Remove or obfuscate version information from headers",
            )
        )
    return findings


@DEFAULT_REGISTRY.register(*HTTP_SERVICES, name="http-methods")
async def check_http_methods(target: CheckTarget) -> List[Finding]:
    methods = await fetch_allowed_methods(target)
    if "TRACE" not in methods:
        return []
    return [
        Finding.create(
            title="TRACE Method Enabled",
            severity=Severity.MEDIUM,
            cvss=5.3,
            port=target.port,
            service="http",
            description="TRACE HTTP method is enabled (potential cross-site tracing)",
            evidence=f"Allow: {', '.join(methods)}",
            remediation="Disable TRACE method in server configuration",
        )
    ]


@DEFAULT_REGISTRY.register(*HTTP_SERVICES, name="tls")
async def check_tls(target: CheckTarget) -> List[Finding]:
    if not target.is_https:
        return []
    info = await inspect_tls(target.host, target.port, target.tls_timeout)
    return tls_findings(info, target.port)


def tls_findings(info: TLSInfo, port: int) -> List[Finding]:
    findings: List[Finding] = []
    if info.version and info.version in WEAK_TLS_VERSIONS:
        findings.append(
            Finding.create(
                title="Weak TLS Version",
                severity=Severity.HIGH,
                cvss=7.5,
                port=port,
                service="https",
                description=f"Outdated TLS version: {info.version}",
                evidence=f"{info.version} negotiated",
                remediation="Enable TLS 1.2 or higher only",
            )
        )
    if info.cipher and "RC4" in info.cipher.upper():
        findings.append(
            Finding.create(
                title="Weak Cipher",
                severity=Severity.HIGH,
                cvss=7.5,
                port=port,
                service="https",
                description="Weak RC4 cipher in use",
                evidence=f"Cipher: {info.cipher}",
                remediation="Disable RC4 and other weak ciphers",
            )
        )
    if not info.valid:
        findings.append(
            Finding.create(
                title="Invalid SSL Certificate",
                severity=Severity.MEDIUM,
                cvss=5.3,
                port=port,
                service="https",
                description="SSL certificate validation failed",
                evidence=info.error or "Certificate invalid",
                remediation="Use a valid SSL certificate from a trusted CA",
            )
        )
    return findings


# ----------------------------------------------------------------------
# Exposure-only services
# ----------------------------------------------------------------------


@DEFAULT_REGISTRY.register("ftp")
async def check_ftp(target: CheckTarget) -> List[Finding]:
    # Anonymous login is deliberately not attempted.
    return [
        Finding.create(
            title="FTP Service Exposed",
            severity=Severity.HIGH,
            cvss=7.5,
            port=target.port,
            service="ftp",
            description="FTP service is accessible without encryption",
            evidence=f"Port {target.port} is open",
            remediation="Use SFTP or FTPS instead of unencrypted FTP",
        )
    ]


@DEFAULT_REGISTRY.register("ssh")
async def check_ssh(target: CheckTarget) -> List[Finding]:
    return [
        Finding.create(
            title="SSH Service Exposed",
            severity=Severity.INFO,
            cvss=0.0,
            port=target.port,
            service="ssh",
            description="SSH service is accessible",
            evidence=f"Port {target.port} is open",
            remediation="Ensure strong authentication and key-based login is required",
        )
    ]


@DEFAULT_REGISTRY.register("rdp")
async def check_rdp(target: CheckTarget) -> List[Finding]:
    return [
        Finding.create(
            title="RDP Service Exposed",
            severity=Severity.HIGH,
            cvss=7.5,
            port=target.port,
            service="rdp",
            description="RDP service is accessible over network",
            evidence=f"Port {target.port} is open",
            remediation="Restrict RDP access via firewall, use VPN, enable NLA",
        )
    ]


@DEFAULT_REGISTRY.register("smtp")
async def check_smtp(target: CheckTarget) -> List[Finding]:
    return [
        Finding.create(
            title="SMTP Open Relay Risk",
            severity=Severity.HIGH,
            cvss=7.5,
            port=target.port,
            service="smtp",
            description="SMTP port is open; verify it is not an open relay",
            evidence=f"Port {target.port} is open",
            remediation="Configure SMTP server to prevent open relay",
        )
    ]


@DEFAULT_REGISTRY.register(*DATABASE_SERVICES)
async def check_database(target: CheckTarget) -> List[Finding]:
    db_type = target.service.service
    return [
        Finding.create(
            title="Database Exposed",
            severity=Severity.CRITICAL,
            cvss=9.8,
            port=target.port,
            service=db_type,
            description=f"{db_type.upper()} database service is network accessible",
            evidence=f"Port {target.port} is open for {db_type}",
            remediation="Restrict database access to authorized hosts only, use strong authentication",
        )
    ]

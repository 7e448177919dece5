"""
core.py
-------

This module defines the core abstractions used throughout the reconnaissance
pipeline.  The classes here are deliberately simple and self‑contained to
facilitate testing and extension.  They provide the minimum scaffolding
necessary to describe a target, carry configuration, bound a run in time and
load the phase plugins.

A ``Target`` describes the host being scanned, a ``ScanContext`` carries the
configuration for a run, a ``Deadline`` is the single wall-clock budget every
phase and socket call is clipped to, and the plugin manager loads one plugin
per pipeline phase from the ``soar_recon.plugins`` package.
"""

from __future__ import annotations

import dataclasses
import importlib
import inspect
import ipaddress
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Type

import toml

from soar_recon.errors import OrchestratorStateError
from soar_recon.models import PhaseId, ReportBuilder, Severity


DEFAULT_PORTS: List[int] = [
    21, 22, 23, 25, 53, 80, 110, 135, 139, 143, 443, 445,
    993, 995, 1433, 3306, 3389, 5432, 5900, 8080, 8443,
]
QUICK_PORT_COUNT = 8


def parse_ports(spec: str) -> List[int]:
    """Parse ``"80,443,8000-8010"`` into a list of ports.

    Order is kept as written.  Raises ``ValueError`` on anything that is not a
    port number between 1 and 65535.
    """
    ports: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, _, end = part.partition("-")
            try:
                start_i, end_i = int(start), int(end)
            except ValueError:
                raise ValueError(f"Invalid port range: {part}") from None
            if start_i > end_i:
                raise ValueError(f"Invalid port range: {part}")
            candidates = range(start_i, end_i + 1)
        else:
            try:
                candidates = [int(part)]
            except ValueError:
                raise ValueError(f"Invalid port: {part}") from None
        for port in candidates:
            if not 1 <= port <= 65535:
                raise ValueError(f"Invalid port: {port}")
            ports.append(port)
    return ports


@dataclass(frozen=True)
class Target:
    """Represents the scan target.

    ``raw`` stores the original string provided by the user.  ``ip`` and
    ``using_fallback_dns`` are filled in by the resolver, which returns a new
    ``Target``; a resolved target is never modified.
    """

    raw: str
    ip: Optional[str] = None
    using_fallback_dns: bool = False

    @property
    def kind(self) -> str:
        return self.classify(self.raw)

    @property
    def resolved(self) -> bool:
        return self.ip is not None

    @property
    def hosts(self) -> Iterable[str]:
        try:
            network = ipaddress.ip_network(self.raw, strict=False)
            # /32 and /128 networks have no separate host range
            if network.num_addresses == 1:
                yield str(network.network_address)
                return
            for addr in network.hosts():
                yield str(addr)
        except ValueError:
            # Not a CIDR; just return the raw string
            yield self.raw

    @staticmethod
    def classify(raw: str) -> str:
        if "/" in raw:
            return "cidr"
        try:
            addr = ipaddress.ip_address(raw)
        except ValueError:
            return "ipv6" if ":" in raw else "domain"
        return "ip" if addr.version == 4 else "ipv6"

    def with_address(self, ip: str, using_fallback_dns: bool = False) -> "Target":
        return dataclasses.replace(self, ip=ip, using_fallback_dns=using_fallback_dns)


@dataclass
class ScanContext:
    """Holds configuration for a scan session."""

    # Overall budget for the whole pipeline, in seconds
    timeout: float = 60.0
    quick: bool = False
    verbose: bool = False
    ports: Optional[List[int]] = None
    # Directory for report.* and scanner.log; no files are written without it
    output: Optional[Path] = None
    no_color: bool = False
    # Suppress console output (scanner.log is still written)
    quiet: bool = False

    # Per-operation timeouts, in seconds
    probe_timeout: float = 2.0
    banner_timeout: float = 2.0
    http_timeout: float = 5.0
    tls_timeout: float = 5.0

    probe_concurrency: int = 1
    exploit_min_severity: Severity = Severity.MEDIUM
    # Extra port -> service name entries, merged over the built-in table
    service_overrides: Dict[int, str] = field(default_factory=dict)
    # Dotted module paths imported at startup (extra checks or plugins)
    plugins: List[str] = field(default_factory=list)
    additional_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be a positive number of seconds")
        if self.probe_concurrency < 1:
            raise ValueError("probe_concurrency must be at least 1")
        for name in ("probe_timeout", "banner_timeout", "http_timeout", "tls_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.ports is not None:
            for port in self.ports:
                if not isinstance(port, int) or not 1 <= port <= 65535:
                    raise ValueError(f"Invalid port: {port}")
        self.exploit_min_severity = Severity.parse(self.exploit_min_severity)
        self.service_overrides = {int(k): str(v) for k, v in self.service_overrides.items()}
        if self.output is not None:
            self.output = Path(self.output)
            self.output.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_toml(cls, path: str, **overrides: Any) -> "ScanContext":
        """Load options from a TOML file; non-None ``overrides`` win.

        Top-level keys mirror the dataclass fields.  An optional ``[services]``
        table maps port numbers to service names.
        """
        data = toml.load(path)
        known = {f.name for f in dataclasses.fields(cls)}
        options: Dict[str, Any] = {}
        services = data.pop("services", {})
        if services:
            options["service_overrides"] = {int(k): v for k, v in services.items()}
        for key, value in data.items():
            if key in known:
                options[key] = value
            else:
                options.setdefault("additional_options", {})[key] = value
        for key, value in overrides.items():
            if value is not None:
                options[key] = value
        return cls(**options)

    def port_list(self) -> List[int]:
        ports = list(self.ports) if self.ports else list(DEFAULT_PORTS)
        if self.quick:
            ports = ports[:QUICK_PORT_COUNT]
        return ports


class Deadline:
    """A single wall-clock budget shared by every phase of a run.

    Created once when the pipeline starts and never reset.  Socket, TLS and
    HTTP calls clip their own timeouts with :meth:`clip` so nothing outlives
    the run.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.seconds = seconds
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def clip(self, timeout: float) -> float:
        return min(timeout, self.remaining())


# ----------------------------------------------------------------------
# Logging helper
# Plugins and the orchestrator call this instead of print() directly.  It
# honours the colour setting and appends messages to scanner.log in the
# output directory when one is configured.  DEBUG lines only appear in
# verbose mode.
# ----------------------------------------------------------------------

_COLOUR_MAP = {
    "INFO": "\033[94m",  # blue
    "WARN": "\033[93m",  # yellow
    "ERROR": "\033[91m",  # red
    "DEBUG": "\033[90m",  # grey
}
_RESET = "\033[0m"


def log_message(context: ScanContext, source: str, message: str, level: str = "INFO") -> None:
    level = level.upper()
    if level == "DEBUG" and not context.verbose:
        return
    if not context.no_color:
        prefix = _COLOUR_MAP.get(level, "")
        console_msg = f"{prefix}[{source}] {message}{_RESET}"
    else:
        console_msg = f"[{source}] {message}"
    if not context.quiet:
        print(console_msg)
    if context.output is None:
        return
    try:
        with open(context.output / "scanner.log", "a", encoding="utf-8") as fh:
            fh.write(f"[{level}] [{source}] {message}\n")
    except OSError as exc:
        sys.stderr.write(f"[{source}] could not write scanner.log: {exc}\n")


class BasePlugin:
    """Abstract base class for the pipeline phase plugins.

    Each plugin owns exactly one :class:`~soar_recon.models.PhaseId`.  The
    orchestrator calls ``setup`` once at startup, ``run`` when its phase
    comes up, and ``teardown`` at the end.  ``run`` receives the report
    builder holding every earlier phase's result and returns a new builder
    with its own result added.
    """

    name: str = "BasePlugin"
    description: str = ""
    priority: int = 50  # plugins run in ascending order of priority
    phase: Optional[PhaseId] = None

    def __init__(self, context: ScanContext) -> None:
        self.context = context

    def log(self, message: str, level: str = "INFO") -> None:
        log_message(self.context, self.name, message, level)

    async def setup(self) -> None:
        return None

    async def run(self, builder: ReportBuilder, deadline: Deadline) -> ReportBuilder:
        raise NotImplementedError

    async def teardown(self) -> None:
        return None


class PluginManager:
    """Loads and manages the phase plugins.

    Built-in plugins are discovered from the ``soar_recon.plugins`` package.
    Modules listed in the context's ``plugins`` option are imported too; they
    may define additional plugins or register extra protocol checks.
    """

    def __init__(self, context: ScanContext) -> None:
        self.context = context
        self._registry: List[Type[BasePlugin]] = []
        self._instances: List[BasePlugin] = []

    @property
    def plugins(self) -> List[BasePlugin]:
        return list(self._instances)

    def discover_plugins(self) -> None:
        import soar_recon.plugins as pkg
        package_path = Path(pkg.__file__).parent
        for file in sorted(package_path.glob("*.py")):
            if file.name.startswith("_"):
                continue
            module = importlib.import_module(f"soar_recon.plugins.{file.stem}")
            self._register_from_module(module)

    def load_additional(self) -> None:
        for module_path in self.context.plugins:
            try:
                module = importlib.import_module(module_path)
            except ImportError as exc:
                log_message(self.context, "PluginManager", f"Failed to load plugin module {module_path}: {exc}", "WARN")
                continue
            self._register_from_module(module)

    def register(self, cls: Type[BasePlugin]) -> None:
        if cls not in self._registry:
            self._registry.append(cls)

    def _register_from_module(self, module: ModuleType) -> None:
        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (
                obj is not BasePlugin
                and issubclass(obj, BasePlugin)
                and obj.__module__ == module.__name__
                and obj.phase is not None
            ):
                self.register(obj)

    def instantiate_plugins(self) -> None:
        sorted_classes = sorted(self._registry, key=lambda c: getattr(c, "priority", 50))
        self._instances = [cls(self.context) for cls in sorted_classes]

    def plugin_for(self, phase: PhaseId) -> BasePlugin:
        matches = [p for p in self._instances if p.phase is phase]
        if len(matches) != 1:
            raise OrchestratorStateError(
                f"Expected exactly one plugin for phase {phase.value}, found {len(matches)}"
            )
        return matches[0]

    def plugins_for(self, phases: Sequence[PhaseId]) -> Dict[PhaseId, BasePlugin]:
        return {phase: self.plugin_for(phase) for phase in phases}

    async def setup(self) -> None:
        for plugin in self._instances:
            await plugin.setup()

    async def teardown(self) -> None:
        for plugin in self._instances:
            await plugin.teardown()

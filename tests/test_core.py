"""
Tests for the core scaffolding: port parsing, targets, configuration,
the shared deadline, logging and the plugin manager.
"""

import pytest

from soar_recon.core import (
    DEFAULT_PORTS,
    BasePlugin,
    Deadline,
    PluginManager,
    ScanContext,
    Target,
    log_message,
    parse_ports,
)
from soar_recon.errors import OrchestratorStateError
from soar_recon.models import PHASE_ORDER, PhaseId, Severity


class TestParsePorts:
    def test_list_and_ranges_keep_order(self):
        assert parse_ports("443, 80,8000-8002") == [443, 80, 8000, 8001, 8002]

    def test_empty_parts_ignored(self):
        assert parse_ports("22,,80,") == [22, 80]

    @pytest.mark.parametrize("spec", ["0", "65536", "abc", "10-5", "1-x"])
    def test_invalid(self, spec):
        with pytest.raises(ValueError):
            parse_ports(spec)


class TestTarget:
    @pytest.mark.parametrize(
        "raw, kind",
        [
            ("192.168.1.10", "ip"),
            ("10.0.0.0/24", "cidr"),
            ("example.com", "domain"),
            ("::1", "ipv6"),
            ("fe80::1", "ipv6"),
        ],
    )
    def test_classify(self, raw, kind):
        assert Target(raw).kind == kind

    def test_with_address_returns_new_target(self):
        target = Target("example.com")
        resolved = target.with_address("93.184.216.34")
        assert target.ip is None
        assert resolved.ip == "93.184.216.34"
        assert resolved.resolved
        assert resolved.raw == "example.com"

    def test_hosts_expands_cidr(self):
        assert list(Target("10.0.0.0/30").hosts) == ["10.0.0.1", "10.0.0.2"]
        assert list(Target("10.0.0.7/32").hosts) == ["10.0.0.7"]
        assert list(Target("example.com").hosts) == ["example.com"]


class TestScanContext:
    def test_defaults(self):
        ctx = ScanContext()
        assert ctx.timeout == 60.0
        assert ctx.probe_timeout == 2.0
        assert ctx.http_timeout == 5.0
        assert ctx.exploit_min_severity is Severity.MEDIUM
        assert ctx.port_list() == DEFAULT_PORTS

    def test_quick_mode_keeps_first_eight_ports(self):
        assert ScanContext(quick=True).port_list() == DEFAULT_PORTS[:8]
        ports = list(range(1000, 1020))
        assert ScanContext(quick=True, ports=ports).port_list() == ports[:8]

    def test_validation(self):
        with pytest.raises(ValueError):
            ScanContext(timeout=0)
        with pytest.raises(ValueError):
            ScanContext(ports=[0])
        with pytest.raises(ValueError):
            ScanContext(probe_concurrency=0)
        with pytest.raises(ValueError):
            ScanContext(exploit_min_severity="severe")

    def test_output_directory_created(self, tmp_path):
        out = tmp_path / "nested" / "out"
        ctx = ScanContext(output=str(out))
        assert ctx.output == out
        assert out.is_dir()

    def test_from_toml(self, tmp_path):
        config = tmp_path / "scan.toml"
        config.write_text(
            'timeout = 15\n'
            'ports = [22, 80]\n'
            'exploit_min_severity = "high"\n'
            'custom_flag = true\n'
            '\n'
            '[services]\n'
            '8081 = "http"\n'
        )
        ctx = ScanContext.from_toml(str(config), timeout=None, verbose=True)
        assert ctx.timeout == 15
        assert ctx.ports == [22, 80]
        assert ctx.verbose is True
        assert ctx.exploit_min_severity is Severity.HIGH
        assert ctx.service_overrides == {8081: "http"}
        assert ctx.additional_options == {"custom_flag": True}

    def test_from_toml_overrides_win(self, tmp_path):
        config = tmp_path / "scan.toml"
        config.write_text("timeout = 15\n")
        assert ScanContext.from_toml(str(config), timeout=5).timeout == 5


class TestDeadline:
    def test_remaining_and_clip(self):
        now = [100.0]
        deadline = Deadline(10, clock=lambda: now[0])
        assert deadline.remaining() == 10
        assert deadline.clip(2.0) == 2.0
        now[0] = 109.0
        assert deadline.clip(2.0) == pytest.approx(1.0)
        assert not deadline.expired
        now[0] = 111.0
        assert deadline.remaining() == 0.0
        assert deadline.expired


class TestLogMessage:
    def test_plain_output_and_log_file(self, tmp_path, capsys):
        ctx = ScanContext(no_color=True, output=tmp_path)
        log_message(ctx, "PortScanner", "Port 22 is open")
        assert capsys.readouterr().out.strip() == "[PortScanner] Port 22 is open"
        assert "[INFO] [PortScanner] Port 22 is open" in (tmp_path / "scanner.log").read_text()

    def test_debug_only_when_verbose(self, capsys):
        log_message(ScanContext(no_color=True), "X", "hidden", "DEBUG")
        assert capsys.readouterr().out == ""
        log_message(ScanContext(no_color=True, verbose=True), "X", "shown", "DEBUG")
        assert "shown" in capsys.readouterr().out

    def test_colour_and_quiet(self, capsys):
        log_message(ScanContext(), "X", "coloured", "ERROR")
        assert "\033[91m" in capsys.readouterr().out
        log_message(ScanContext(quiet=True), "X", "silent")
        assert capsys.readouterr().out == ""


class TestPluginManager:
    def test_discovers_one_plugin_per_phase(self):
        manager = PluginManager(ScanContext(quiet=True))
        manager.discover_plugins()
        manager.instantiate_plugins()
        plugins = manager.plugins_for(PHASE_ORDER)
        assert [p.phase for p in manager.plugins] == list(PHASE_ORDER)
        assert plugins[PhaseId.DISCOVERY].name == "PortScanner"
        assert plugins[PhaseId.REPORT_GENERATION].name == "ReportGenerator"

    def test_duplicate_phase_is_rejected(self):
        class Extra(BasePlugin):
            phase = PhaseId.EXPLOIT_SIMULATION

        manager = PluginManager(ScanContext(quiet=True))
        manager.discover_plugins()
        manager.register(Extra)
        manager.instantiate_plugins()
        with pytest.raises(OrchestratorStateError):
            manager.plugin_for(PhaseId.EXPLOIT_SIMULATION)

    def test_missing_phase_is_rejected(self):
        manager = PluginManager(ScanContext(quiet=True))
        manager.instantiate_plugins()
        with pytest.raises(OrchestratorStateError):
            manager.plugin_for(PhaseId.DISCOVERY)

    def test_unknown_additional_module_is_skipped(self, capsys):
        ctx = ScanContext(no_color=True, plugins=["soar_recon_no_such_module"])
        manager = PluginManager(ctx)
        manager.load_additional()
        manager.instantiate_plugins()
        assert manager.plugins == []
        assert "Failed to load plugin module" in capsys.readouterr().out

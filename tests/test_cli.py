# tests/test_cli.py
from __future__ import annotations

from dataclasses import dataclass, field

import pytest

import gadb_cli.cli as cli
from gadb_cli.config import YAMLConfig, load_defaults_yaml
from gadb_cli.device import Device
from gadb_cli.errors import CommandFailedError, LaunchError
from gadb_cli.kernel import Kernel


@dataclass
class FakeUI:
    """
    UI abstraction used by CLI:
      - read(prompt) -> str
      - write(text) -> None
    """

    inputs: list = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)

    def read(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.inputs:
            raise EOFError
        item = self.inputs.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def write(self, text: str) -> None:
        self.outputs.append(text)


# -------------------------------------------------------------------
# Helper: Create fake dependencies
# -------------------------------------------------------------------


class FakeRegistry:
    def __init__(self, devices=None, error=None):
        self.devices = list(devices or [])
        self.error = error

    def scan(self):
        if self.error is not None:
            raise self.error
        return list(self.devices)


class FakeRouter:
    def __init__(self):
        self.executed = []
        self.fail_serials: dict[str, int] = {}
        self.crash: Exception | None = None

    def execute(self, device, parsed):
        if self.crash is not None:
            raise self.crash
        self.executed.append((device.serial, parsed))
        code = self.fail_serials.get(device.serial)
        if code:
            raise CommandFailedError(["adb", "-s", device.serial, *parsed.args], code)

    def execute_all(self, devices, parsed):
        for d in devices:
            self.execute(d, parsed)


@pytest.fixture
def cfg() -> YAMLConfig:
    return YAMLConfig(load_defaults_yaml("system.yaml"))


def scripted(*answers):
    items = list(answers)

    def _read(prompt):
        if not items:
            raise EOFError
        return items.pop(0)

    return _read


# -------------------------------------------------------------------
# Single-command mode
# -------------------------------------------------------------------


def test_devices_keyword_prints_table_and_exits_zero(cfg):
    out: list[str] = []
    registry = FakeRegistry([Device("A", model="Pixel_7"), Device("B")])

    code = cli.run_single(["devices"], registry, FakeRouter(), cfg, output_fn=out.append)

    assert code == 0
    table = out[0].splitlines()
    assert table[0].split() == ["#", "SERIAL", "STATE", "MODEL", "PRODUCT"]
    assert "Pixel_7" in table[1]
    assert table[2].split()[:2] == ["2", "B"]


def test_devices_keyword_with_nothing_attached(cfg):
    out: list[str] = []

    code = cli.run_single(["devices"], FakeRegistry([]), FakeRouter(), cfg, output_fn=out.append)

    assert code == 0
    assert out == ["No device found"]


def test_devices_keyword_exits_zero_even_if_listing_fails(cfg):
    out: list[str] = []
    registry = FakeRegistry(error=LaunchError("Failed to run adb"))

    assert cli.run_single(["devices", "-l"], registry, FakeRouter(), cfg, output_fn=out.append) == 0


def test_single_command_runs_on_only_device(cfg):
    router = FakeRouter()

    code = cli.run_single(
        ["shell", "ps", "|", "grep", "foo"],
        FakeRegistry([Device("A")]),
        router,
        cfg,
        output_fn=lambda s: None,
    )

    assert code == 0
    serial, parsed = router.executed[0]
    assert serial == "A"
    assert parsed.args == ("shell", "ps")
    assert parsed.pipe_args == ("grep", "foo")


def test_apk_argument_becomes_install(cfg):
    router = FakeRouter()

    cli.run_single(["build/App.APK"], FakeRegistry([Device("A")]), router, cfg, output_fn=lambda s: None)

    assert router.executed[0][1].args == ("install", "-r", "build/App.APK")


def test_apk_shortcut_needs_single_argument(cfg):
    assert cli.apply_apk_shortcut(["install", "app.apk"], cfg) == ["install", "app.apk"]
    assert cli.apply_apk_shortcut(["app.apk"], cfg) == ["install", "-r", "app.apk"]


def test_single_command_without_devices_fails(cfg):
    out: list[str] = []

    code = cli.run_single(["reboot"], FakeRegistry([]), FakeRouter(), cfg, output_fn=out.append)

    assert code == 1
    assert "No device found" in out[0]


def test_single_command_returns_failing_exit_status(cfg):
    router = FakeRouter()
    router.fail_serials["A"] = 7

    code = cli.run_single(["shell", "false"], FakeRegistry([Device("A")]), router, cfg, output_fn=lambda s: None)

    assert code == 7


def test_single_command_fan_out_stops_at_first_failure(cfg):
    router = FakeRouter()
    router.fail_serials["B"] = 1
    devices = [Device("A"), Device("B"), Device("C")]

    code = cli.run_single(
        ["reboot"],
        FakeRegistry(devices),
        router,
        cfg,
        input_fn=scripted("all"),
        output_fn=lambda s: None,
    )

    assert code == 1
    assert [s for s, _ in router.executed] == ["A", "B"]


def test_single_command_menu_quit_is_success(cfg):
    router = FakeRouter()

    code = cli.run_single(
        ["reboot"],
        FakeRegistry([Device("A"), Device("B")]),
        router,
        cfg,
        input_fn=scripted("q"),
        output_fn=lambda s: None,
    )

    assert code == 0
    assert router.executed == []


def test_single_command_menu_ctrl_c_is_success(cfg):
    router = FakeRouter()
    out: list[str] = []

    def interrupted(prompt):
        raise KeyboardInterrupt

    code = cli.run_single(
        ["reboot"],
        FakeRegistry([Device("A"), Device("B")]),
        router,
        cfg,
        input_fn=interrupted,
        output_fn=out.append,
    )

    assert code == 0
    assert out[-1] == "Exiting..."
    assert router.executed == []


# -------------------------------------------------------------------
# REPL loop
# -------------------------------------------------------------------


def make_kernel(cfg, devices, router=None):
    k = Kernel(
        registry=FakeRegistry(devices),
        router=router or FakeRouter(),
        config=cfg,
        input_fn=scripted(),
        output_fn=lambda s: None,
    )
    k.start()
    return k


def test_repl_exit_command_returns_zero(cfg):
    k = make_kernel(cfg, [Device("A")])
    ui = FakeUI(inputs=["exit", "never-read"])

    assert cli.run_repl(k, ui=ui) == 0
    assert ui.inputs == ["never-read"]


def test_repl_end_of_input_stops(cfg):
    k = make_kernel(cfg, [Device("A")])
    ui = FakeUI(inputs=["help"])

    assert cli.run_repl(k, ui=ui) == 0
    assert not k.running
    assert any("Exiting..." in o for o in ui.outputs)


def test_repl_ctrl_c_on_empty_line_stops(cfg):
    k = make_kernel(cfg, [Device("A")])
    ui = FakeUI(inputs=[KeyboardInterrupt()])

    assert cli.run_repl(k, ui=ui) == 0
    assert not k.running


def test_repl_passes_empty_line_to_kernel_for_status(cfg):
    k = make_kernel(cfg, [Device("A")])
    ui = FakeUI(inputs=[""])

    cli.run_repl(k, ui=ui)

    assert any("Devices: 1 connected" in o for o in ui.outputs)


def test_repl_error_keeps_session_alive(cfg):
    router = FakeRouter()
    router.fail_serials["A"] = 1
    k = make_kernel(cfg, [Device("A")], router)
    ui = FakeUI(inputs=["shell false", "shell true"])

    cli.run_repl(k, ui=ui)

    assert len(router.executed) == 2
    assert any("[ERR]" in o for o in ui.outputs)


def test_repl_unexpected_exception_writes_crash_log(cfg, tmp_path, monkeypatch):
    monkeypatch.setenv("GADB_DATA_HOME", str(tmp_path))
    router = FakeRouter()
    router.crash = RuntimeError("unexpected")
    k = make_kernel(cfg, [Device("A")], router)
    ui = FakeUI(inputs=["shell ps"])

    cli.run_repl(k, ui=ui)

    log = (tmp_path / "gadb" / "logs" / "crash.log").read_text(encoding="utf-8")
    assert "raw=shell ps" in log
    assert "serial=A" in log
    assert any("Unhandled exception: RuntimeError" in o for o in ui.outputs)


def test_repl_without_ui_uses_input_and_output_fns(cfg):
    k = make_kernel(cfg, [Device("A")])
    out: list[str] = []
    prompts: list[str] = []

    def read(prompt):
        prompts.append(prompt)
        return "q"

    assert cli.run_repl(k, input_fn=read, output_fn=out.append) == 0
    assert "[GADB]" in prompts[0]
    assert out == ["Exiting..."]


# -------------------------------------------------------------------
# main()
# -------------------------------------------------------------------


def test_main_single_command_exit_status(monkeypatch):
    captured = {}

    def fake_run_single(args, registry, router, cfg, **kwargs):
        captured["args"] = args
        return 3

    monkeypatch.setattr(cli, "run_single", fake_run_single)
    monkeypatch.setattr(cli.sys, "argv", ["gadb", "shell", "ps"])
    monkeypatch.delenv("GADB_CONFIG", raising=False)

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 3
    assert captured["args"] == ["shell", "ps"]


def test_main_with_no_devices_exits_zero_without_prompt(monkeypatch, capsys):
    monkeypatch.setattr(cli.AdbDeviceRegistry, "scan", lambda self: [])
    monkeypatch.setattr(cli.sys, "argv", ["gadb"])
    monkeypatch.delenv("GADB_CONFIG", raising=False)

    def no_repl(*args, **kwargs):
        raise AssertionError("REPL must not start")

    monkeypatch.setattr(cli, "run_repl", no_repl)

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 0
    assert "No devices found" in capsys.readouterr().out

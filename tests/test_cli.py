import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from webdriver_check import cli
from webdriver_check.models.diagnostics import DiagnosticReport, SmokeReport, StatusCheck
from webdriver_check.models.session import ReapReport
from webdriver_check.session_manager import browser
from webdriver_check.tools import diagnostic_tools, service_tools, smoke_tools


def _output(capsys):
    return json.loads(capsys.readouterr().out)


def test_parser_defaults():
    args = cli.build_parser().parse_args(["smoke"])
    assert args.command == "smoke"
    assert args.env == []
    assert args.port is None
    assert args.service is None


def test_parser_rejects_unknown_browser():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["diagnose", "--browser", "netscape"])


def test_bad_env_pair_exits_with_usage_error():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["smoke", "--env", "NOEQUALS"])
    assert excinfo.value.code == 2


def test_diagnose_exit_code(monkeypatch, capsys):
    report = DiagnosticReport(browser="chrome", status=StatusCheck(url="x", ok=False))
    monkeypatch.setattr(diagnostic_tools, "run_diagnostics", MagicMock(return_value=report))

    assert cli.main(["diagnose"]) == 1
    assert _output(capsys)["ok"] is False


def test_smoke_builds_config(monkeypatch, capsys):
    captured = {}

    def fake_smoke(manager, session_config, url):
        captured["config"] = session_config
        return SmokeReport(ok=True, browser=session_config.browser, url=url)

    monkeypatch.setattr(smoke_tools, "run_smoke_test", fake_smoke)

    code = cli.main(
        ["smoke", "--browser", "firefox", "--port", "4555", "--env", "MOZ_LOG=1", "--headed", "--url", "https://a.test"]
    )

    assert code == 0
    cfg = captured["config"]
    assert cfg.browser == "firefox"
    assert cfg.port == 4555
    assert cfg.headless is False
    assert cfg.env["MOZ_LOG"] == "1"
    assert _output(capsys)["url"] == "https://a.test"


def test_remote_failure_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(
        smoke_tools,
        "run_remote_smoke_test",
        MagicMock(return_value=SmokeReport(browser="chrome", url="u", error_type="driver_unreachable")),
    )

    assert cli.main(["remote", "--endpoint", "http://127.0.0.1:9515"]) == 1
    assert _output(capsys)["error_type"] == "driver_unreachable"


def test_reap(monkeypatch, capsys):
    monkeypatch.setattr(browser.DriverSessionManager, "reap_orphans", lambda self: ReapReport(processes_killed=2))

    assert cli.main(["reap"]) == 0
    assert _output(capsys)["processes_killed"] == 2


def test_service_mode(monkeypatch, capsys):
    remote_reap = AsyncMock(return_value={"processes_killed": 0, "directories_removed": 0})
    monkeypatch.setattr(service_tools, "remote_reap", remote_reap)

    assert cli.main(["--service", "http://svc:8025", "reap"]) == 0
    remote_reap.assert_awaited_once_with(base_url="http://svc:8025")


def test_service_mode_error(monkeypatch, capsys):
    monkeypatch.setattr(service_tools, "remote_smoke_test", AsyncMock(return_value={"error": "not reachable"}))

    assert cli.main(["--service", "http://svc:8025", "smoke", "--port", "9515"]) == 1
    body = service_tools.remote_smoke_test.await_args.args[0]
    assert body["port"] == 9515
    assert "driver_binary" not in body

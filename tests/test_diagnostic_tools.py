import socket
from unittest.mock import patch

import pytest

from webdriver_check.models.diagnostics import BinaryCheck, PortCheck, StatusCheck
from webdriver_check.tools import diagnostic_tools
from webdriver_check.tools.diagnostic_tools import (
    check_binary,
    check_log_file,
    check_port,
    check_runtime_user,
    run_diagnostics,
)

from .conftest import posix_only


def test_missing_binary():
    check = check_binary("definitely-not-a-driver-binary")
    assert not check.found
    assert check.error == "not found on PATH"


@posix_only
def test_binary_version(fake_driver):
    check = check_binary(fake_driver)
    assert check.found
    assert check.path == fake_driver
    assert check.version == "FakeDriver 1.0.0"


def test_log_file_tail(tmp_path):
    log = tmp_path / "chromedriver.log"
    log.write_text("".join(f"line {i}\n" for i in range(1, 9)))

    check = check_log_file(str(log))

    assert check.exists
    assert check.lines == 8
    assert check.size == log.stat().st_size
    assert check.tail == ["line 4", "line 5", "line 6", "line 7", "line 8"]


def test_missing_log_file(tmp_path):
    check = check_log_file(str(tmp_path / "nope.log"))
    assert not check.exists
    assert check.tail == []


def test_port_check_sees_listener():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        port = sock.getsockname()[1]
        check = check_port("127.0.0.1", port)
    assert check.listening


def test_runtime_user(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    user = check_runtime_user()
    assert user.user
    assert user.home == str(tmp_path)


def test_run_diagnostics_parses_endpoint(tmp_path):
    log = tmp_path / "driver.log"
    log.write_text("started\n")
    with patch.object(diagnostic_tools, "check_binary", side_effect=lambda name: BinaryCheck(name=name, found=True)), \
         patch.object(diagnostic_tools, "find_processes", return_value=[]), \
         patch.object(diagnostic_tools, "check_port", return_value=PortCheck(host="10.0.0.5", port=4545)) as check_port_mock, \
         patch.object(diagnostic_tools, "check_status", return_value=StatusCheck(ok=True, url="x", status=200)) as status_mock:
        report = run_diagnostics("Firefox", "http://10.0.0.5:4545", [str(log)])

    assert report.browser == "firefox"
    assert report.ok
    check_port_mock.assert_called_once_with("10.0.0.5", 4545)
    status_mock.assert_called_once_with("http://10.0.0.5:4545")
    assert [b.name for b in report.binaries] == ["firefox", "geckodriver"]
    assert report.log_files[0].tail == ["started"]
    assert report.screenshot is None


def test_run_diagnostics_unknown_browser():
    with pytest.raises(KeyError):
        run_diagnostics("netscape")


def test_report_not_ok_when_binary_missing():
    with patch.object(diagnostic_tools, "check_binary", side_effect=lambda name: BinaryCheck(name=name)), \
         patch.object(diagnostic_tools, "find_processes", return_value=[]), \
         patch.object(diagnostic_tools, "check_port", return_value=PortCheck(host="127.0.0.1", port=9515)), \
         patch.object(diagnostic_tools, "check_status", return_value=StatusCheck(ok=True, url="x", status=200)):
        report = run_diagnostics("chrome", log_files=[])

    assert not report.ok

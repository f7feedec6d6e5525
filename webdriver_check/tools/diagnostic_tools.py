"""Checks that a browser + driver pair is installed, running and reachable."""

from __future__ import annotations

import getpass
import logging
import os
import shutil
import subprocess
import tempfile
from collections import deque
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import urlsplit

import psutil

from .. import config
from ..constants import DRIVER_FLAVORS, TAIL_LINES
from ..models.diagnostics import (
    BinaryCheck,
    DiagnosticReport,
    LogFileCheck,
    PortCheck,
    ProcessInfo,
    RuntimeUser,
    ScreenshotCheck,
    StatusCheck,
)
from ..session_manager.health import probe_status
from ..session_manager.processes import port_in_use

logger = logging.getLogger(__name__)


def check_binary(name: str) -> BinaryCheck:
    """Locate ``name`` on PATH and ask it for ``--version``."""
    path = shutil.which(name)
    if path is None:
        return BinaryCheck(name=name, error="not found on PATH")
    check = BinaryCheck(name=name, found=True, path=path)
    try:
        result = subprocess.run([path, "--version"], capture_output=True, text=True, timeout=10)
        check.version = (result.stdout or result.stderr).strip() or None
    except (OSError, subprocess.TimeoutExpired) as e:
        check.error = f"--version failed: {e}"
    return check


def find_processes(names: Sequence[str]) -> list[ProcessInfo]:
    """Running processes whose name contains any of ``names``."""
    wanted = [n.lower() for n in names]
    found = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        name = (proc.info.get("name") or "").lower()
        if not any(w in name for w in wanted):
            continue
        cmdline = " ".join(proc.info.get("cmdline") or [])
        found.append(ProcessInfo(pid=proc.pid, name=proc.info["name"], cmdline=cmdline[:300]))
    return found


def check_port(host: str, port: int) -> PortCheck:
    """Whether something listens on ``port``, and which processes own it."""
    check = PortCheck(host=host, port=port)
    try:
        for conn in psutil.net_connections(kind="tcp"):
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                check.listening = True
                if conn.pid:
                    check.pids.append(conn.pid)
    except psutil.AccessDenied:
        logger.info("Listing sockets needs more privileges, falling back to connect()")
    if not check.listening:
        check.listening = port_in_use(host, port)
    return check


def check_status(endpoint: str, timeout: float = 5.0) -> StatusCheck:
    return StatusCheck(**probe_status(endpoint, timeout))


def check_log_file(path: str) -> LogFileCheck:
    check = LogFileCheck(path=path)
    file = Path(path)
    if not file.is_file():
        return check
    check.exists = True
    tail: deque[str] = deque(maxlen=TAIL_LINES)
    try:
        check.size = file.stat().st_size
        with open(file, encoding="utf-8", errors="replace") as fh:
            for line in fh:
                check.lines += 1
                tail.append(line.rstrip("\n"))
    except OSError as e:
        tail.append(f"unreadable: {e}")
    check.tail = list(tail)
    return check


def check_runtime_user() -> RuntimeUser:
    home = os.environ.get("HOME")
    owner = None
    if home:
        try:
            owner = f"{Path(home).owner()}:{Path(home).group()}"
        except (OSError, KeyError, NotImplementedError):
            owner = None
    return RuntimeUser(user=getpass.getuser(), home=home, home_owner=owner)


def check_screenshot(browser: str, url: str, timeout: float = config.SCREENSHOT_TIMEOUT) -> ScreenshotCheck:
    """Drive the browser binary directly to take a headless screenshot."""
    flavor = DRIVER_FLAVORS[browser]
    binary = config.BROWSER_PATH or flavor["browser_binary"]
    with tempfile.TemporaryDirectory(prefix="webdriver-check-") as tmp:
        target = Path(tmp) / "screenshot.png"
        command = [binary, *(a.format(path=target) for a in flavor["screenshot_args"]), url]
        check = ScreenshotCheck(command=command)
        try:
            result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
            check.output = (result.stdout + result.stderr).strip()[-2000:]
        except subprocess.TimeoutExpired as e:
            check.output = f"timed out after {timeout}s"
            logger.warning(f"Screenshot command timed out: {e}")
        except OSError as e:
            check.output = str(e)
        if target.exists():
            check.ok = True
            check.size = target.stat().st_size
    return check


def run_diagnostics(
    browser: str = config.BROWSER,
    endpoint: Optional[str] = None,
    log_files: Optional[Sequence[str]] = None,
    screenshot: bool = False,
    url: str = config.SMOKE_URL,
) -> DiagnosticReport:
    """Collect every check for ``browser`` into one report."""
    browser = browser.lower()
    flavor = DRIVER_FLAVORS[browser]
    host = config.DRIVER_HOST
    port = config.DRIVER_PORT or flavor["default_port"]
    if endpoint:
        parts = urlsplit(endpoint)
        host = parts.hostname or host
        port = parts.port or port
    else:
        endpoint = f"http://{host}:{port}"
    logger.info(f"Running {browser} diagnostics against {endpoint}")

    report = DiagnosticReport(browser=browser)
    report.binaries = [
        check_binary(config.BROWSER_PATH or flavor["browser_binary"]),
        check_binary(config.DRIVER_PATH or flavor["driver_binary"]),
    ]
    report.processes = find_processes(flavor["process_names"])
    report.port = check_port(host, port)
    report.status = check_status(endpoint)
    report.log_files = [check_log_file(p) for p in (config.LOG_FILES if log_files is None else log_files)]
    report.runtime_user = check_runtime_user()
    if screenshot:
        report.screenshot = check_screenshot(browser, url)
    return report

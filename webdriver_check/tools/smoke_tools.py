"""Smoke tests: launch a browser, load a page, tear everything down."""

from __future__ import annotations

import logging
import time
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

from .. import config
from ..constants import PERMISSION_ERROR_MARKERS
from ..errors import SessionError, StartupError
from ..models.diagnostics import SmokeReport
from ..models.session import PageInfo, SessionConfig
from ..session_manager.browser import DriverSessionManager, run_bounded
from ..session_manager.connection import (
    CLIENT_ERRORS,
    Connector,
    minimal_connector,
    selenium_connector,
)
from ..session_manager.health import probe_status

logger = logging.getLogger(__name__)


def run_smoke_test(
    manager: DriverSessionManager,
    session_config: SessionConfig,
    url: str = config.SMOKE_URL,
) -> SmokeReport:
    """Start a managed driver, navigate to ``url`` and close the session.

    Never raises for startup or navigation failures; they are reported.
    """
    began = time.monotonic()
    report = SmokeReport(browser=session_config.browser, url=url)
    try:
        session = manager.start(session_config)
    except StartupError as e:
        report.attempts = e.attempts
        report.error = str(e)
        report.error_type = e.kind.value
        report.duration_seconds = round(time.monotonic() - began, 3)
        logger.error(f"Smoke test could not start a driver: {e}")
        return report

    try:
        report.attempts = session.attempts
        report.endpoint = session.endpoint
        report.strategy = session.strategy
        report.page = manager.navigate(session, url)
        report.ok = True
        logger.info(f"Smoke test passed: '{report.page.title}'")
    except SessionError as e:
        report.error = str(e)
        report.error_type = e.kind.value
        logger.error(f"Smoke test failed: {e}")
    finally:
        manager.close(session)
        report.cleanup_warnings = [str(w) for w in session.cleanup_warnings]
        report.duration_seconds = round(time.monotonic() - began, 3)
    return report


def _visit(connection, url: str) -> PageInfo:
    connection.get(url)
    return PageInfo(title=connection.title, url=connection.current_url)


def _quit_quietly(connection, timeout: float) -> None:
    try:
        run_bounded(connection.quit, timeout)
    except (FutureTimeout, *CLIENT_ERRORS) as e:
        logger.warning(f"Could not close remote browser cleanly: {e}")


def run_remote_smoke_test(
    endpoint: str,
    browser: str = config.BROWSER,
    url: str = config.SMOKE_URL,
    connector: Connector = selenium_connector,
    fallback_connector: Optional[Connector] = minimal_connector,
    session_config: Optional[SessionConfig] = None,
) -> SmokeReport:
    """Smoke-test a driver that is already running at ``endpoint``.

    The driver process is never stopped. When the full option set fails with
    a root/HOME permission error, one retry is made with minimal options.
    """
    began = time.monotonic()
    session_config = session_config or SessionConfig.for_browser(browser)
    report = SmokeReport(browser=session_config.browser, url=url, endpoint=endpoint)

    status = probe_status(endpoint, session_config.probe_timeout)
    if not status["ok"]:
        report.error = f"driver is not running at {endpoint} ({status['error'] or 'HTTP ' + str(status['status'])})"
        report.error_type = "driver_unreachable"
        report.duration_seconds = round(time.monotonic() - began, 3)
        logger.error(report.error)
        return report
    logger.info(f"Driver is running at {endpoint}")

    connection = None
    try:
        connection = connector(endpoint, session_config, None)
        report.page = _visit(connection, url)
        report.ok = True
    except CLIENT_ERRORS as e:
        report.error = str(e)
        report.error_type = type(e).__name__
        logger.error(f"Remote smoke test failed: {e}")
        if fallback_connector is not None and any(m in str(e) for m in PERMISSION_ERROR_MARKERS):
            logger.warning("Browser permission issue detected, retrying with minimal options")
            if connection is not None:
                _quit_quietly(connection, session_config.quit_timeout)
                connection = None
            report.fallback_used = True
            try:
                connection = fallback_connector(endpoint, session_config, None)
                report.page = _visit(connection, url)
                report.ok = True
                report.error = report.error_type = None
            except CLIENT_ERRORS as e2:
                report.error = f"{e}; minimal options also failed: {e2}"
                report.error_type = type(e2).__name__
    finally:
        if connection is not None:
            _quit_quietly(connection, session_config.quit_timeout)
        report.duration_seconds = round(time.monotonic() - began, 3)
    return report

"""WebDriver session lifecycle: start, navigate, close, orphan reaping."""

from __future__ import annotations

import logging
import sys
import threading
import time
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import psutil

from .. import config as app_config
from ..errors import (
    CleanupWarning,
    DriverLaunchError,
    SessionError,
    SessionErrorKind,
    StartupError,
    StartupErrorKind,
)
from ..models.session import PageInfo, ReapReport, SessionConfig, SessionState, SessionStatus, StartupAttempt
from .connection import CLIENT_ERRORS, Connection, Connector, is_connection_lost, selenium_connector
from .health import wait_until_ready
from .processes import DriverProcess, run_bounded, stop_driver
from .profiles import ProfileHandle, new_profile_path, register_owned, unregister_owned
from .reaper import reap_orphans
from .strategies import StartupStrategy, resolve_strategies

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_TRANSITIONS = {
    SessionState.STARTING: {SessionState.RUNNING, SessionState.CLOSING, SessionState.FAILED},
    SessionState.RUNNING: {SessionState.CLOSING, SessionState.FAILED},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
    SessionState.FAILED: set(),
}


class DriverSession:
    """A started driver process plus its open WebDriver connection."""

    def __init__(self, config: SessionConfig, profile: ProfileHandle):
        self.config = config
        self.profile = profile
        self.process: Optional[DriverProcess] = None
        self.strategy: Optional[str] = None
        self.attempts: list[StartupAttempt] = []
        self.started_at: Optional[datetime] = None
        self.cleanup_warnings: list[CleanupWarning] = []
        self._connection: Optional[Connection] = None
        self._state = SessionState.STARTING
        self._released = False
        self._manager: Optional[DriverSessionManager] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def endpoint(self) -> Optional[str]:
        return self.process.endpoint if self.process else None

    @property
    def connection(self) -> Connection:
        """The WebDriver connection. Only available while running."""
        if self._state is not SessionState.RUNNING or self._connection is None:
            raise SessionError(SessionErrorKind.NOT_RUNNING, f"session is {self._state.value}")
        return self._connection

    def _transition(self, new: SessionState) -> None:
        if new not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"invalid session transition {self._state.value} -> {new.value}")
        logger.debug(f"Session {self.profile.path.name}: {self._state.value} -> {new.value}")
        self._state = new

    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self._state,
            browser=self.config.browser,
            endpoint=self.endpoint,
            pid=self.pid,
            strategy=self.strategy,
            profile_dir=str(self.profile.path),
            started_at=self.started_at.isoformat() if self.started_at else None,
            cleanup_warnings=[str(w) for w in self.cleanup_warnings],
        )

    def close(self) -> None:
        if self._manager is not None:
            self._manager.close(self)

    def __enter__(self) -> "DriverSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<DriverSession {self._state.value} endpoint={self.endpoint} pid={self.pid}>"


class DriverSessionManager:
    """Starts, drives and tears down one WebDriver session at a time.

    Not safe for concurrent use of the same session from several threads;
    ``reap_orphans`` may run from any thread.
    """

    def __init__(
        self,
        connector: Connector = selenium_connector,
        strategies: Optional[list[StartupStrategy]] = None,
        profile_template: str = app_config.PROFILE_TEMPLATE,
        profile_retention: float = app_config.PROFILE_RETENTION,
    ):
        self._connector = connector
        self._strategies = strategies
        self._profile_retention = profile_retention
        self._session: Optional[DriverSession] = None
        self._lock = threading.Lock()
        self._profile_roots: set[tuple[Path, str]] = set()
        self._remember_profile_root(profile_template)

    @property
    def session(self) -> Optional[DriverSession]:
        return self._session

    def _remember_profile_root(self, template: str) -> None:
        path = Path(template)
        root = path.parent.expanduser().absolute()
        with self._lock:
            self._profile_roots.add((root, path.name.split("{token}", 1)[0]))

    # ── start ────────────────────────────────────────────────────────────────

    def start(self, config: SessionConfig) -> DriverSession:
        """Start a driver with the first strategy that yields a responsive one.

        Raises:
            StartupError: SESSION_ACTIVE if a session is already live,
                ALL_STRATEGIES_FAILED with the attempt history otherwise.
        """
        with self._lock:
            if self._session is not None:
                raise StartupError(
                    StartupErrorKind.SESSION_ACTIVE,
                    f"a session is already {self._session.state.value}; close it first",
                )
        self._remember_profile_root(config.profile_template)

        if self._strategies is not None:
            strategies = [s for s in self._strategies if s.applies(config)]
        else:
            strategies = resolve_strategies(config)
        attempts: list[StartupAttempt] = []
        for strategy in strategies:
            began = time.monotonic()
            logger.info(f"Starting {config.browser} driver (strategy={strategy.name})...")
            try:
                session = self._attempt(strategy, config, began + config.startup_timeout)
            except DriverLaunchError as e:
                logger.warning(f"Strategy {strategy.name} failed: {e}")
                attempts.append(
                    StartupAttempt(
                        strategy=strategy.name,
                        reason=str(e),
                        duration_seconds=round(time.monotonic() - began, 3),
                    )
                )
                continue

            attempts.append(
                StartupAttempt(
                    strategy=strategy.name,
                    ok=True,
                    reason="ready",
                    endpoint=session.endpoint,
                    duration_seconds=round(time.monotonic() - began, 3),
                )
            )
            session.attempts = attempts
            logger.info(f"Driver session running at {session.endpoint} (pid={session.pid})")
            return session

        raise StartupError(
            StartupErrorKind.ALL_STRATEGIES_FAILED,
            f"All {len(attempts)} startup strategies failed",
            attempts,
        )

    def _attempt(self, strategy: StartupStrategy, config: SessionConfig, deadline: float) -> DriverSession:
        path = new_profile_path(config.profile_template)
        # owned before it exists, so the reaper never sees it unowned
        register_owned(path)
        try:
            profile = ProfileHandle.create(path)
        except OSError as e:
            unregister_owned(path)
            raise DriverLaunchError(f"could not create profile directory {path}: {e}") from e

        session = DriverSession(config, profile)
        session._manager = self
        with self._lock:
            self._session = session
        try:
            session.process = strategy.launch(config, profile, deadline)
            session.strategy = strategy.name
            wait_until_ready(
                session.process.endpoint,
                deadline,
                config.probe_timeout,
                config.poll_interval,
                is_alive=session.process.is_alive,
            )
            session._connection = self._connect(session, deadline)
        except DriverLaunchError as e:
            if session.process is None:
                session.process = e.process
            self._abandon(session)
            raise
        except BaseException:
            self._abandon(session)
            raise

        session._transition(SessionState.RUNNING)
        session.started_at = datetime.now()
        return session

    def _connect(self, session: DriverSession, deadline: float) -> Connection:
        remaining = max(deadline - time.monotonic(), 0.1)
        try:
            return run_bounded(
                self._connector, remaining, session.endpoint, session.config, session.profile.data_dir
            )
        except FutureTimeout:
            raise DriverLaunchError("WebDriver session was not created before the startup timeout")
        except CLIENT_ERRORS as e:
            raise DriverLaunchError(f"could not create WebDriver session: {e}") from e

    def _abandon(self, session: DriverSession) -> None:
        session._transition(SessionState.FAILED)
        self._release(session)

    # ── navigate ─────────────────────────────────────────────────────────────

    def navigate(self, session: DriverSession, url: str) -> PageInfo:
        """Load ``url`` and report where the browser ended up.

        Raises:
            SessionError: NOT_RUNNING, CONNECTION_LOST (session is then
                FAILED) or NAVIGATION_FAILED (session stays RUNNING).
        """
        connection = session.connection
        logger.info(f"Navigating to {url}...")
        try:
            connection.get(url)
            page = PageInfo(title=connection.title, url=connection.current_url)
        except CLIENT_ERRORS as e:
            if is_connection_lost(e):
                session._transition(SessionState.FAILED)
                logger.error(f"Connection to driver lost: {e}")
                raise SessionError(SessionErrorKind.CONNECTION_LOST, f"connection lost: {e}") from e
            logger.warning(f"Navigation to {url} failed: {e}")
            raise SessionError(SessionErrorKind.NAVIGATION_FAILED, f"navigation failed: {e}") from e
        logger.info(f"Page title: '{page.title}' ({page.url})")
        return page

    # ── close ────────────────────────────────────────────────────────────────

    def close(self, session: DriverSession) -> None:
        """Release everything the session holds. Idempotent; never raises."""
        if session._released or session.state is SessionState.CLOSING:
            return
        if session.state in (SessionState.STARTING, SessionState.RUNNING):
            session._transition(SessionState.CLOSING)
        logger.info("Stopping driver session...")
        try:
            self._release(session)
        finally:
            if session.state is SessionState.CLOSING:
                session._transition(SessionState.CLOSED)
        logger.info("Driver session stopped.")

    def _release(self, session: DriverSession) -> None:
        """Run every teardown step; a failing step becomes a CleanupWarning."""
        session._released = True
        cfg = session.config

        try:
            connection, session._connection = session._connection, None
            if connection is not None:
                try:
                    run_bounded(connection.quit, cfg.quit_timeout)
                except FutureTimeout:
                    self._warn(session, "quit", f"quit did not finish within {cfg.quit_timeout}s")
                except CLIENT_ERRORS as e:
                    self._warn(session, "quit", str(e))
                except Exception as e:
                    # custom connectors, or no new threads at interpreter shutdown
                    self._warn(session, "quit", f"{type(e).__name__}: {e}")

            if session.process is not None:
                try:
                    stop_driver(session.process, cfg.terminate_grace)
                except (psutil.Error, OSError) as e:
                    self._warn(session, "terminate", f"pid {session.process.pid}: {e}")
                except Exception as e:
                    self._warn(session, "terminate", f"pid {session.process.pid}: {type(e).__name__}: {e}")

            try:
                session.profile.remove()
            except OSError as e:
                self._warn(session, "profile", f"{session.profile.path}: {e}")
        finally:
            unregister_owned(session.profile.path)
            with self._lock:
                if self._session is session:
                    self._session = None

    def _warn(self, session: DriverSession, step: str, message: str) -> None:
        warning = CleanupWarning(step, message)
        session.cleanup_warnings.append(warning)
        logger.warning(f"Cleanup warning ({step}): {message}")

    @contextmanager
    def open(self, config: SessionConfig) -> Iterator[DriverSession]:
        """``start`` a session and ``close`` it on every exit path."""
        session = self.start(config)
        try:
            yield session
        finally:
            self.close(session)

    # ── orphans ──────────────────────────────────────────────────────────────

    def reap_orphans(self, grace: float = app_config.TERMINATE_GRACE) -> ReapReport:
        """Kill driver/browser processes and sweep profile directories nobody owns."""
        with self._lock:
            roots = sorted(self._profile_roots)
        report = ReapReport()
        for root, prefix in roots:
            partial = reap_orphans(root, prefix, self._profile_retention, grace)
            report.killed_pids.extend(partial.killed_pids)
            report.removed_directories.extend(partial.removed_directories)
            report.errors.extend(partial.errors)
        report.processes_killed = len(report.killed_pids)
        report.directories_removed = len(report.removed_directories)
        if report.processes_killed or report.directories_removed:
            logger.info(
                f"Reaped {report.processes_killed} orphaned process(es), "
                f"{report.directories_removed} stale profile(s)"
            )
        return report

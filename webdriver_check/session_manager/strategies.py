"""Ordered startup strategies for the driver process.

Each strategy makes one attempt at getting a driver listening; readiness,
connection and cleanup are handled uniformly by the lifecycle manager.
"""

from __future__ import annotations

import logging
import shutil
import time
from concurrent.futures import TimeoutError as FutureTimeout

from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.firefox.service import Service as FirefoxService

from ..constants import (
    CHROME,
    STRATEGY_FIXED_PORT,
    STRATEGY_OS_ASSIGNED_PORT,
    STRATEGY_SELENIUM_SERVICE,
)
from ..errors import DriverLaunchError
from ..models.session import SessionConfig
from .processes import (
    DriverProcess,
    child_environment,
    port_in_use,
    run_bounded,
    spawn,
    wait_for_bound_port,
)
from .profiles import ProfileHandle

logger = logging.getLogger(__name__)


class StartupStrategy:
    """Base class: one way of launching the driver."""

    name = ""

    def applies(self, config: SessionConfig) -> bool:
        return True

    def launch(self, config: SessionConfig, profile: ProfileHandle, deadline: float) -> DriverProcess:
        raise NotImplementedError


def driver_command(config: SessionConfig, profile: ProfileHandle, port: int) -> list[str]:
    """Assemble the driver command line from the flavor table."""
    flavor = config.flavor
    placeholders = {
        "port": port,
        "profile_dir": profile.path,
        "data_dir": profile.data_dir,
        "log_path": profile.driver_log,
    }
    command = [config.driver_executable]
    command.extend(a.format(**placeholders) for a in flavor["port_args"])
    command.extend(a.format(**placeholders) for a in flavor["profile_marker_args"])
    command.extend(config.driver_args)
    return command


class FixedPortStrategy(StartupStrategy):
    """Spawn the driver on the configured port."""

    name = STRATEGY_FIXED_PORT

    def applies(self, config: SessionConfig) -> bool:
        return config.port is not None

    def launch(self, config: SessionConfig, profile: ProfileHandle, deadline: float) -> DriverProcess:
        if port_in_use(config.host, config.port):
            raise DriverLaunchError(f"port {config.port} is already in use")
        command = driver_command(config, profile, config.port)
        popen = spawn(command, child_environment(config.env), profile.stdout_log)
        return DriverProcess(pid=popen.pid, host=config.host, port=config.port, command=command, popen=popen)


class OsAssignedPortStrategy(StartupStrategy):
    """Spawn the driver on port 0 and read the bound port back."""

    name = STRATEGY_OS_ASSIGNED_PORT

    def launch(self, config: SessionConfig, profile: ProfileHandle, deadline: float) -> DriverProcess:
        command = driver_command(config, profile, 0)
        popen = spawn(command, child_environment(config.env), profile.stdout_log)
        proc = DriverProcess(pid=popen.pid, host=config.host, port=0, command=command, popen=popen)
        try:
            proc.port = wait_for_bound_port(proc, deadline, config.poll_interval)
        except DriverLaunchError as e:
            e.process = proc
            raise
        logger.info(f"Driver {proc.pid} bound port {proc.port}")
        return proc


class SeleniumServiceStrategy(StartupStrategy):
    """Let Selenium's driver ``Service`` launch the binary on a port it picks."""

    name = STRATEGY_SELENIUM_SERVICE

    @staticmethod
    def _launch_error(config: SessionConfig, service, message: str) -> DriverLaunchError:
        """A launch error that hands back whatever process the Service spawned."""
        pid = getattr(getattr(service, "process", None), "pid", None)
        if not pid:
            return DriverLaunchError(message)
        return DriverLaunchError(
            message,
            process=DriverProcess(pid=pid, host=config.host, port=service.port, service=service),
        )

    def launch(self, config: SessionConfig, profile: ProfileHandle, deadline: float) -> DriverProcess:
        executable = shutil.which(config.driver_executable)
        if executable is None:
            raise DriverLaunchError(f"driver binary '{config.driver_executable}' not found")

        service_cls = ChromeService if config.browser == CHROME else FirefoxService
        command = driver_command(config, profile, 0)
        # Service adds its own port flags
        service_args = command[1 + len(config.flavor["port_args"]):]
        service = service_cls(
            executable_path=executable,
            service_args=service_args,
            env=child_environment(config.env),
            log_output=str(profile.stdout_log),
        )
        try:
            # Service.start polls on its own schedule; the worker is abandoned on timeout
            run_bounded(service.start, max(deadline - time.monotonic(), 0.1))
        except FutureTimeout as e:
            raise self._launch_error(
                config, service, "selenium Service did not start before the startup timeout"
            ) from e
        except (WebDriverException, OSError) as e:
            raise self._launch_error(config, service, f"selenium Service failed to start: {e}") from e

        return DriverProcess(
            pid=service.process.pid,
            host=config.host,
            port=service.port,
            command=[executable, *service_args],
            service=service,
        )


STRATEGIES = {
    s.name: s
    for s in (FixedPortStrategy(), OsAssignedPortStrategy(), SeleniumServiceStrategy())
}


def resolve_strategies(config: SessionConfig) -> list[StartupStrategy]:
    """Strategies to try for ``config``, in order, skipping ones that don't apply."""
    resolved = []
    for name in config.strategies:
        strategy = STRATEGIES.get(name)
        if strategy is None:
            raise ValueError(f"unknown startup strategy '{name}'")
        if strategy.applies(config):
            resolved.append(strategy)
    return resolved

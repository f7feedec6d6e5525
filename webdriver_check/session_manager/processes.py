"""Driver process helpers: spawning, port read-back, escalating termination."""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

import psutil

from ..errors import DriverLaunchError

logger = logging.getLogger(__name__)


@dataclass
class DriverProcess:
    """A started driver process and the endpoint it listens on."""

    pid: int
    host: str
    port: int
    command: list[str] = field(default_factory=list)
    popen: Optional[subprocess.Popen] = None
    service: object = None  # selenium Service when launched through Selenium

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}"

    def is_alive(self) -> bool:
        if self.popen is not None:
            return self.popen.poll() is None
        try:
            proc = psutil.Process(self.pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def exit_code(self) -> Optional[int]:
        if self.popen is not None:
            return self.popen.poll()
        return None


def run_bounded(fn: Callable, timeout: float, *args):
    """Run ``fn`` in a worker thread and wait at most ``timeout`` seconds.

    Raises concurrent.futures.TimeoutError when the call is still running;
    the worker is abandoned, not interrupted.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webdriver-check")
    try:
        return executor.submit(fn, *args).result(timeout=timeout)
    finally:
        executor.shutdown(wait=False)


def child_environment(overrides: Mapping[str, str]) -> dict[str, str]:
    """Environment block for a spawned driver. ``os.environ`` is left untouched."""
    env = dict(os.environ)
    env.update(overrides)
    return env


def port_in_use(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.5)
        return sock.connect_ex((host, port)) == 0


def spawn(command: Sequence[str], env: Mapping[str, str], stdout_log: Path) -> subprocess.Popen:
    """Start ``command`` in its own process group, output going to ``stdout_log``."""
    logger.info(f"Spawning driver: {' '.join(command)}")
    try:
        with open(stdout_log, "wb") as out:
            return subprocess.Popen(
                list(command),
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
    except OSError as e:
        raise DriverLaunchError(f"could not execute {command[0]}: {e}") from e


def listening_ports(pid: int) -> list[int]:
    """TCP ports the process is listening on, in ascending order."""
    try:
        conns = psutil.Process(pid).net_connections(kind="tcp")
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []
    return sorted({c.laddr.port for c in conns if c.status == psutil.CONN_LISTEN and c.laddr})


def wait_for_bound_port(proc: DriverProcess, deadline: float, interval: float) -> int:
    """Read the actually bound port back from the started process.

    Raises DriverLaunchError if the process exits or binds nothing before
    ``deadline`` (a ``time.monotonic()`` value).
    """
    while True:
        ports = listening_ports(proc.pid)
        if ports:
            return ports[0]
        if not proc.is_alive():
            raise DriverLaunchError(f"driver exited with code {proc.exit_code()} before binding a port")
        if time.monotonic() >= deadline:
            raise DriverLaunchError("driver did not bind a port before the startup timeout")
        time.sleep(interval)


def terminate_tree(pid: int, grace: float) -> list[int]:
    """Stop a process and all its descendants.

    Sends SIGTERM, waits up to ``grace`` seconds, then SIGKILLs whatever is
    left. Returns the pids that were signalled. A process that is already
    gone is not an error.
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []
    try:
        procs = root.children(recursive=True)
    except psutil.NoSuchProcess:
        procs = []
    procs.append(root)

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        logger.warning(f"Process {proc.pid} ignored SIGTERM, killing")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    if alive:
        _, still_alive = psutil.wait_procs(alive, timeout=grace or 1.0)
        if still_alive:
            raise psutil.TimeoutExpired(grace, pid=still_alive[0].pid)
    return [proc.pid for proc in procs]


def stop_driver(proc: DriverProcess, grace: float) -> None:
    """Terminate a driver process tree and reap the Popen handle.

    A selenium Service is stopped after its process is gone, so it only
    reaps its own Popen and closes the log file it opened.
    """
    terminate_tree(proc.pid, grace)
    if proc.service is not None:
        proc.service.stop()
    if proc.popen is not None:
        try:
            proc.popen.wait(timeout=grace or 1.0)
        except subprocess.TimeoutExpired:
            logger.warning(f"Driver {proc.pid} did not exit after kill")

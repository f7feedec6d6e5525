import os
import stat
import sys
from pathlib import Path

import pytest

from webdriver_check.models.session import SessionConfig
from webdriver_check.session_manager.browser import DriverSessionManager
from webdriver_check.session_manager.processes import terminate_tree
from webdriver_check.session_manager.reaper import find_candidates

FAKE_DRIVER = Path(__file__).with_name("fake_driver.py")

posix_only = pytest.mark.skipif(os.name != "posix", reason="fake driver wrapper is a shell script")


class FakeConnection:
    """Quacks like a Selenium WebDriver for the calls the manager makes."""

    def __init__(self, endpoint, fail_with=None, quit_error=None):
        self.endpoint = endpoint
        self.fail_with = fail_with
        self.quit_error = quit_error
        self.title = ""
        self.current_url = "about:blank"
        self.visited = []
        self.quit_calls = 0

    def get(self, url):
        if self.fail_with is not None:
            raise self.fail_with
        self.visited.append(url)
        self.current_url = url
        self.title = "Example Domain"

    def quit(self):
        self.quit_calls += 1
        if self.quit_error is not None:
            raise self.quit_error


class FakeConnector:
    """Connector that records every connection it hands out."""

    def __init__(self, fail_with=None, connect_error=None):
        self.fail_with = fail_with
        self.connect_error = connect_error
        self.connections = []
        self.calls = []

    def __call__(self, endpoint, config, data_dir):
        self.calls.append((endpoint, config, data_dir))
        if self.connect_error is not None:
            raise self.connect_error
        connection = FakeConnection(endpoint, fail_with=self.fail_with)
        self.connections.append(connection)
        return connection


@pytest.fixture
def fake_driver(tmp_path):
    """Executable that behaves like chromedriver for the bits we need."""
    wrapper = tmp_path / "fake-chromedriver"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_DRIVER}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture
def profile_root(tmp_path):
    return tmp_path / "profiles"


@pytest.fixture
def profile_template(profile_root):
    return str(profile_root / "profile-{token}")


@pytest.fixture
def make_config(fake_driver, profile_template):
    def factory(**overrides):
        values = {
            "browser": "chrome",
            "driver_binary": fake_driver,
            "profile_template": profile_template,
            "strategies": ("os-assigned-port",),
            "startup_timeout": 10.0,
            "probe_timeout": 1.0,
            "poll_interval": 0.05,
            "quit_timeout": 1.0,
            "terminate_grace": 2.0,
        }
        values.update(overrides)
        return SessionConfig(**values)

    return factory


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def manager(connector, profile_template, profile_root):
    mgr = DriverSessionManager(connector=connector, profile_template=profile_template, profile_retention=3600)
    yield mgr
    if mgr.session is not None:
        mgr.close(mgr.session)
    for proc, _ in list(find_candidates(profile_root.absolute(), "profile-")):
        terminate_tree(proc.pid, 1.0)

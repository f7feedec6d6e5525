import json
import os

import pytest
from pydantic import ValidationError

from webdriver_check import config
from webdriver_check.errors import CleanupWarning, StartupError, StartupErrorKind
from webdriver_check.models.session import SessionConfig, StartupAttempt
from webdriver_check.session_manager.profiles import ProfileHandle, new_profile_path, read_owner


class TestSessionConfig:
    def test_port_zero_means_os_assigned(self):
        assert SessionConfig(port=0).port is None

    def test_port_out_of_range(self):
        with pytest.raises(ValidationError):
            SessionConfig(port=70000)

    def test_template_needs_token(self, tmp_path):
        with pytest.raises(ValidationError):
            SessionConfig(profile_template=str(tmp_path / "profile"))
        with pytest.raises(ValidationError):
            SessionConfig(profile_template=str(tmp_path / "{token}" / "profile"))

    def test_unknown_browser(self):
        with pytest.raises(ValidationError):
            SessionConfig(browser="netscape")

    def test_browser_is_case_insensitive(self):
        assert SessionConfig(browser="FireFox").browser == "firefox"

    def test_frozen(self):
        cfg = SessionConfig()
        with pytest.raises(ValidationError):
            cfg.port = 1234

    def test_for_browser_ignores_unset_overrides(self):
        cfg = SessionConfig.for_browser("chrome", port=None, startup_timeout=None, driver_binary="/opt/cd")
        assert cfg.startup_timeout == config.STARTUP_TIMEOUT
        assert cfg.driver_executable == "/opt/cd"

    def test_profile_root_and_prefix(self, tmp_path):
        cfg = SessionConfig(profile_template=str(tmp_path / "wdc-{token}-x"))
        assert cfg.profile_root == tmp_path
        assert cfg.profile_prefix == "wdc-"

    def test_driver_executable_defaults_to_flavor(self):
        assert SessionConfig(browser="firefox").driver_executable == "geckodriver"

    def test_unknown_strategy_is_rejected(self):
        with pytest.raises(ValidationError, match="bogus"):
            SessionConfig(strategies=("os-assigned-port", "bogus"))

    def test_empty_strategy_list_is_rejected(self):
        with pytest.raises(ValidationError):
            SessionConfig(strategies=())

    def test_strategy_subset_and_order_are_kept(self):
        cfg = SessionConfig(strategies=["selenium-service", "fixed-port"])
        assert cfg.strategies == ("selenium-service", "fixed-port")


class TestProfiles:
    def test_new_paths_are_unique_and_absolute(self, tmp_path):
        template = str(tmp_path / "profile-{token}")
        paths = {new_profile_path(template) for _ in range(50)}
        assert len(paths) == 50
        assert all(p.is_absolute() and p.parent == tmp_path for p in paths)

    def test_create_writes_owner_marker(self, tmp_path):
        handle = ProfileHandle.create(tmp_path / "profile-1")

        owner = read_owner(handle.path)
        assert owner.owner_pid == os.getpid()
        assert owner.owner_started > 0
        assert handle.data_dir.is_dir()
        assert json.loads((handle.path / "owner.json").read_text())["owner_pid"] == os.getpid()

    def test_create_refuses_existing_directory(self, tmp_path):
        (tmp_path / "profile-2").mkdir()
        with pytest.raises(FileExistsError):
            ProfileHandle.create(tmp_path / "profile-2")

    def test_remove(self, tmp_path):
        handle = ProfileHandle.create(tmp_path / "profile-3")
        (handle.data_dir / "Cookies").write_text("x")
        handle.remove()
        handle.remove()
        assert not handle.exists()


class TestErrors:
    def test_startup_error_lists_attempts(self):
        err = StartupError(
            StartupErrorKind.ALL_STRATEGIES_FAILED,
            "All 2 startup strategies failed",
            [
                StartupAttempt(strategy="fixed-port", reason="port 9515 is already in use"),
                StartupAttempt(strategy="os-assigned-port", reason="driver exited with code 1"),
            ],
        )
        assert err.kind is StartupErrorKind.ALL_STRATEGIES_FAILED
        assert "fixed-port: port 9515 is already in use" in str(err)
        assert "os-assigned-port: driver exited" in str(err)
        assert len(err.attempts) == 2

    def test_cleanup_warning(self):
        warning = CleanupWarning("profile", "permission denied")
        assert warning.step == "profile"
        assert str(warning) == "profile: permission denied"

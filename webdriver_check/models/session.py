"""Pydantic models for session configuration and lifecycle reports."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .. import config
from ..constants import DEFAULT_STRATEGIES, DRIVER_FLAVORS, SUPPORTED_BROWSERS


class SessionState(str, Enum):
    """Lifecycle state of a driver session."""

    STARTING = "starting"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


class SessionConfig(BaseModel):
    """How a driver session should be started. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    browser: str = config.BROWSER
    driver_binary: Optional[str] = None  # defaults to the flavor binary
    browser_binary: Optional[str] = None
    host: str = config.DRIVER_HOST
    port: Optional[int] = None  # None means OS-assigned
    headless: bool = True
    driver_args: tuple[str, ...] = ()
    browser_args: tuple[str, ...] = ()
    profile_template: str = config.PROFILE_TEMPLATE
    env: dict[str, str] = Field(default_factory=dict)
    startup_timeout: float = Field(default=config.STARTUP_TIMEOUT, gt=0)
    probe_timeout: float = Field(default=config.PROBE_TIMEOUT, gt=0)
    poll_interval: float = Field(default=config.POLL_INTERVAL, gt=0)
    quit_timeout: float = Field(default=config.QUIT_TIMEOUT, gt=0)
    terminate_grace: float = Field(default=config.TERMINATE_GRACE, ge=0)
    strategies: tuple[str, ...] = DEFAULT_STRATEGIES

    @field_validator("browser")
    @classmethod
    def _known_browser(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_BROWSERS:
            raise ValueError(f"unsupported browser '{value}', expected one of {SUPPORTED_BROWSERS}")
        return value

    @field_validator("port")
    @classmethod
    def _zero_means_os_assigned(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and not 0 <= value <= 65535:
            raise ValueError(f"port out of range: {value}")
        return value or None

    @field_validator("profile_template")
    @classmethod
    def _template_has_token(cls, value: str) -> str:
        if "{token}" not in Path(value).name:
            raise ValueError("profile_template must contain '{token}' in its last path component")
        return value

    @field_validator("strategies")
    @classmethod
    def _known_strategies(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [name for name in value if name not in DEFAULT_STRATEGIES]
        if unknown:
            raise ValueError(f"unknown startup strategies {unknown}, expected names from {DEFAULT_STRATEGIES}")
        if not value:
            raise ValueError("at least one startup strategy is required")
        return value

    @classmethod
    def for_browser(cls, browser: str = config.BROWSER, **overrides) -> "SessionConfig":
        """Build a config from environment defaults; the flavor table fills the rest."""
        values = {
            "browser": browser.lower(),
            "driver_binary": config.DRIVER_PATH,
            "browser_binary": config.BROWSER_PATH,
            "port": config.DRIVER_PORT,
            "headless": config.BROWSER_HEADLESS,
            "env": dict(config.DRIVER_ENV),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def flavor(self) -> dict:
        return DRIVER_FLAVORS[self.browser]

    @property
    def driver_executable(self) -> str:
        return self.driver_binary or self.flavor["driver_binary"]

    @property
    def profile_root(self) -> Path:
        return Path(self.profile_template).parent

    @property
    def profile_prefix(self) -> str:
        return Path(self.profile_template).name.split("{token}", 1)[0]


class StartupAttempt(BaseModel):
    """Outcome of one startup strategy."""

    strategy: str
    ok: bool = False
    reason: str = ""
    endpoint: Optional[str] = None
    duration_seconds: float = 0.0


class PageInfo(BaseModel):
    """Where the browser ended up after a navigation."""

    title: str
    url: str


class ReapReport(BaseModel):
    """What an orphan sweep cleaned up."""

    processes_killed: int = 0
    directories_removed: int = 0
    killed_pids: list[int] = Field(default_factory=list)
    removed_directories: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ProfileOwner(BaseModel):
    """Ownership marker written into every profile directory."""

    owner_pid: int
    owner_started: float  # psutil create_time of the owner
    created_at: datetime = Field(default_factory=datetime.now)


class SessionStatus(BaseModel):
    """Snapshot of a session for status endpoints."""

    state: SessionState = SessionState.CLOSED
    browser: Optional[str] = None
    endpoint: Optional[str] = None
    pid: Optional[int] = None
    strategy: Optional[str] = None
    profile_dir: Optional[str] = None
    started_at: Optional[str] = None
    cleanup_warnings: list[str] = Field(default_factory=list)

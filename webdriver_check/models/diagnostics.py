"""Pydantic models for environment diagnostics and smoke test reports."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from .session import PageInfo, StartupAttempt


class BinaryCheck(BaseModel):
    name: str
    found: bool = False
    path: Optional[str] = None
    version: Optional[str] = None
    error: Optional[str] = None


class ProcessInfo(BaseModel):
    pid: int
    name: str
    cmdline: str = ""


class PortCheck(BaseModel):
    host: str
    port: int
    listening: bool = False
    pids: list[int] = Field(default_factory=list)


class StatusCheck(BaseModel):
    url: str
    ok: bool = False
    status: Optional[int] = None
    body: Any = None
    error: Optional[str] = None


class LogFileCheck(BaseModel):
    path: str
    exists: bool = False
    size: int = 0
    lines: int = 0
    tail: list[str] = Field(default_factory=list)


class RuntimeUser(BaseModel):
    user: str
    home: Optional[str] = None
    home_owner: Optional[str] = None


class ScreenshotCheck(BaseModel):
    command: list[str]
    ok: bool = False
    size: int = 0
    output: str = ""


class DiagnosticReport(BaseModel):
    """Everything known about the local browser automation setup."""

    browser: str
    binaries: list[BinaryCheck] = Field(default_factory=list)
    processes: list[ProcessInfo] = Field(default_factory=list)
    port: Optional[PortCheck] = None
    status: Optional[StatusCheck] = None
    log_files: list[LogFileCheck] = Field(default_factory=list)
    runtime_user: Optional[RuntimeUser] = None
    screenshot: Optional[ScreenshotCheck] = None

    @property
    def ok(self) -> bool:
        """Binaries are installed and the driver answers ``/status``."""
        return all(b.found for b in self.binaries) and bool(self.status and self.status.ok)


class SmokeReport(BaseModel):
    """Outcome of a start → navigate → close run."""

    ok: bool = False
    browser: str
    url: str
    endpoint: Optional[str] = None
    strategy: Optional[str] = None
    page: Optional[PageInfo] = None
    attempts: list[StartupAttempt] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    fallback_used: bool = False
    cleanup_warnings: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0

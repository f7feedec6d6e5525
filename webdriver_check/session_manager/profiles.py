"""Per-session profile directories and their ownership markers."""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import threading
import time
from pathlib import Path
from typing import Optional

import psutil
from pydantic import ValidationError

from ..constants import BROWSER_DATA_DIR, DRIVER_LOG, DRIVER_STDOUT_LOG, OWNER_MARKER
from ..models.session import ProfileOwner

logger = logging.getLogger(__name__)

# Profiles of live sessions in this process, shared by every manager.
_owned: set[Path] = set()
_owned_lock = threading.Lock()


def register_owned(path: Path) -> None:
    with _owned_lock:
        _owned.add(path)


def unregister_owned(path: Path) -> None:
    with _owned_lock:
        _owned.discard(path)


def owned_snapshot() -> set[Path]:
    with _owned_lock:
        return set(_owned)


def new_profile_path(template: str) -> Path:
    """Resolve the template to a fresh, unique directory path."""
    return Path(template.format(token=secrets.token_hex(8))).expanduser().absolute()


def _process_started(pid: int) -> Optional[float]:
    try:
        return psutil.Process(pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


class ProfileHandle:
    """A scratch directory owned by exactly one session."""

    def __init__(self, path: Path):
        self.path = path
        self.created_at = time.time()

    @classmethod
    def create(cls, path: Path) -> "ProfileHandle":
        """Create the directory and stamp it with this process as owner.

        Raises OSError when the path cannot be created or already exists.
        """
        path.mkdir(parents=True, exist_ok=False)
        owner = ProfileOwner(owner_pid=os.getpid(), owner_started=_process_started(os.getpid()) or 0.0)
        (path / OWNER_MARKER).write_text(owner.model_dump_json(), encoding="utf-8")
        (path / BROWSER_DATA_DIR).mkdir()
        logger.info(f"Created profile directory: {path}")
        return cls(path)

    @property
    def data_dir(self) -> Path:
        return self.path / BROWSER_DATA_DIR

    @property
    def driver_log(self) -> Path:
        return self.path / DRIVER_LOG

    @property
    def stdout_log(self) -> Path:
        return self.path / DRIVER_STDOUT_LOG

    def exists(self) -> bool:
        return self.path.exists()

    def remove(self) -> None:
        """Delete the directory tree. Raises OSError if it can't be removed."""
        if self.path.exists():
            shutil.rmtree(self.path)
            logger.info(f"Removed profile directory: {self.path}")

    def __repr__(self) -> str:
        return f"ProfileHandle({str(self.path)!r})"


def read_owner(profile_dir: Path) -> Optional[ProfileOwner]:
    """Return the ownership marker, or None if it is missing or unreadable."""
    try:
        raw = (profile_dir / OWNER_MARKER).read_text(encoding="utf-8")
        return ProfileOwner.model_validate_json(raw)
    except (OSError, ValidationError):
        return None


def owner_alive(owner: ProfileOwner) -> bool:
    """True if the process that created the profile is still the same process."""
    started = _process_started(owner.owner_pid)
    return started is not None and abs(started - owner.owner_started) < 1.0


def is_orphaned(profile_dir: Path, owned: Optional[set[Path]] = None) -> bool:
    """Decide whether nobody owns ``profile_dir`` any more.

    Profiles in ``owned`` (default: a fresh snapshot of the registry) belong
    to live sessions of this process. Profiles stamped by another live
    process belong to that process's manager.
    """
    if owned is None:
        owned = owned_snapshot()
    if profile_dir in owned:
        return False
    owner = read_owner(profile_dir)
    if owner is None:
        return True
    if owner.owner_pid == os.getpid():
        return True
    return not owner_alive(owner)


def profile_age(profile_dir: Path) -> float:
    return time.time() - profile_dir.stat().st_mtime

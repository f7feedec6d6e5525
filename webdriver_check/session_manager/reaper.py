"""Orphan reaping: driver/browser processes and profile directories nobody owns."""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Callable, Iterator

import psutil

from ..models.session import ReapReport
from .processes import terminate_tree
from .profiles import is_orphaned, owned_snapshot, profile_age

logger = logging.getLogger(__name__)


def _profile_pattern(root: Path, prefix: str) -> re.Pattern:
    return re.compile(re.escape(f"{root}{os.sep}{prefix}") + r"[0-9A-Za-z_-]+")


def find_candidates(root: Path, prefix: str) -> Iterator[tuple[psutil.Process, Path]]:
    """Processes whose command line references a profile directory under ``root``."""
    pattern = _profile_pattern(root, prefix)
    me = os.getpid()
    for proc in psutil.process_iter(["pid", "cmdline"]):
        if proc.pid == me:
            continue
        for arg in proc.info.get("cmdline") or []:
            match = pattern.search(arg)
            if match:
                yield proc, Path(match.group(0))
                break


def reap_orphans(
    root: Path,
    prefix: str,
    retention: float,
    grace: float,
    snapshot: Callable[[], set[Path]] = owned_snapshot,
) -> ReapReport:
    """Terminate orphaned processes and sweep stale profiles under ``root``.

    Ownership is re-checked against a fresh ``snapshot()`` right before each
    kill, so a session that registered after the scan is left alone. Never
    raises; problems end up in ``report.errors``.
    """
    report = ReapReport()

    try:
        orphans = [(proc, path) for proc, path in find_candidates(root, prefix) if is_orphaned(path, snapshot())]
    except psutil.Error as e:
        report.errors.append(f"process scan failed: {e}")
        orphans = []

    for proc, profile_dir in orphans:
        if not is_orphaned(profile_dir, snapshot()):
            logger.info(f"Skipping pid {proc.pid}: {profile_dir.name} is owned now")
            continue
        # is_running() also guards against pid reuse since the scan
        if not proc.is_running() or proc.pid in report.killed_pids:
            continue
        try:
            killed = terminate_tree(proc.pid, grace)
        except (psutil.Error, OSError) as e:
            report.errors.append(f"pid {proc.pid}: {e}")
            continue
        logger.info(f"Killed orphaned process {proc.pid} ({profile_dir.name})")
        report.killed_pids.extend(pid for pid in killed if pid not in report.killed_pids)

    if root.is_dir():
        for path in sorted(root.glob(f"{prefix}*")):
            try:
                if not path.is_dir() or profile_age(path) < retention:
                    continue
            except OSError:
                continue
            if not is_orphaned(path, snapshot()):
                continue
            try:
                shutil.rmtree(path)
            except OSError as e:
                report.errors.append(f"{path}: {e}")
                continue
            logger.info(f"Removed stale profile {path}")
            report.removed_directories.append(str(path))

    report.processes_killed = len(report.killed_pids)
    report.directories_removed = len(report.removed_directories)
    return report

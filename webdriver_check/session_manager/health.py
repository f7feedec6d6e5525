"""Readiness probes against a driver's ``/status`` endpoint."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from ..constants import STATUS_PATH
from ..errors import DriverLaunchError

logger = logging.getLogger(__name__)


def probe_status(endpoint: str, timeout: float, client: Optional[httpx.Client] = None) -> dict:
    """Make one GET request to ``<endpoint>/status``.

    Returns a dict with keys: ok, url, status, body, error. Never raises for
    network errors; ``ok`` is True only for HTTP 200.
    """
    url = f"{endpoint.rstrip('/')}{STATUS_PATH}"
    result = {"ok": False, "url": url, "status": None, "body": None, "error": None}
    owns_client = client is None
    client = client or httpx.Client(timeout=timeout)
    try:
        resp = client.get(url, timeout=timeout)
        result["status"] = resp.status_code
        result["ok"] = resp.status_code == 200
        try:
            result["body"] = resp.json()
        except ValueError:
            result["body"] = resp.text
    except httpx.HTTPError as e:
        result["error"] = f"{type(e).__name__}: {e}"
    finally:
        if owns_client:
            client.close()
    return result


def wait_until_ready(
    endpoint: str,
    deadline: float,
    probe_timeout: float,
    interval: float,
    is_alive: Callable[[], bool] = lambda: True,
    transport: Optional[httpx.BaseTransport] = None,
) -> dict:
    """Poll ``/status`` until it answers 200 or ``deadline`` passes.

    ``deadline`` is a ``time.monotonic()`` value. Each probe is bounded by
    ``probe_timeout``. Raises DriverLaunchError on timeout or when
    ``is_alive`` reports the driver has exited.
    """
    last: dict = {}
    probes = 0
    with httpx.Client(timeout=probe_timeout, transport=transport) as client:
        while True:
            remaining = deadline - time.monotonic()
            last = probe_status(endpoint, min(probe_timeout, max(remaining, 0.05)), client)
            probes += 1
            if last["ok"]:
                logger.info(f"Driver ready at {endpoint} after {probes} probe(s)")
                return last
            if not is_alive():
                raise DriverLaunchError("driver exited before answering /status")
            if time.monotonic() + interval >= deadline:
                detail = last["error"] or f"HTTP {last['status']}"
                raise DriverLaunchError(f"/status not ready before the startup timeout ({detail})")
            time.sleep(interval)

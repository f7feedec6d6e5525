"""Diagnostics HTTP service.

Runs as a lightweight local web server that exposes the environment checks
and smoke tests over HTTP. Handles driver session lifecycle and orphan
cleanup.

Endpoints:
    GET  /status          - Return service + session state
    GET  /diagnostics     - Run environment diagnostics (?browser=&endpoint=)
    POST /smoke           - Start a driver, load a page, tear it down
    POST /smoke/remote    - Smoke-test an already-running driver
    POST /reap            - Kill orphaned drivers, sweep stale profiles
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

from aiohttp import web
from pydantic import ValidationError

from ..config import PROFILE_TEMPLATE, SERVICE_HOST, SERVICE_PORT, SMOKE_URL, ensure_dirs
from ..models.session import SessionConfig, SessionStatus
from ..tools.diagnostic_tools import run_diagnostics
from ..tools.smoke_tools import run_remote_smoke_test, run_smoke_test
from .browser import DriverSessionManager

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

# Request fields accepted by POST /smoke, mapped onto SessionConfig.
SMOKE_CONFIG_FIELDS = (
    "driver_binary",
    "browser_binary",
    "port",
    "headless",
    "driver_args",
    "browser_args",
    "env",
    "startup_timeout",
    "strategies",
)


class ServiceState:
    """Orchestrates the session manager and smoke test runs."""

    def __init__(self, sessions: DriverSessionManager | None = None, profile_template: str = PROFILE_TEMPLATE):
        self.profile_template = profile_template
        self.sessions = sessions or DriverSessionManager(profile_template=profile_template)
        self.smoke_lock = asyncio.Lock()
        self.last_smoke_time: str | None = None
        self.last_smoke_ok: bool | None = None

    def setup(self):
        ensure_dirs()

    async def cleanup(self):
        """Close any live session and reap what it may have left behind."""
        session = self.sessions.session
        if session is not None:
            await asyncio.to_thread(self.sessions.close, session)
        await asyncio.to_thread(self.sessions.reap_orphans)


def _session_config(body: dict, profile_template: str = PROFILE_TEMPLATE) -> SessionConfig:
    overrides = {k: body[k] for k in SMOKE_CONFIG_FIELDS if k in body}
    return SessionConfig.for_browser(body.get("browser", "chrome"), profile_template=profile_template, **overrides)


async def _json_body(request: web.Request) -> dict:
    """The request's JSON object, or ``{}`` for an empty body.

    Raises ValueError for malformed JSON or a non-object payload.
    """
    if not request.content_length:
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    return body


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_status(request: web.Request) -> web.Response:
    state: ServiceState = request.app["state"]
    session = state.sessions.session
    status = session.status() if session else SessionStatus()
    return web.json_response(
        {
            "session": status.model_dump(mode="json"),
            "smoke_running": state.smoke_lock.locked(),
            "last_smoke_time": state.last_smoke_time,
            "last_smoke_ok": state.last_smoke_ok,
        }
    )


async def handle_diagnostics(request: web.Request) -> web.Response:
    browser = request.query.get("browser", "chrome")
    endpoint = request.query.get("endpoint") or None
    screenshot = request.query.get("screenshot", "false").lower() == "true"
    try:
        report = await asyncio.to_thread(run_diagnostics, browser, endpoint, None, screenshot)
    except KeyError:
        return web.json_response({"error": f"Unsupported browser: {browser}"}, status=400)
    return web.json_response(report.model_dump(mode="json") | {"ok": report.ok})


async def handle_smoke(request: web.Request) -> web.Response:
    state: ServiceState = request.app["state"]
    try:
        body = await _json_body(request)
    except ValueError as e:
        return web.json_response({"error": f"Invalid JSON body: {e}"}, status=400)

    try:
        session_config = _session_config(body, state.profile_template)
    except (ValidationError, KeyError) as e:
        return web.json_response({"error": f"Invalid params: {e}"}, status=400)

    if state.smoke_lock.locked():
        return web.json_response({"error": "A smoke test is already running."}, status=409)

    async with state.smoke_lock:
        logger.info(f"[SMOKE] browser={session_config.browser}, url={body.get('url', SMOKE_URL)}")
        report = await asyncio.to_thread(
            run_smoke_test, state.sessions, session_config, body.get("url", SMOKE_URL)
        )
        state.last_smoke_time = datetime.utcnow().isoformat()
        state.last_smoke_ok = report.ok

    return web.json_response(report.model_dump(mode="json"), status=200 if report.ok else 502)


async def handle_smoke_remote(request: web.Request) -> web.Response:
    try:
        body = await _json_body(request)
    except ValueError as e:
        return web.json_response({"error": f"Invalid JSON body: {e}"}, status=400)
    endpoint = body.get("endpoint", "")

    if not endpoint:
        return web.json_response({"error": "endpoint is required."}, status=400)

    try:
        session_config = _session_config(body)
    except (ValidationError, KeyError) as e:
        return web.json_response({"error": f"Invalid params: {e}"}, status=400)

    report = await asyncio.to_thread(
        run_remote_smoke_test,
        endpoint,
        session_config.browser,
        body.get("url", SMOKE_URL),
        session_config=session_config,
    )
    return web.json_response(report.model_dump(mode="json"), status=200 if report.ok else 502)


async def handle_reap(request: web.Request) -> web.Response:
    state: ServiceState = request.app["state"]
    report = await asyncio.to_thread(state.sessions.reap_orphans)
    return web.json_response(report.model_dump(mode="json"))


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    state: ServiceState = app["state"]
    state.setup()
    logger.info(f"Diagnostics service started on {SERVICE_HOST}:{SERVICE_PORT}")


async def on_cleanup(app: web.Application):
    state: ServiceState = app["state"]
    await state.cleanup()
    logger.info("Diagnostics service stopped.")


def create_app(state: ServiceState | None = None) -> web.Application:
    app = web.Application()
    app["state"] = state or ServiceState()
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/status", handle_status)
    app.router.add_get("/diagnostics", handle_diagnostics)
    app.router.add_post("/smoke", handle_smoke)
    app.router.add_post("/smoke/remote", handle_smoke_remote)
    app.router.add_post("/reap", handle_reap)

    return app


def main(host: str = SERVICE_HOST, port: int = SERVICE_PORT):
    """Run the diagnostics service as a standalone HTTP service."""
    app = create_app()
    web.run_app(app, host=host, port=port)


if __name__ == "__main__":
    main()

import pytest

from webdriver_check.config import SMOKE_URL
from webdriver_check.models.diagnostics import DiagnosticReport, SmokeReport, StatusCheck
from webdriver_check.session_manager import manager as service
from webdriver_check.session_manager.manager import ServiceState, create_app

from .conftest import posix_only


@pytest.fixture
def state(manager, profile_template):
    return ServiceState(sessions=manager, profile_template=profile_template)


@pytest.fixture
async def client(aiohttp_client, state):
    return await aiohttp_client(create_app(state))


async def test_status_without_session(client):
    resp = await client.get("/status")
    assert resp.status == 200
    data = await resp.json()
    assert data["session"]["state"] == "closed"
    assert data["smoke_running"] is False
    assert data["last_smoke_ok"] is None


@posix_only
async def test_smoke_runs_and_updates_status(client, fake_driver, profile_root):
    resp = await client.post(
        "/smoke",
        json={
            "browser": "chrome",
            "driver_binary": fake_driver,
            "strategies": ["os-assigned-port"],
            "startup_timeout": 10,
            "url": "https://example.com/",
        },
    )
    assert resp.status == 200
    report = await resp.json()
    assert report["ok"] is True
    assert report["page"]["title"] == "Example Domain"
    assert report["strategy"] == "os-assigned-port"
    assert list(profile_root.glob("profile-*")) == []

    status = await (await client.get("/status")).json()
    assert status["last_smoke_ok"] is True
    assert status["last_smoke_time"]


@posix_only
async def test_failed_smoke_is_502(client, fake_driver):
    resp = await client.post(
        "/smoke",
        json={
            "driver_binary": fake_driver,
            "strategies": ["os-assigned-port"],
            "startup_timeout": 1,
            "env": {"FAKE_DRIVER_MODE": "unhealthy"},
        },
    )
    assert resp.status == 502
    report = await resp.json()
    assert report["error_type"] == "all_strategies_failed"


async def test_smoke_rejects_bad_params(client):
    resp = await client.post("/smoke", json={"browser": "netscape"})
    assert resp.status == 400
    assert "Invalid params" in (await resp.json())["error"]


async def test_smoke_rejects_unknown_strategy(client, profile_root):
    resp = await client.post("/smoke", json={"strategies": ["bogus"]})
    assert resp.status == 400
    assert "bogus" in (await resp.json())["error"]
    assert list(profile_root.glob("profile-*")) == []


@pytest.mark.parametrize("path", ["/smoke", "/smoke/remote"])
async def test_malformed_json_is_400(client, path):
    resp = await client.post(path, data="{not json", headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert "Invalid JSON body" in (await resp.json())["error"]


@pytest.mark.parametrize("path", ["/smoke", "/smoke/remote"])
async def test_non_object_json_is_400(client, path):
    resp = await client.post(path, json=["chrome"])
    assert resp.status == 400
    assert "JSON object" in (await resp.json())["error"]


async def test_smoke_rejects_concurrent_runs(client, state):
    async with state.smoke_lock:
        resp = await client.post("/smoke", json={})
    assert resp.status == 409


async def test_remote_smoke_needs_endpoint(client):
    resp = await client.post("/smoke/remote", json={"browser": "firefox"})
    assert resp.status == 400


async def test_remote_smoke(client, monkeypatch):
    calls = []

    def fake_remote(endpoint, browser, url, session_config=None):
        calls.append((endpoint, browser, url))
        return SmokeReport(ok=True, browser=browser, url=url, endpoint=endpoint)

    monkeypatch.setattr(service, "run_remote_smoke_test", fake_remote)

    resp = await client.post("/smoke/remote", json={"endpoint": "http://10.0.0.5:4444", "browser": "firefox"})

    assert resp.status == 200
    assert calls == [("http://10.0.0.5:4444", "firefox", SMOKE_URL)]


async def test_diagnostics(client, monkeypatch):
    seen = {}

    def fake_diagnostics(browser, endpoint, log_files, screenshot):
        seen.update(browser=browser, endpoint=endpoint, screenshot=screenshot)
        return DiagnosticReport(browser=browser, status=StatusCheck(url="x", ok=True))

    monkeypatch.setattr(service, "run_diagnostics", fake_diagnostics)

    resp = await client.get("/diagnostics", params={"browser": "firefox", "screenshot": "true"})

    assert resp.status == 200
    data = await resp.json()
    assert data["ok"] is True
    assert seen == {"browser": "firefox", "endpoint": None, "screenshot": True}


async def test_diagnostics_unknown_browser(client):
    resp = await client.get("/diagnostics", params={"browser": "netscape"})
    assert resp.status == 400


async def test_reap(client):
    resp = await client.post("/reap")
    assert resp.status == 200
    data = await resp.json()
    assert data["processes_killed"] == 0
    assert data["directories_removed"] == 0

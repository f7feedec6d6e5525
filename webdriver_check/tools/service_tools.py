"""Client helpers for talking to a running diagnostics service."""

from __future__ import annotations

import httpx

from ..config import SERVICE_URL


async def _call_service(
    method: str,
    path: str,
    json_body: dict | None = None,
    params: dict | None = None,
    base_url: str = SERVICE_URL,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """Make a request to the diagnostics service."""
    url = f"{base_url.rstrip('/')}{path}"
    try:
        async with httpx.AsyncClient(timeout=180.0, transport=transport) as client:
            if method == "GET":
                resp = await client.get(url, params=params)
            else:
                resp = await client.post(url, json=json_body or {})

            data = resp.json()
            if resp.status_code >= 400 and "error" not in data:
                data["error"] = f"HTTP {resp.status_code}"
            return data

    except httpx.ConnectError:
        return {
            "error": f"Diagnostics service is not reachable at {base_url}. "
            "Start it with: webdriver-check serve"
        }
    except httpx.TimeoutException:
        return {"error": "Diagnostics service timed out. The browser may still be starting."}
    except (httpx.HTTPError, ValueError) as e:
        return {"error": f"Failed to talk to the diagnostics service: {e}"}


async def service_status(**kwargs) -> dict:
    """Session state and last smoke test result of a running service."""
    return await _call_service("GET", "/status", **kwargs)


async def remote_diagnostics(browser: str, endpoint: str | None = None, screenshot: bool = False, **kwargs) -> dict:
    """Run environment diagnostics on the host the service runs on."""
    params = {"browser": browser, "screenshot": str(screenshot).lower()}
    if endpoint:
        params["endpoint"] = endpoint
    return await _call_service("GET", "/diagnostics", params=params, **kwargs)


async def remote_smoke_test(body: dict, **kwargs) -> dict:
    """Ask the service to start a driver, load a page and tear it down."""
    return await _call_service("POST", "/smoke", json_body=body, **kwargs)


async def remote_reap(**kwargs) -> dict:
    """Ask the service to reap orphaned drivers and stale profiles."""
    return await _call_service("POST", "/reap", **kwargs)

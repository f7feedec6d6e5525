"""Application configuration loaded from environment variables."""

import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_mapping(name: str) -> dict[str, str]:
    """Parse ``KEY=VALUE,KEY2=VALUE2`` into a dict."""
    mapping = {}
    for item in _env_list(name):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            mapping[key.strip()] = value.strip()
    return mapping


# Browser / driver
BROWSER = os.getenv("WDC_BROWSER", "chrome").lower()
DRIVER_PATH = os.getenv("WDC_DRIVER_PATH") or None
BROWSER_PATH = os.getenv("WDC_BROWSER_PATH") or None
DRIVER_PORT = int(os.getenv("WDC_DRIVER_PORT", "0")) or None
DRIVER_HOST = os.getenv("WDC_DRIVER_HOST", "127.0.0.1")
BROWSER_HEADLESS = os.getenv("WDC_HEADLESS", "true").lower() == "true"
DRIVER_ENV = _env_mapping("WDC_DRIVER_ENV")

# Profiles
PROFILE_ROOT = Path(os.getenv("WDC_PROFILE_ROOT", Path(tempfile.gettempdir()) / "webdriver-check"))
PROFILE_PREFIX = "profile-"
PROFILE_TEMPLATE = str(PROFILE_ROOT / f"{PROFILE_PREFIX}{{token}}")
PROFILE_RETENTION = float(os.getenv("WDC_PROFILE_RETENTION", "3600"))  # 1 hour

# Timeouts (seconds)
STARTUP_TIMEOUT = float(os.getenv("WDC_STARTUP_TIMEOUT", "30"))
PROBE_TIMEOUT = float(os.getenv("WDC_PROBE_TIMEOUT", "2"))
POLL_INTERVAL = float(os.getenv("WDC_POLL_INTERVAL", "0.25"))
QUIT_TIMEOUT = float(os.getenv("WDC_QUIT_TIMEOUT", "5"))
TERMINATE_GRACE = float(os.getenv("WDC_TERMINATE_GRACE", "3"))

# Smoke tests / diagnostics
SMOKE_URL = os.getenv("WDC_SMOKE_URL", "https://example.com")
LOG_FILES = _env_list(
    "WDC_LOG_FILES",
    "/home/LogFiles/chromedriver.log,/home/LogFiles/chromedriver-stdout.log,/home/LogFiles/xvfb.log",
)
SCREENSHOT_TIMEOUT = float(os.getenv("WDC_SCREENSHOT_TIMEOUT", "5"))

# HTTP service
SERVICE_HOST = os.getenv("WDC_SERVICE_HOST", "127.0.0.1")
SERVICE_PORT = int(os.getenv("WDC_SERVICE_PORT", "8025"))
SERVICE_URL = f"http://{SERVICE_HOST}:{SERVICE_PORT}"


def ensure_dirs():
    """Create the profile root if it doesn't exist."""
    PROFILE_ROOT.mkdir(parents=True, exist_ok=True)

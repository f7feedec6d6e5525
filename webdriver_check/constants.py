"""Driver flavors, command-line flag spellings, and status endpoints."""

# ── Browsers ─────────────────────────────────────────────────────────────────

CHROME = "chrome"
FIREFOX = "firefox"
SUPPORTED_BROWSERS = (CHROME, FIREFOX)

# ── Startup strategies (evaluated in this order) ─────────────────────────────

STRATEGY_FIXED_PORT = "fixed-port"
STRATEGY_OS_ASSIGNED_PORT = "os-assigned-port"
STRATEGY_SELENIUM_SERVICE = "selenium-service"

DEFAULT_STRATEGIES = (
    STRATEGY_FIXED_PORT,
    STRATEGY_OS_ASSIGNED_PORT,
    STRATEGY_SELENIUM_SERVICE,
)

# ── Driver flavors ───────────────────────────────────────────────────────────
#
# Placeholders: {port}, {profile_dir}, {data_dir}, {log_path}. Spellings are
# data, not protocol; every driver/browser pair gets its own table entry.

DRIVER_FLAVORS = {
    CHROME: {
        "driver_binary": "chromedriver",
        "browser_binary": "google-chrome",
        "default_port": 9515,
        "port_args": ["--port={port}"],
        "profile_marker_args": ["--log-path={log_path}"],
        "headless_args": ["--headless=new"],
        "browser_args": [
            "--no-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            "--no-first-run",
            "--disable-extensions",
            "--disable-blink-features=AutomationControlled",
            "--window-size=1920,1080",
        ],
        "profile_args": ["--user-data-dir={data_dir}"],
        "screenshot_args": ["--headless=new", "--screenshot={path}"],
        "process_names": ["chrome", "chromedriver", "google-chrome"],
    },
    FIREFOX: {
        "driver_binary": "geckodriver",
        "browser_binary": "firefox",
        "default_port": 4444,
        "port_args": ["--port", "{port}"],
        "profile_marker_args": ["--profile-root", "{profile_dir}"],
        "headless_args": ["-headless"],
        "browser_args": ["--width=1920", "--height=1080"],
        "profile_args": ["-profile", "{data_dir}"],
        "screenshot_args": ["--headless", "--screenshot", "{path}"],
        "process_names": ["firefox", "geckodriver"],
    },
}

# Firefox preferences applied for full-option remote sessions.
FIREFOX_PREFERENCES = {
    "browser.download.folderList": 2,
    "browser.download.manager.showWhenStarting": False,
    "browser.download.dir": "/tmp",
    "browser.helperApps.neverAsk.saveToDisk": "text/plain",
}

# ── Files inside a profile directory ─────────────────────────────────────────

OWNER_MARKER = "owner.json"
DRIVER_LOG = "driver.log"
DRIVER_STDOUT_LOG = "driver-stdout.log"
BROWSER_DATA_DIR = "browser"

# ── Connection errors ────────────────────────────────────────────────────────

# Substrings in WebDriver error messages that mean the browser is gone.
CONNECTION_LOST_MARKERS = (
    "chrome not reachable",
    "disconnected",
    "session deleted",
    "no such window",
    "browsing context has been discarded",
    "connection refused",
    "failed to establish a new connection",
)

# Substrings that indicate a root/HOME permission problem in the browser.
PERMISSION_ERROR_MARKERS = ("root", "HOME")

STATUS_PATH = "/status"
TAIL_LINES = 5

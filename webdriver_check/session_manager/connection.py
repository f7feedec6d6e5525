"""Selenium adapter for the automation connection.

The lifecycle manager only needs ``connect``, ``get``, ``title``,
``current_url`` and ``quit``; anything shaped like a Selenium ``WebDriver``
works as a connection.
"""

from __future__ import annotations

import http.client
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from selenium import webdriver
from selenium.common.exceptions import InvalidSessionIdException, NoSuchWindowException, WebDriverException
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.firefox.options import Options as FirefoxOptions
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..constants import CHROME, CONNECTION_LOST_MARKERS, FIREFOX_PREFERENCES
from ..models.session import SessionConfig

logger = logging.getLogger(__name__)

# Errors the WebDriver client can raise for a single call.
CLIENT_ERRORS = (WebDriverException, OSError, http.client.HTTPException, Urllib3HTTPError)


class Connection(Protocol):
    title: str
    current_url: str

    def get(self, url: str) -> None: ...

    def quit(self) -> None: ...


# (endpoint, config, browser data dir or None) -> connection
Connector = Callable[[str, SessionConfig, Optional[Path]], Connection]


def build_options(config: SessionConfig, data_dir: Optional[Path], minimal: bool = False) -> Any:
    """Browser options for a session.

    ``minimal`` keeps only the headless flag, for hosts where the full
    option set trips root/HOME permission checks.
    """
    flavor = config.flavor
    args: list[str] = []
    if config.headless:
        args.extend(flavor["headless_args"])
    if not minimal:
        args.extend(flavor["browser_args"])
        if data_dir is not None:
            args.extend(a.format(data_dir=data_dir) for a in flavor["profile_args"])
        args.extend(config.browser_args)

    if config.browser == CHROME:
        options = ChromeOptions()
        if not minimal:
            options.add_experimental_option("excludeSwitches", ["enable-automation"])
            options.add_experimental_option("useAutomationExtension", False)
            options.accept_insecure_certs = True
    else:
        options = FirefoxOptions()
        if not minimal:
            for name, value in FIREFOX_PREFERENCES.items():
                options.set_preference(name, value)
    for arg in args:
        options.add_argument(arg)
    if config.browser_binary:
        options.binary_location = config.browser_binary
    return options


def selenium_connector(endpoint: str, config: SessionConfig, data_dir: Optional[Path]) -> Connection:
    """Open a WebDriver session against an already-running driver."""
    options = build_options(config, data_dir)
    logger.info(f"Creating WebDriver session at {endpoint} ({config.browser})")
    return webdriver.Remote(command_executor=endpoint, options=options)


def minimal_connector(endpoint: str, config: SessionConfig, data_dir: Optional[Path]) -> Connection:
    """Like ``selenium_connector`` but with only the headless flag and no profile."""
    options = build_options(config, None, minimal=True)
    logger.info(f"Creating minimal WebDriver session at {endpoint} ({config.browser})")
    return webdriver.Remote(command_executor=endpoint, options=options)


def is_connection_lost(exc: BaseException) -> bool:
    """True if ``exc`` means the browser or driver is gone, not just the page."""
    if isinstance(exc, (InvalidSessionIdException, NoSuchWindowException)):
        return True
    if isinstance(exc, (ConnectionError, http.client.HTTPException, Urllib3HTTPError)):
        return True
    if isinstance(exc, WebDriverException):
        message = (exc.msg or str(exc)).lower()
        return any(marker in message for marker in CONNECTION_LOST_MARKERS)
    return False

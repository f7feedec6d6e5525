"""Command-line entry point.

    webdriver-check diagnose [--browser chrome] [--endpoint URL] [--screenshot]
    webdriver-check smoke    [--browser chrome] [--url URL] [--port N] [--env K=V]
    webdriver-check remote   --endpoint URL [--browser firefox]
    webdriver-check reap
    webdriver-check serve    [--host H] [--port N]

Reports are printed as JSON on stdout; logs go to stderr. With ``--service``
the diagnose/smoke/reap commands run on a diagnostics service instead.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from . import config
from .constants import SUPPORTED_BROWSERS

logger = logging.getLogger("webdriver-check")


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got '{pair}'")
        env[key] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="webdriver-check", description=__doc__.split("\n\n")[0])
    parser.add_argument("--service", metavar="URL", help="send the command to a running diagnostics service")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    diagnose = sub.add_parser("diagnose", help="check binaries, processes, ports, /status and logs")
    diagnose.add_argument("--browser", choices=SUPPORTED_BROWSERS, default=config.BROWSER)
    diagnose.add_argument("--endpoint", help="driver URL (default: localhost on the driver's default port)")
    diagnose.add_argument("--log-file", action="append", dest="log_files", help="log file to inspect (repeatable)")
    diagnose.add_argument("--screenshot", action="store_true", help="also try a direct headless screenshot")

    smoke = sub.add_parser("smoke", help="start a driver, load a page, tear it down")
    smoke.add_argument("--browser", choices=SUPPORTED_BROWSERS, default=config.BROWSER)
    smoke.add_argument("--url", default=config.SMOKE_URL)
    smoke.add_argument("--driver", dest="driver_binary", help="driver binary name or path")
    smoke.add_argument("--port", type=int, help="fixed driver port (default: OS-assigned)")
    smoke.add_argument("--headed", action="store_true", help="show the browser window")
    smoke.add_argument("--env", action="append", default=[], metavar="KEY=VALUE",
                       help="environment override for the driver process (repeatable)")
    smoke.add_argument("--startup-timeout", type=float)

    remote = sub.add_parser("remote", help="smoke-test a driver that is already running")
    remote.add_argument("--endpoint", required=True)
    remote.add_argument("--browser", choices=SUPPORTED_BROWSERS, default=config.BROWSER)
    remote.add_argument("--url", default=config.SMOKE_URL)

    sub.add_parser("reap", help="kill orphaned drivers and sweep stale profiles")

    serve = sub.add_parser("serve", help="run the diagnostics HTTP service")
    serve.add_argument("--host", default=config.SERVICE_HOST)
    serve.add_argument("--port", type=int, default=config.SERVICE_PORT)
    return parser


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run_local(args: argparse.Namespace) -> int:
    from .models.session import SessionConfig
    from .session_manager.browser import DriverSessionManager
    from .tools.diagnostic_tools import run_diagnostics
    from .tools.smoke_tools import run_remote_smoke_test, run_smoke_test

    if args.command == "diagnose":
        report = run_diagnostics(args.browser, args.endpoint, args.log_files, args.screenshot)
        _emit(report.model_dump(mode="json") | {"ok": report.ok})
        return 0 if report.ok else 1

    if args.command == "smoke":
        session_config = SessionConfig.for_browser(
            args.browser,
            driver_binary=args.driver_binary,
            port=args.port,
            headless=False if args.headed else None,
            env={**config.DRIVER_ENV, **_parse_env(args.env)},
            startup_timeout=args.startup_timeout,
        )
        report = run_smoke_test(DriverSessionManager(), session_config, args.url)
        _emit(report.model_dump(mode="json"))
        return 0 if report.ok else 1

    if args.command == "remote":
        report = run_remote_smoke_test(args.endpoint, args.browser, args.url)
        _emit(report.model_dump(mode="json"))
        return 0 if report.ok else 1

    if args.command == "reap":
        report = DriverSessionManager().reap_orphans()
        _emit(report.model_dump(mode="json"))
        return 0

    raise ValueError(f"unknown command {args.command}")


def _run_remote(args: argparse.Namespace) -> int:
    from .tools import service_tools

    base = {"base_url": args.service}
    logger.info(f"Sending {args.command} to {args.service}")
    if args.command == "diagnose":
        result = asyncio.run(service_tools.remote_diagnostics(args.browser, args.endpoint, args.screenshot, **base))
    elif args.command == "smoke":
        body = {
            "browser": args.browser,
            "url": args.url,
            "driver_binary": args.driver_binary,
            "port": args.port,
            "env": _parse_env(args.env),
            "startup_timeout": args.startup_timeout,
        }
        if args.headed:
            body["headless"] = False
        result = asyncio.run(service_tools.remote_smoke_test({k: v for k, v in body.items() if v is not None}, **base))
    elif args.command == "reap":
        result = asyncio.run(service_tools.remote_reap(**base))
    else:
        raise ValueError(f"'{args.command}' cannot run through --service")

    _emit(result)
    return 1 if result.get("error") or result.get("ok") is False else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    try:
        if args.command == "serve":
            from .session_manager.manager import main as serve

            serve(args.host, args.port)
            return 0
        if args.service and args.command != "remote":
            return _run_remote(args)
        return _run_local(args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    return 2


if __name__ == "__main__":
    sys.exit(main())

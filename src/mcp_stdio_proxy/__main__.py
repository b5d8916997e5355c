"""The entry point for the mcp-stdio-proxy application. It sets up the logging and runs the main function.

Two ways to run the application:
1. Run the application as a module `uv run -m mcp_stdio_proxy`
2. Run the application as a package `uv run mcp-stdio-proxy`

"""

import argparse
import asyncio
import logging
import os
import sys
from importlib.metadata import PackageNotFoundError, version

from .health import HealthCheckSettings, derive_base_url
from .httpx_client import normalize_verify_ssl
from .proxy import ProxySettings, run_stdio_proxy


def _setup_argument_parser() -> argparse.ArgumentParser:
    """Set up and return the argument parser for the stdio proxy."""
    parser = argparse.ArgumentParser(
        description=(
            "A minimal stdio to Streamable HTTP proxy for the Model Context Protocol (MCP)."
        ),
        epilog=(
            "Examples:\n"
            "  mcp-stdio-proxy http://localhost:37373/mcp\n"
            "  mcp-stdio-proxy --debug http://localhost:37373/mcp\n"
            "  mcp-stdio-proxy --timeout 300 http://localhost:37373/mcp\n"
            "  mcp-stdio-proxy --health-check --recovery-wait 15 http://localhost:37373/mcp\n"
            "\n"
            "Environment Variables:\n"
            "  DEBUG=1  Alternative way to enable debug logging\n"
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )

    try:
        package_version = version("mcp-stdio-proxy")
    except PackageNotFoundError:
        package_version = "unknown"

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {package_version}",
        help="Show the version and exit",
    )
    parser.add_argument(
        "url",
        help="Target MCP server URL, e.g. http://localhost:37373/mcp",
    )
    parser.add_argument(
        "--debug",
        "-v",
        "--verbose",
        dest="debug",
        action="store_true",
        default=False,
        help="Enable debug mode with detailed logging output.",
    )

    client_group = parser.add_argument_group("HTTP client options")
    client_group.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="HTTP request timeout in seconds. Default is 120",
    )
    client_group.add_argument(
        "--verify-ssl",
        default=None,
        metavar="VALUE",
        help="Control SSL verification: true, false, or a path to a CA bundle.",
    )
    client_group.add_argument(
        "--no-verify-ssl",
        dest="verify_ssl",
        action="store_const",
        const=False,
        help="Disable SSL verification (same as --verify-ssl false).",
    )

    health_group = parser.add_argument_group("health check options")
    health_group.add_argument(
        "--health-check",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Probe the upstream health endpoint and restart it once if it becomes unhealthy.",
    )
    health_group.add_argument(
        "--health-base-url",
        default=None,
        help="Base URL of the health and restart endpoints. Default is the origin of the target URL",
    )
    health_group.add_argument(
        "--health-interval",
        type=float,
        default=30.0,
        help="Seconds between health checks (at least 5). Default is 30",
    )
    health_group.add_argument(
        "--health-timeout",
        type=float,
        default=5.0,
        help="Timeout in seconds for each health check or restart call. Default is 5",
    )
    health_group.add_argument(
        "--recovery-wait",
        type=float,
        default=10.0,
        help="Seconds to wait after a restart before verifying recovery (at least 5). Default is 10",
    )
    return parser


def _normalize_verify_ssl(value: bool | str | None) -> bool | str | None:
    """Normalize the --verify-ssl value; None keeps the httpx default."""
    if value is None:
        return None
    return normalize_verify_ssl(value)


def _setup_logging(*, debug: bool) -> logging.Logger:
    """Set up logging configuration and return the logger."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(levelname)1.1s %(asctime)s.%(msecs).03d %(name)s] %(message)s",
        stream=sys.stderr,
    )
    return logging.getLogger(__name__)


def _build_health_settings(
    args_parsed: argparse.Namespace,
    parser: argparse.ArgumentParser,
) -> HealthCheckSettings | None:
    if not args_parsed.health_check:
        return None
    try:
        return HealthCheckSettings(
            base_url=args_parsed.health_base_url or derive_base_url(args_parsed.url),
            interval=args_parsed.health_interval,
            timeout=args_parsed.health_timeout,
            recovery_wait=args_parsed.recovery_wait,
        )
    except ValueError as e:
        parser.error(str(e))
        return None


def main() -> None:
    """Start the proxy using asyncio."""
    parser = _setup_argument_parser()
    args_parsed = parser.parse_args()

    debug = args_parsed.debug or os.getenv("DEBUG") == "1"
    logger = _setup_logging(debug=debug)

    if not args_parsed.url.startswith(("http://", "https://")):
        parser.print_usage(sys.stderr)
        logger.error("URL must start with http:// or https://")
        sys.exit(1)

    if args_parsed.timeout <= 0:
        parser.error("--timeout must be positive")

    settings = ProxySettings(
        url=args_parsed.url,
        timeout=args_parsed.timeout,
        verify_ssl=_normalize_verify_ssl(args_parsed.verify_ssl),
    )
    health_settings = _build_health_settings(args_parsed, parser)
    if health_settings is not None:
        logger.info("Health checks enabled against %s", health_settings.base_url)

    try:
        asyncio.run(run_stdio_proxy(settings, health_settings))
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")


if __name__ == "__main__":
    main()

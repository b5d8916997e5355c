"""Run the stdio to streamable HTTP proxy.

Messages read from stdin are forwarded one at a time; replies are written to stdout
in the order the requests arrived. The optional health monitor runs beside the relay
on its own task and HTTP client.
"""

import asyncio
import contextlib
import logging
import signal
from collections.abc import AsyncIterable
from dataclasses import dataclass

import httpx

from .decoder import LineSink
from .forwarder import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_BACKOFF, TransportForwarder
from .health import HealthCheckSettings, HealthMonitor
from .httpx_client import custom_httpx_client
from .stdio import LineWriter, open_stdout, read_messages, stdin_lines

logger = logging.getLogger(__name__)


@dataclass
class ProxySettings:
    """Settings for the message relay."""

    url: str
    timeout: float = 120.0
    verify_ssl: bool | str | None = None
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_backoff: tuple[float, ...] = DEFAULT_RETRY_BACKOFF


async def relay_messages(lines: AsyncIterable[str | bytes], forwarder: TransportForwarder) -> int:
    """Forward every valid input line until the input ends. Returns the number relayed."""
    relayed = 0
    async for raw_line, message in read_messages(lines):
        await forwarder.dispatch(raw_line, message)
        relayed += 1
    return relayed


async def run_stdio_proxy(
    settings: ProxySettings,
    health_settings: HealthCheckSettings | None = None,
    *,
    lines: AsyncIterable[str | bytes] | None = None,
    sink: LineSink | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    handle_signals: bool = True,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Relay stdin to the upstream until end of input or a shutdown signal.

    Args:
        settings: Relay settings.
        health_settings: Enables the health monitor when given.
        lines: Input lines. Defaults to stdin.
        sink: Output channel. Defaults to stdout.
        transport: Optional httpx transport for both HTTP clients, mainly for tests.
        handle_signals: Install SIGINT/SIGTERM handlers that trigger a clean shutdown.
        shutdown_event: Stops the relay when set. A new event is used if not given.
    """
    if lines is None:
        lines = stdin_lines()
    if sink is None:
        sink = LineWriter(open_stdout())

    if shutdown_event is None:
        shutdown_event = asyncio.Event()
    installed_signals = _install_signal_handlers(shutdown_event) if handle_signals else []

    logger.info("Starting stdio proxy, target: %s", settings.url)

    async with contextlib.AsyncExitStack() as stack:
        client = await stack.enter_async_context(
            custom_httpx_client(
                timeout=httpx.Timeout(settings.timeout),
                verify_ssl=settings.verify_ssl,
                transport=transport,
            ),
        )
        forwarder = TransportForwarder(
            client,
            settings.url,
            sink,
            retry_attempts=settings.retry_attempts,
            retry_backoff=settings.retry_backoff,
            timeout=settings.timeout,
        )

        monitor: HealthMonitor | None = None
        if health_settings is not None:
            health_client = await stack.enter_async_context(
                custom_httpx_client(
                    timeout=httpx.Timeout(health_settings.timeout),
                    verify_ssl=settings.verify_ssl,
                    transport=transport,
                ),
            )
            monitor = HealthMonitor(health_settings, client=health_client)
            await monitor.start()

        relay_task = asyncio.create_task(relay_messages(lines, forwarder), name="stdio-relay")
        shutdown_task = asyncio.create_task(shutdown_event.wait())
        try:
            done, _ = await asyncio.wait(
                {relay_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if relay_task in done:
                relayed = relay_task.result()
                logger.info("Input closed after %d message(s); shutting down", relayed)
            else:
                logger.info("Shutdown requested, stopping relay...")
        finally:
            for task in (relay_task, shutdown_task):
                if not task.done():
                    task.cancel()
                    await asyncio.wait({task}, timeout=1.0)
            if monitor is not None:
                await monitor.stop()
            _remove_signal_handlers(installed_signals)

    logger.debug("Stdio proxy stopped")


def _install_signal_handlers(shutdown_event: asyncio.Event) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    def _on_signal(signum: signal.Signals) -> None:
        logger.info("Received signal %d, initiating graceful shutdown...", signum)
        shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _on_signal, signum)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not supported on this platform or outside the main thread.
            logger.debug("Cannot install handler for signal %d", signum)
            continue
        installed.append(signum)
    return installed


def _remove_signal_handlers(signals: list[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for signum in signals:
        loop.remove_signal_handler(signum)

"""Upstream health monitoring with a single automatic restart.

The monitor probes the upstream health endpoint on a fixed interval. When a probe
fails it asks the upstream to restart itself, once per process lifetime, and checks
again after a recovery wait. If the upstream still fails after that, monitoring gives
up and stays in ``FAILED`` until the process is restarted. None of this affects
message forwarding.

All state changes happen on one task that consumes events from a queue. The periodic
ticker and the recovery check only produce events, so state is never shared between
concurrently running code.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum

import httpx
from pydantic import BaseModel, ValidationError

from .httpx_client import custom_httpx_client

logger = logging.getLogger(__name__)

MIN_INTERVAL = 5.0
MIN_TIMEOUT = 1.0
MIN_RECOVERY_WAIT = 5.0


class HealthState(Enum):
    """Health of the upstream as seen by the monitor."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    RESTART_ATTEMPTED = "restart_attempted"
    FAILED = "failed"


class HealthEvent(Enum):
    TICK = "tick"
    PROBE_SUCCEEDED = "probe_succeeded"
    PROBE_FAILED = "probe_failed"
    RESTART_SUCCEEDED = "restart_succeeded"
    RESTART_FAILED = "restart_failed"
    RECOVERY_SUCCEEDED = "recovery_succeeded"
    RECOVERY_FAILED = "recovery_failed"


class HealthAction(Enum):
    NONE = "none"
    RESTART = "restart"
    SCHEDULE_RECOVERY = "schedule_recovery"
    GIVE_UP = "give_up"


_TRANSITIONS: dict[tuple[HealthState, HealthEvent], tuple[HealthState, HealthAction]] = {
    (HealthState.HEALTHY, HealthEvent.PROBE_FAILED): (HealthState.UNHEALTHY, HealthAction.RESTART),
    (HealthState.UNHEALTHY, HealthEvent.RESTART_SUCCEEDED): (
        HealthState.RESTART_ATTEMPTED,
        HealthAction.SCHEDULE_RECOVERY,
    ),
    (HealthState.UNHEALTHY, HealthEvent.RESTART_FAILED): (HealthState.FAILED, HealthAction.GIVE_UP),
    # Only reachable once the restart has been used up.
    (HealthState.UNHEALTHY, HealthEvent.PROBE_FAILED): (HealthState.FAILED, HealthAction.GIVE_UP),
    (HealthState.RESTART_ATTEMPTED, HealthEvent.RECOVERY_SUCCEEDED): (
        HealthState.HEALTHY,
        HealthAction.NONE,
    ),
    (HealthState.RESTART_ATTEMPTED, HealthEvent.RECOVERY_FAILED): (
        HealthState.RESTART_ATTEMPTED,
        HealthAction.NONE,
    ),
    (HealthState.RESTART_ATTEMPTED, HealthEvent.PROBE_FAILED): (HealthState.FAILED, HealthAction.GIVE_UP),
    (HealthState.HEALTHY, HealthEvent.PROBE_SUCCEEDED): (HealthState.HEALTHY, HealthAction.NONE),
    (HealthState.UNHEALTHY, HealthEvent.PROBE_SUCCEEDED): (HealthState.HEALTHY, HealthAction.NONE),
    (HealthState.RESTART_ATTEMPTED, HealthEvent.PROBE_SUCCEEDED): (HealthState.HEALTHY, HealthAction.NONE),
}


def transition(
    state: HealthState,
    event: HealthEvent,
    *,
    restart_attempted: bool,
) -> tuple[HealthState, HealthAction]:
    """Return the next state and the action to perform for ``event`` in ``state``.

    ``FAILED`` is terminal. Pairs missing from the table leave the state unchanged.
    A restart is never requested twice: once ``restart_attempted`` is set, the restart
    action is suppressed and the state is left ``UNHEALTHY``, so a further failed
    probe ends in ``FAILED``.
    """
    if state is HealthState.FAILED:
        return state, HealthAction.NONE
    next_state, action = _TRANSITIONS.get((state, event), (state, HealthAction.NONE))
    if action is HealthAction.RESTART and restart_attempted:
        action = HealthAction.NONE
    return next_state, action


class HealthResponse(BaseModel):
    """Body of the upstream health endpoint."""

    state: str = ""
    status: str = ""

    @property
    def ready(self) -> bool:
        return self.state == "ready" and self.status == "ok"


@dataclass
class HealthCheckSettings:
    """Settings for the health monitor. Durations are in seconds."""

    base_url: str
    interval: float = 30.0
    timeout: float = 5.0
    recovery_wait: float = 10.0
    health_path: str = "/api/health"
    restart_path: str = "/api/restart"

    def __post_init__(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"invalid base URL: {self.base_url}")
        if self.interval < MIN_INTERVAL:
            raise ValueError(f"health check interval must be at least {MIN_INTERVAL:g} seconds")
        if self.timeout < MIN_TIMEOUT or self.timeout >= self.interval:
            raise ValueError(
                f"health check timeout must be at least {MIN_TIMEOUT:g}s and less than the interval "
                f"({self.interval:g}s)",
            )
        if self.recovery_wait < MIN_RECOVERY_WAIT:
            raise ValueError(f"recovery wait must be at least {MIN_RECOVERY_WAIT:g} seconds")

    @property
    def health_url(self) -> str:
        return self.base_url.rstrip("/") + self.health_path

    @property
    def restart_url(self) -> str:
        return self.base_url.rstrip("/") + self.restart_path


class HealthMonitor:
    """Runs the health state machine on a background task."""

    def __init__(
        self,
        settings: HealthCheckSettings,
        *,
        client: httpx.AsyncClient | None = None,
        verify_ssl: bool | str | None = None,
    ) -> None:
        self.settings = settings
        self._client = client
        self._owns_client = client is None
        self._verify_ssl = verify_ssl
        self._state = HealthState.HEALTHY
        self._restart_attempted = False
        self.history: list[HealthState] = [HealthState.HEALTHY]
        self._events: asyncio.Queue[HealthEvent] = asyncio.Queue()
        self._shutdown_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._recovery_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> HealthState:
        return self._state

    @property
    def restart_attempted(self) -> bool:
        return self._restart_attempted

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start periodic probing on a background task."""
        if self.running:
            return
        self._require_client()
        logger.info(
            "Starting health monitor for %s (interval: %gs, recovery wait: %gs)",
            self.settings.health_url,
            self.settings.interval,
            self.settings.recovery_wait,
        )
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._run(), name="health-monitor")

    async def stop(self) -> None:
        """Stop monitoring and wait until the background task has finished."""
        logger.debug("Stopping health monitor")
        self._shutdown_event.set()

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.debug("Health monitor stopped")

    async def probe(self) -> bool:
        """Check the health endpoint once. Any error counts as unhealthy."""
        client = self._require_client()
        try:
            response = await client.get(self.settings.health_url, timeout=self.settings.timeout)
        except httpx.HTTPError as e:
            logger.debug("Health check request failed: %s", e)
            return False

        if response.status_code != 200:
            logger.debug("Health check returned status %d", response.status_code)
            return False

        try:
            health = HealthResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.debug("Failed to parse health response: %s", e)
            return False

        if not health.ready:
            logger.debug("Health check failed: state=%s, status=%s", health.state, health.status)
            return False

        logger.debug("Health check passed")
        return True

    async def restart(self) -> bool:
        """Ask the upstream to restart. Returns True if the request was accepted."""
        client = self._require_client()
        logger.info("Sending restart request to %s", self.settings.restart_url)
        try:
            response = await client.post(self.settings.restart_url, timeout=self.settings.timeout)
        except httpx.HTTPError as e:
            logger.error("Restart request failed: %s", e)
            return False

        if response.status_code >= 400:
            logger.error("Restart request returned HTTP %d: %s", response.status_code, response.text)
            return False

        logger.debug("Restart request successful (HTTP %d)", response.status_code)
        return True

    async def _run(self) -> None:
        ticker = asyncio.create_task(self._tick_loop(), name="health-monitor-ticker")
        try:
            while True:
                event = await self._events.get()
                if event is HealthEvent.TICK:
                    await self._check()
                else:
                    await self._apply(event)
        finally:
            pending = [task for task in (ticker, self._recovery_task) if task is not None]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self._recovery_task = None

    async def _tick_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.settings.interval)
            except asyncio.TimeoutError:
                self._events.put_nowait(HealthEvent.TICK)

    async def _check(self) -> None:
        if self._state is HealthState.FAILED:
            logger.debug("Skipping health check (monitoring disabled)")
            return
        logger.debug("Performing health check (state: %s)", self._state.name)
        healthy = await self.probe()
        await self._apply(HealthEvent.PROBE_SUCCEEDED if healthy else HealthEvent.PROBE_FAILED)

    async def _apply(self, event: HealthEvent) -> None:
        previous = self._state
        next_state, action = transition(previous, event, restart_attempted=self._restart_attempted)
        self._set_state(next_state)

        if action is HealthAction.RESTART:
            logger.warning("Upstream health check failed, attempting restart...")
            self._restart_attempted = True
            restarted = await self.restart()
            await self._apply(HealthEvent.RESTART_SUCCEEDED if restarted else HealthEvent.RESTART_FAILED)
        elif action is HealthAction.SCHEDULE_RECOVERY:
            self._recovery_task = asyncio.create_task(self._verify_recovery(), name="health-monitor-recovery")
        elif action is HealthAction.GIVE_UP:
            logger.error("Upstream did not recover after restart, giving up")
            logger.error("Health monitoring disabled. Manual intervention required.")
        elif previous is HealthState.RESTART_ATTEMPTED and next_state is HealthState.HEALTHY:
            logger.info("Upstream restart successful, service recovered")
        elif previous is HealthState.HEALTHY and next_state is HealthState.UNHEALTHY:
            logger.warning("Upstream health check failed; restart already attempted, not retrying")

    def _set_state(self, state: HealthState) -> None:
        if state is self._state:
            return
        logger.debug("State transition: %s -> %s", self._state.name, state.name)
        self._state = state
        self.history.append(state)

    async def _verify_recovery(self) -> None:
        logger.debug("Waiting %gs before verifying recovery...", self.settings.recovery_wait)
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.settings.recovery_wait)
        except asyncio.TimeoutError:
            pass
        else:
            logger.debug("Recovery verification cancelled (shutdown)")
            return

        logger.debug("Verifying upstream recovery...")
        healthy = await self.probe()
        if not healthy:
            logger.debug("Recovery verification failed, waiting for next check")
        self._events.put_nowait(HealthEvent.RECOVERY_SUCCEEDED if healthy else HealthEvent.RECOVERY_FAILED)

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = custom_httpx_client(
                timeout=httpx.Timeout(self.settings.timeout),
                verify_ssl=self._verify_ssl,
            )
        return self._client


def derive_base_url(url: str) -> str:
    """Return the scheme and authority of ``url``, e.g. ``http://localhost:37373``."""
    parsed = httpx.URL(url)
    return f"{parsed.scheme}://{parsed.netloc.decode('ascii')}"

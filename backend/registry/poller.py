"""Periodic refresh of each device's last known state over HTTP."""

import asyncio
import logging

import aiohttp

from config import POLL_INTERVAL, STOP_SIGNAL_TIMEOUT
from discovery.netutil import endpoint_url
from registry.models import PeerRecord
from registry.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class StatePoller:
    """Polls devices that advertise a ``statusUrl`` and stores the reply body."""

    def __init__(
        self, registry: DeviceRegistry, interval: float = POLL_INTERVAL,
        timeout: float = STOP_SIGNAL_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._timeout = timeout
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._interval <= 0 or self._task:
            return
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"State poller started (every {self._interval}s)")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def poll_once(self) -> int:
        """Poll every pollable device once. Returns how many states were refreshed."""
        records = [r for r in await self._registry.snapshot() if r.status_url]
        if not records:
            return 0

        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout)
        ) as session:
            states = await asyncio.gather(
                *(self._fetch_state(session, r) for r in records)
            )

        refreshed = 0
        for record, state in zip(records, states):
            if state is not None and await self._registry.set_state(record.id, state):
                refreshed += 1
        return refreshed

    async def _fetch_state(
        self, session: aiohttp.ClientSession, record: PeerRecord
    ) -> str | None:
        try:
            url = endpoint_url(record.ip_address, record.status_url)
            async with session.get(url) as response:
                if response.status != 200:
                    logger.warning(f"State poll of {url} returned HTTP {response.status}")
                    return None
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"State poll of {url} failed: {e!r}")
            return None
        except Exception as e:
            logger.error(f"Unexpected state poll error for {record.identity}: {e}")
            return None

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"State poll failed: {e}")
            await asyncio.sleep(self._interval)

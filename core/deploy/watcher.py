"""
Deploy Watcher - Keep devices running the current program

Watches the program file and redeploys it when its contents change. A burst of
file changes collapses into one refresh after a quiet period; each new change
notification cancels the pending timer and schedules a fresh one. Devices
announced on the bus get the current program immediately.

@.architecture
Incoming: app.py (startup), core/bus (DEVICE_ANNOUNCE), FileWatcher --- {program path, Device announcements, change notifications}
Processing: refresh(), notify_change(), on_device_announce(), FileWatcher._poll() --- {4 jobs: change_detection, debouncing, payload_comparison, deployment}
Outgoing: core/bus (deploy_to_service), monitoring metrics --- {bytes payloads to manager services, deploy outcome counters}
"""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, Union

import aiofiles.os

from core.bus.base import DEVICE_ANNOUNCE, SRV_DEVICE_SCRIPT_MANAGER, Bus, Device, Service
from core.deploy.program import deploy_to_bus, read_compiled
from monitoring import get_logger, setup_standard_metrics

logger = get_logger(__name__)

Reader = Callable[[Path], Awaitable[bytes]]
Signature = Optional[Tuple[int, int]]


class FileWatcher:
    """
    Polls a file's modification time and size.

    Calls the callback whenever either changes, including when the file
    appears or disappears.
    """

    def __init__(self, path: Union[str, Path], callback: Callable[[], None], interval: float = 0.25):
        self.path = Path(path)
        self.callback = callback
        self.interval = interval
        self._last: Signature = None
        self._task: Optional[asyncio.Task] = None

    async def _signature(self) -> Signature:
        try:
            stat = await aiofiles.os.stat(self.path)
        except OSError:
            return None
        return (stat.st_mtime_ns, stat.st_size)

    async def start(self) -> None:
        self._last = await self._signature()
        self._task = asyncio.create_task(self._poll())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            current = await self._signature()
            if current != self._last:
                self._last = current
                self.callback()


class DeployWatcher:
    """
    Diff-and-redeploy controller for one program file.
    """

    def __init__(
        self,
        bus: Bus,
        program: Union[str, Path],
        reader: Reader = read_compiled,
        debounce: float = 0.5,
        poll_interval: float = 0.25,
        metrics: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize deploy watcher.

        Args:
            bus: Bus handle to deploy through
            program: Program file to watch
            reader: Coroutine turning the file into a payload
            debounce: Quiet period before a change triggers a refresh (seconds)
            poll_interval: File polling interval (seconds)
            metrics: Metric objects from setup_standard_metrics()
        """
        self.bus = bus
        self.program = Path(program)
        self.reader = reader
        self.debounce = debounce
        self.metrics = metrics or setup_standard_metrics()
        self.file_watcher = FileWatcher(self.program, self.notify_change, poll_interval)
        self._previous: Optional[bytes] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def previous_payload(self) -> Optional[bytes]:
        """Last payload deployed to the whole bus."""
        return self._previous

    @property
    def pending(self) -> bool:
        """Whether a debounced refresh is scheduled."""
        return self._timer is not None

    async def refresh(self, service: Optional[Service] = None) -> int:
        """
        Read the program and deploy it if needed.

        Args:
            service: Manager service that triggered the refresh, if any

        Returns:
            Number of services deployed to
        """
        payload = await self.reader(self.program)

        if self._previous is not None and self._previous == payload:
            if service is not None:
                await self.bus.deploy_to_service(service, payload)
                self.metrics['deploys_total'].inc(outcome="deployed")
                return 1
            logger.info("skipping identical deploy")
            self.metrics['deploys_total'].inc(outcome="skipped")
            return 0

        self._previous = payload
        count = await deploy_to_bus(self.bus, payload)
        if count == 0:
            logger.info("no clients to deploy to")
            self.metrics['deploys_total'].inc(outcome="empty")
        else:
            logger.info(f"deployed {len(payload)} bytes to {count} service(s)")
            self.metrics['deploys_total'].inc(outcome="deployed")
        return count

    def notify_change(self) -> None:
        """
        Record a file change; the refresh runs once changes stop for the debounce window.
        """
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._on_quiet)

    def _on_quiet(self) -> None:
        self._timer = None
        self._spawn(self.refresh())

    def _spawn(self, coro: Awaitable[int]) -> asyncio.Task:
        task = asyncio.ensure_future(self._guarded(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro: Awaitable[int]) -> int:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Program refresh failed: {e}", exc_info=True)
            return 0

    async def on_device_announce(self, device: Device) -> None:
        """Deploy the current program to each manager service of a new device."""
        for service in device.services(SRV_DEVICE_SCRIPT_MANAGER):
            await self._guarded(self.refresh(service))

    async def start(self) -> None:
        """
        Deploy once, then follow device announcements and file changes.
        """
        logger.info(f"watching {self.program}...")
        await self._guarded(self.refresh())
        self.bus.on(DEVICE_ANNOUNCE, self.on_device_announce)
        await self.file_watcher.start()

    async def stop(self) -> None:
        self.bus.off(DEVICE_ANNOUNCE, self.on_device_announce)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self.file_watcher.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

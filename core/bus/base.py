"""
Bus Handle - Contract for the device bus collaborator

The bus itself (packet protocol, hardware transports, device discovery) lives
outside this process's core. The bridge only needs a handle that emits ingress
frames, errors and device announcements, accepts outgoing frames, enumerates
devices and deploys program payloads to manager services.

@.architecture
Incoming: app.py, core/bus/loopback.py, hardware bus adapters --- {event listener registrations, Frame values to transmit, bytes program payloads}
Processing: on(), off(), emit(), connect(), start(), stop(), send_frame(), devices(), deploy_to_service() --- {4 jobs: event_dispatch, lifecycle_management, frame_transmission, deployment}
Outgoing: relay/hub.py, core/deploy/watcher.py, core/trace.py --- {Frame events, error events, Device announcement events}
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from monitoring import get_logger
from relay.protocols import Frame

logger = get_logger(__name__)


# Event names
FRAME_EVENT = "frame"
ERROR_EVENT = "error"
DEVICE_ANNOUNCE = "device_announce"

# Service class of the DeviceScript manager
SRV_DEVICE_SCRIPT_MANAGER = 0x1134EA2B

Listener = Callable[..., Any]


@dataclass
class Service:
    """One service exposed by a device."""
    device_id: str
    service_class: int
    service_index: int = 0


@dataclass
class Device:
    """A device present on the bus."""
    device_id: str
    service_classes: List[int] = field(default_factory=list)

    def services(self, service_class: Optional[int] = None) -> List[Service]:
        """
        Enumerate the device's services.

        Args:
            service_class: Only return services of this class

        Returns:
            Matching services in index order
        """
        return [
            Service(device_id=self.device_id, service_class=cls, service_index=index)
            for index, cls in enumerate(self.service_classes)
            if service_class is None or cls == service_class
        ]


class Bus(ABC):
    """
    Abstract bus handle.

    Listeners may be plain functions or coroutine functions; emit() awaits
    each one in registration order. A failing listener is logged and does not
    stop the others.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> None:
        """Subscribe to an event."""
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        """Unsubscribe from an event."""
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass

    async def emit(self, event: str, *args: Any) -> None:
        """
        Dispatch an event to its listeners.

        Args:
            event: Event name
            *args: Event payload
        """
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Bus listener for '{event}' failed: {e}", exc_info=True)
                if event != ERROR_EVENT:
                    await self.emit(ERROR_EVENT, e)

    @abstractmethod
    async def connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def send_frame(self, frame: Frame) -> None:
        """Transmit a frame; the bus re-emits it as FRAME_EVENT when it is processed."""
        raise NotImplementedError

    @abstractmethod
    def devices(self) -> List[Device]:
        """Devices currently present on the bus."""
        raise NotImplementedError

    @abstractmethod
    async def deploy_to_service(self, service: Service, payload: bytes) -> None:
        """Deploy a program payload to one manager service."""
        raise NotImplementedError

"""
Loopback Bus - In-process bus handle

Behaves like a proxy bus with no hardware attached: every transmitted frame is
processed immediately and re-emitted as an ingress frame carrying its original
sender tag. Devices are announced programmatically and deployments are
recorded.

@.architecture
Incoming: app.py (default bus), tests --- {Frame values, Device announcements, bytes payloads}
Processing: send_frame(), inject(), announce(), deploy_to_service() --- {3 jobs: frame_echo, device_tracking, deployment_recording}
Outgoing: relay/hub.py, core/deploy/watcher.py (via Bus events) --- {FRAME_EVENT, DEVICE_ANNOUNCE events}
"""

from typing import Dict, List, Tuple

from core.bus.base import DEVICE_ANNOUNCE, FRAME_EVENT, Bus, Device, Service
from monitoring import get_logger
from relay.protocols import BUS_SENDER, Frame

logger = get_logger(__name__)


class LoopbackBus(Bus):
    """Bus handle that echoes frames back to its listeners."""

    def __init__(self):
        super().__init__()
        self.connected = False
        self.running = False
        self.deployments: List[Tuple[Service, bytes]] = []
        self._devices: Dict[str, Device] = {}

    async def connect(self) -> None:
        self.connected = True

    async def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False
        self.connected = False

    async def send_frame(self, frame: Frame) -> None:
        if not self.running:
            logger.debug(f"Bus not started; dropping frame from {frame.sender}")
            return
        await self.emit(FRAME_EVENT, frame)

    async def inject(self, data: bytes) -> None:
        """Emit a frame as if it was received from a device."""
        await self.emit(FRAME_EVENT, Frame(data=bytes(data), sender=BUS_SENDER))

    async def announce(self, device: Device) -> None:
        """Add a device and emit its announcement."""
        self._devices[device.device_id] = device
        await self.emit(DEVICE_ANNOUNCE, device)

    def remove_device(self, device_id: str) -> None:
        self._devices.pop(device_id, None)

    def devices(self) -> List[Device]:
        return list(self._devices.values())

    async def deploy_to_service(self, service: Service, payload: bytes) -> None:
        self.deployments.append((service, bytes(payload)))
        logger.info(f"Deployed {len(payload)} bytes to {service.device_id}[{service.service_index}]")

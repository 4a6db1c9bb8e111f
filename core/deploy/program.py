"""
Program payload helpers: reading the compiled program and deploying it to
every DeviceScript manager on the bus.
"""

from pathlib import Path
from typing import Union

import aiofiles

from core.bus.base import SRV_DEVICE_SCRIPT_MANAGER, Bus
from monitoring import get_logger

logger = get_logger(__name__)


async def read_compiled(path: Union[str, Path]) -> bytes:
    """
    Read a compiled program image.

    Args:
        path: Program file

    Returns:
        Program bytes
    """
    async with aiofiles.open(path, 'rb') as f:
        return await f.read()


async def deploy_to_bus(bus: Bus, payload: bytes) -> int:
    """
    Deploy a payload to every manager service of every device on the bus.

    A service that fails is logged and skipped.

    Args:
        bus: Bus handle
        payload: Program bytes

    Returns:
        Number of services that accepted the payload
    """
    count = 0
    for device in bus.devices():
        for service in device.services(SRV_DEVICE_SCRIPT_MANAGER):
            try:
                await bus.deploy_to_service(service, payload)
                count += 1
            except Exception as e:
                logger.warning(f"Deploy to {device.device_id} failed: {e}")
    return count

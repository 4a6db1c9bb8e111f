"""
Device bus collaborator: the abstract bus handle and an in-process loopback bus.
"""

from .base import (
    DEVICE_ANNOUNCE,
    ERROR_EVENT,
    FRAME_EVENT,
    SRV_DEVICE_SCRIPT_MANAGER,
    Bus,
    Device,
    Service,
)
from .loopback import LoopbackBus

__all__ = [
    "DEVICE_ANNOUNCE",
    "ERROR_EVENT",
    "FRAME_EVENT",
    "SRV_DEVICE_SCRIPT_MANAGER",
    "Bus",
    "Device",
    "Service",
    "LoopbackBus",
]

"""
vfio-preflight VM Manager

Reads libvirt domain definitions to report assigned host devices.
"""

from .core.connection import LibvirtConnection
from .core.hostdev_extractor import (
    HostDeviceExtractor,
    HostDeviceRef,
    HostDeviceType,
    DomainRef,
)

__all__ = [
    "LibvirtConnection",
    "HostDeviceExtractor",
    "HostDeviceRef",
    "HostDeviceType",
    "DomainRef",
]

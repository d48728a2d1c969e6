"""
VM Manager Core - libvirt connection and domain inspection.
"""

from .connection import LibvirtConnection
from .hostdev_extractor import HostDeviceExtractor, HostDeviceRef, HostDeviceType, DomainRef

__all__ = [
    "LibvirtConnection",
    "HostDeviceExtractor",
    "HostDeviceRef",
    "HostDeviceType",
    "DomainRef",
]

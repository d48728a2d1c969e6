"""
Host Device Extractor

Looks up a libvirt domain and lists the PCI and USB host devices
assigned to it for passthrough.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union
from xml.etree import ElementTree as ET

from common.exceptions import DomainNotFoundError, HypervisorError

from . import connection
from .connection import LibvirtConnection, error_code

logger = logging.getLogger(__name__)


class HostDeviceType(Enum):
    """Host device buses supported for passthrough."""
    PCI = "pci"
    USB = "usb"


@dataclass(frozen=True)
class DomainRef:
    """A libvirt domain; id is None while the domain is not running."""
    id: Optional[int]
    name: str


@dataclass(frozen=True)
class HostDeviceRef:
    """A <hostdev> element of a domain definition."""

    type: HostDeviceType
    xml: str
    mode: Optional[str] = None
    managed: bool = False
    address: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Get short display name, e.g. ``pci 0000:01:00.0``."""
        return f"{self.type.value} {self.address or '(unknown address)'}"


class HostDeviceExtractor:
    """
    Reads passthrough assignments from libvirt domain definitions.

    Example:
        extractor = HostDeviceExtractor()
        for device in extractor.domain_host_devices("win10"):
            print(device.display_name)
    """

    def __init__(self, uri: str = LibvirtConnection.SYSTEM_URI):
        self._uri = uri
        self._connection: Optional[LibvirtConnection] = None

    @property
    def uri(self) -> str:
        return self._uri

    def _get_connection(self) -> LibvirtConnection:
        # Created on first use so XML extraction works without libvirt-python
        if self._connection is None:
            self._connection = LibvirtConnection(self._uri)
        return self._connection

    def connect(self, uri: Optional[str] = None):
        """
        Open a connection to the hypervisor.

        Args:
            uri: Connect somewhere other than the URI given at construction

        Raises:
            LibvirtConnectionError: If the connection fails
            RuntimeError: If libvirt-python is not installed
        """
        if uri is not None and uri != self._uri:
            if self._connection is not None:
                self._connection.disconnect()
                self._connection = None
            self._uri = uri
        return self._get_connection().connect()

    def session(self):
        """Context manager yielding a connection that is always closed."""
        return self._get_connection().session()

    def list_domains(self, conn) -> List[DomainRef]:
        """List active and inactive domains as (id, name) pairs."""
        try:
            domains = conn.listAllDomains(0)
        except connection.libvirt.libvirtError as e:
            raise HypervisorError(f"Failed to list domains: {e}", cause=e) from e

        refs = []
        for domain in domains:
            domain_id = domain.ID()
            refs.append(DomainRef(
                id=domain_id if domain_id >= 0 else None,
                name=domain.name(),
            ))
        return refs

    def get_domain_description(self, conn, name: str) -> ET.Element:
        """
        Fetch and parse a domain's XML description.

        Raises:
            DomainNotFoundError: If no domain is called ``name``
            HypervisorError: For any other libvirt failure
        """
        try:
            domain = conn.lookupByName(name)
            xml = domain.XMLDesc(0)
        except connection.libvirt.libvirtError as e:
            if error_code(e) == connection.libvirt.VIR_ERR_NO_DOMAIN:
                raise DomainNotFoundError(name) from e
            raise HypervisorError(
                f"Failed to read domain '{name}': {e}",
                details={"domain_name": name},
                cause=e,
            ) from e

        return self._parse(xml)

    def _parse(self, xml: str) -> ET.Element:
        try:
            return ET.fromstring(xml)
        except ET.ParseError as e:
            raise HypervisorError(f"Malformed domain XML: {e}", cause=e) from e

    def extract_host_devices(self, xml: Union[str, ET.Element]) -> List[HostDeviceRef]:
        """
        Select /domain/devices/hostdev elements of type pci or usb.

        Devices are returned in document order; an empty list means the
        domain has no assigned host devices.
        """
        root = self._parse(xml) if isinstance(xml, str) else xml
        if root.tag != "domain":
            logger.warning(f"Expected a <domain> document, got <{root.tag}>")
            return []

        devices = []
        for hostdev in root.findall("./devices/hostdev"):
            try:
                dev_type = HostDeviceType(hostdev.get("type"))
            except ValueError:
                continue
            devices.append(self._to_ref(hostdev, dev_type))

        return devices

    def _to_ref(self, hostdev: ET.Element, dev_type: HostDeviceType) -> HostDeviceRef:
        if dev_type is HostDeviceType.PCI:
            address = self._pci_address(hostdev)
        else:
            address = self._usb_address(hostdev)

        return HostDeviceRef(
            type=dev_type,
            xml=ET.tostring(hostdev, encoding="unicode").strip(),
            mode=hostdev.get("mode"),
            managed=hostdev.get("managed") == "yes",
            address=address,
        )

    @staticmethod
    def _pci_address(hostdev: ET.Element) -> Optional[str]:
        source = hostdev.find("source/address")
        if source is None:
            return None

        domain_attr = source.get("domain", "0x0000")
        bus = source.get("bus", "0x00")
        slot = source.get("slot", "0x00")
        func = source.get("function", "0x0")

        return f"{domain_attr}:{bus}:{slot}.{func}".replace("0x", "")

    @staticmethod
    def _usb_address(hostdev: ET.Element) -> Optional[str]:
        vendor = hostdev.find("source/vendor")
        product = hostdev.find("source/product")
        if vendor is not None and product is not None:
            return f"{vendor.get('id', '')}:{product.get('id', '')}".replace("0x", "")

        source = hostdev.find("source/address")
        if source is not None:
            return f"bus {source.get('bus', '?')} device {source.get('device', '?')}"

        return None

    def domain_host_devices(self, name: str) -> List[HostDeviceRef]:
        """Look up ``name`` and extract its host devices in one session."""
        with self.session() as conn:
            devices = self.extract_host_devices(self.get_domain_description(conn, name))

        logger.debug(f"Domain '{name}' has {len(devices)} host device(s)")
        return devices

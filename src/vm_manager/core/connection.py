"""
LibVirt Connection Manager

Opens a libvirt connection for the duration of a single operation and
always closes it afterwards.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Optional

try:
    import libvirt
    LIBVIRT_AVAILABLE = True
except ImportError:
    LIBVIRT_AVAILABLE = False
    libvirt = None

from common.exceptions import LibvirtConnectionError

logger = logging.getLogger(__name__)


class LibvirtConnection:
    """
    Scoped libvirt connection.

    Usage:
        with LibvirtConnection().session() as conn:
            domains = conn.listAllDomains(0)
    """

    # Default connection URI
    SYSTEM_URI = "qemu:///system"

    def __init__(self, uri: str = SYSTEM_URI):
        if not LIBVIRT_AVAILABLE:
            raise RuntimeError(
                "libvirt-python is not installed. "
                "Install with: pip install libvirt-python"
            )
        self._uri = uri
        self._conn = None

    @property
    def uri(self) -> str:
        """Get the connection URI."""
        return self._uri

    @property
    def is_connected(self) -> bool:
        """Check if connected to libvirt."""
        if self._conn is None:
            return False
        try:
            self._conn.getVersion()
            return True
        except libvirt.libvirtError:
            return False

    def connect(self):
        """
        Establish connection to libvirt.

        Returns:
            The open virConnect handle.

        Raises:
            LibvirtConnectionError: If the endpoint is unreachable or
                authentication fails
        """
        if self.is_connected:
            return self._conn

        try:
            libvirt.registerErrorHandler(self._error_handler, None)
            self._conn = libvirt.open(self._uri)
        except libvirt.libvirtError as e:
            raise LibvirtConnectionError(self._uri, cause=e) from e

        if self._conn is None:
            raise LibvirtConnectionError(self._uri)

        logger.info(f"Connected to libvirt: {self._uri}")
        return self._conn

    def disconnect(self) -> None:
        """Close connection to libvirt."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        except libvirt.libvirtError as e:
            logger.debug(f"Error closing libvirt connection: {e}")
        finally:
            self._conn = None
        logger.info("Disconnected from libvirt")

    @contextmanager
    def session(self):
        """Yield an open connection, closing it on every exit path."""
        conn = self.connect()
        try:
            yield conn
        finally:
            self.disconnect()

    def _error_handler(self, ctx, error):
        """Keep libvirt from printing errors to stderr; they surface as exceptions."""
        logger.debug(f"LibVirt: {error}")


def error_code(error: Exception) -> Optional[int]:
    """libvirt error number of an exception, None if it has none."""
    get_code = getattr(error, "get_error_code", None)
    return get_code() if get_code else None

"""mDNS advertisement of the radio stream."""

from __future__ import annotations

import logging
import socket

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_http._tcp.local."


def get_local_ip() -> str:
    """Return the LAN address of this host, falling back to loopback."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent, connecting only selects the outgoing interface
        sock.connect(("8.8.8.8", 80))
        return str(sock.getsockname()[0])
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


class StreamAdvertiser:
    """Registers the stream as an HTTP service so players on the LAN can find it."""

    def __init__(self, name: str, port: int, path: str, address: str | None = None) -> None:
        """Initialize the advertiser, nothing is registered until start()."""
        self._name = name
        self._port = port
        self._path = path
        self._address = address
        self._zeroconf: AsyncZeroconf | None = None
        self._info: ServiceInfo | None = None

    async def start(self) -> None:
        """Register the service."""
        address = self._address or get_local_ip()
        self._info = ServiceInfo(
            SERVICE_TYPE,
            f"{self._name}.{SERVICE_TYPE}",
            addresses=[socket.inet_aton(address)],
            port=self._port,
            properties={"path": self._path},
        )
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.async_register_service(self._info)
        logger.info("Advertising %s via mDNS at %s:%d", self._name, address, self._port)

    async def stop(self) -> None:
        """Unregister the service and close zeroconf."""
        if self._zeroconf is None:
            return
        if self._info is not None:
            await self._zeroconf.async_unregister_service(self._info)
        await self._zeroconf.async_close()
        self._zeroconf = None
        self._info = None

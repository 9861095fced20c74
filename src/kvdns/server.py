"""Server entry point and lifecycle management."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import Settings
from .driver import Driver
from .protocol import DNSTCPHandler, DNSUDPProtocol

logger = logging.getLogger(__name__)


async def serve(settings: Settings, driver: Optional[Driver] = None) -> None:
    """Run the UDP and TCP listeners until cancelled.

    Connects the driver, binds both listeners on `settings.host` and
    `settings.port`, and disconnects the driver on the way out.

    Args:
        settings: Runtime settings.
        driver: Driver to use instead of the one built from `settings`.

    Raises:
        OSError: If a socket cannot be bound.
        TransientError: If the backend cannot be reached.
    """
    driver = driver or Driver.from_settings(settings)
    driver.connect()
    logger.info("backend %s connected for %s", settings.backend, ",".join(settings.endpoints))

    loop = asyncio.get_running_loop()
    transport = None
    tcp_server = None
    try:
        transport, _ = await loop.create_datagram_endpoint(
            lambda: DNSUDPProtocol(driver),
            local_addr=(settings.host, settings.port),
        )
        tcp_server = await asyncio.start_server(DNSTCPHandler(driver), settings.host, settings.port)
        logger.info("TCP listening on %s:%d", settings.host, settings.port)
        await asyncio.Future()
    except asyncio.CancelledError:
        logger.info("server task cancelled")
    finally:
        logger.info("shutting down…")
        if tcp_server is not None:
            tcp_server.close()
            await tcp_server.wait_closed()
        if transport is not None:
            transport.close()
        driver.disconnect()

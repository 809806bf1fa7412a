import asyncio
import logging
from typing import Awaitable, Callable

log = logging.getLogger(__name__)

Prober = Callable[[], Awaitable[bool]]


async def is_port_open(host: str, port: int, timeout: float = 1.0) -> bool:
    """
    Checks whether something accepts TCP connections on host:port.

    The connection is closed immediately; nothing is sent.

    :param host: Host to connect to.
    :param port: TCP port.
    :param timeout: Seconds to wait for the connection.
    :return: True only if the connection succeeded.
    """
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError) as e:
        log.debug(f"Liveness probe to {host}:{port} failed: {e!r}")
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def make_prober(host: str, port: int, timeout: float = 1.0) -> Prober:
    """Returns a no-argument coroutine function probing a fixed address."""
    async def probe() -> bool:
        return await is_port_open(host, port, timeout)
    return probe

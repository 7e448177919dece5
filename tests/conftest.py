"""
Shared fixtures for the soar_recon tests.

Targets are stood in for by asyncio TCP servers on 127.0.0.1 with ephemeral
ports.  Servers must be started inside the coroutine passed to
``asyncio.run`` so they live on the same event loop as the code under test.
"""

import asyncio
from typing import Awaitable, Callable, Tuple

import pytest

from soar_recon.core import ScanContext, Target

# A bare HTTP response: no security headers, no Server / X-Powered-By
BARE_HTTP_RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"

Handler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


class LocalServers:
    """Helpers for starting throwaway TCP servers in tests."""

    async def start(self, handler: Handler) -> Tuple[asyncio.AbstractServer, int]:
        server = await asyncio.start_server(handler, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        return server, port

    async def silent(self) -> Tuple[asyncio.AbstractServer, int]:
        """Accept connections and close them without sending anything."""
        async def handler(reader, writer):
            writer.close()
        return await self.start(handler)

    async def greeting(self, banner: bytes) -> Tuple[asyncio.AbstractServer, int]:
        """Send ``banner`` as soon as a client connects."""
        async def handler(reader, writer):
            try:
                writer.write(banner)
                await writer.drain()
            except ConnectionError:
                pass
            finally:
                writer.close()
        return await self.start(handler)

    async def http(self, response: bytes = BARE_HTTP_RESPONSE) -> Tuple[asyncio.AbstractServer, int]:
        """Read one request's headers and answer with ``response``."""
        async def handler(reader, writer):
            try:
                await reader.readuntil(b"\r\n\r\n")
                writer.write(response)
                await writer.drain()
            except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, ConnectionError):
                pass
            finally:
                writer.close()
        return await self.start(handler)

    async def closed_port(self) -> int:
        """A port that was just released, so connecting to it is refused."""
        server, port = await self.silent()
        server.close()
        await server.wait_closed()
        return port


@pytest.fixture
def servers():
    return LocalServers()


@pytest.fixture
def context():
    return ScanContext(timeout=30, no_color=True, quiet=True)


@pytest.fixture
def local_resolver():
    """Resolver that maps every target to 127.0.0.1 without DNS."""
    async def resolve(raw):
        return Target(raw).with_address("127.0.0.1")
    return resolve

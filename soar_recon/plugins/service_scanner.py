"""
service_scanner.py
------------------

Banner grabbing and version extraction for open ports.

Most services greet a client on connect (SSH, FTP, SMTP, many databases), so
the fingerprinter simply waits for the first chunk of data.  Web ports stay
silent until asked, so on 80 and 8080 a minimal ``HEAD`` request is sent
first.  Nothing else is ever written to the target.
"""

from __future__ import annotations

import asyncio
import dataclasses
import re
from typing import Iterable, List, Optional

from soar_recon.core import Deadline
from soar_recon.models import ServiceRecord

BANNER_MAX_LENGTH = 200
READ_CHUNK = 1024
HTTP_BANNER_PORTS = (80, 8080)
HTTP_HEAD_REQUEST = b"HEAD / HTTP/1.0\r\n\r\n"

VERSION_PATTERNS = [
    re.compile(r"(\w+)\s+(\d+\.\d+)", re.I),
    re.compile(r"version\s+(\d+\.\d+)", re.I),
    re.compile(r"(\w+)/(\d+\.\d+)", re.I),
]


def extract_version(banner: Optional[str]) -> Optional[str]:
    """Return the first version-shaped substring of ``banner``, or None."""
    if not banner:
        return None
    for pattern in VERSION_PATTERNS:
        match = pattern.search(banner)
        if match:
            return match.group(0)
    return None


class ServiceFingerprinter:
    async def grab_banner(self, host: str, port: int, timeout: float = 2.0) -> Optional[str]:
        """Read whatever the service sends first, trimmed to 200 characters.

        Returns None on timeout, connection error or an empty response.
        """
        writer = None
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
            if port in HTTP_BANNER_PORTS:
                writer.write(HTTP_HEAD_REQUEST)
                await asyncio.wait_for(writer.drain(), timeout=timeout)
            data = await asyncio.wait_for(reader.read(READ_CHUNK), timeout=timeout)
        except (OSError, asyncio.TimeoutError, ValueError):
            return None
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass
        banner = data.decode("utf-8", errors="replace").strip()[:BANNER_MAX_LENGTH].strip()
        return banner or None

    async def fingerprint(
        self,
        host: str,
        services: Iterable[ServiceRecord],
        timeout: float = 2.0,
        deadline: Optional[Deadline] = None,
    ) -> List[ServiceRecord]:
        """Return copies of ``services`` with banner and version filled in."""
        enriched: List[ServiceRecord] = []
        for record in services:
            banner_timeout = deadline.clip(timeout) if deadline else timeout
            banner = await self.grab_banner(host, record.port, banner_timeout)
            if banner:
                record = dataclasses.replace(record, banner=banner, version=extract_version(banner))
            enriched.append(record)
        return enriched

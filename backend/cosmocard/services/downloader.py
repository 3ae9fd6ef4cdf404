"""
HTTP downloads for the legacy webhook (INCI document, photos) and label-url.

Bodies are streamed so the size cap is enforced before the whole file is
held in memory. Every request, redirects included, is refused when its host
resolves to a private, loopback, link-local or otherwise non-public address.
"""

import asyncio
import ipaddress
import logging
import mimetypes
import re
import socket
from typing import List, Optional
from urllib.parse import urlparse

import httpx

from cosmocard.config import settings
from cosmocard.exceptions import UpstreamError, ValidationError
from cosmocard.services.file_service import DOCUMENT_TYPES, UploadedDocument

logger = logging.getLogger(__name__)

USER_AGENT = "CosmoCard/1.0"
_EXTENSION_RE = re.compile(r"\.([a-z0-9]+)$", re.IGNORECASE)


def extension_from_url(url: str) -> Optional[str]:
    match = _EXTENSION_RE.search(urlparse(url).path or "")
    return match.group(1).lower() if match else None


def mime_type_for(extension: Optional[str]) -> str:
    if not extension:
        return "application/octet-stream"
    return DOCUMENT_TYPES.get(f".{extension.lower()}", "application/octet-stream")


def extension_for(mime_type: str) -> str:
    for ext, known in DOCUMENT_TYPES.items():
        if known == mime_type:
            return ext.lstrip(".")
    guessed = mimetypes.guess_extension(mime_type or "")
    return guessed.lstrip(".") if guessed else "bin"


async def resolve_host(host: str, port: int) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_public_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%")[0])
    if ip.version == 6 and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


async def ensure_public_host(url: httpx.URL) -> None:
    if url.scheme not in ("http", "https"):
        raise ValidationError(message=f"Unsupported URL: {url}", field="url")
    port = url.port or (443 if url.scheme == "https" else 80)
    try:
        addresses = await resolve_host(url.host, port)
    except OSError as e:
        raise UpstreamError(service="download", message=f"Cannot resolve host {url.host}") from e
    blocked = [a for a in addresses if not is_public_address(a)]
    if not addresses or blocked:
        logger.warning("Refusing download from %s (resolves to %s)", url.host, blocked or "nothing")
        raise ValidationError(message=f"URL host is not publicly reachable: {url.host}", field="url")


class Downloader:
    def __init__(self, timeout: Optional[float] = None, max_size: Optional[int] = None):
        self.timeout = timeout or settings.download_timeout
        self.max_size = max_size or settings.download_max_size

    async def _check_request(self, request: httpx.Request) -> None:
        await ensure_public_host(request.url)

    async def download(self, url: str, basename: str = "file") -> UploadedDocument:
        """
        Fetch a URL into an UploadedDocument named `{basename}.{ext}`.

        The type comes from the URL extension, falling back to the
        response Content-Type.
        """
        scheme = urlparse(url).scheme
        if scheme not in ("http", "https"):
            raise ValidationError(message=f"Unsupported URL: {url}", field="url")

        chunks = []
        received = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
                event_hooks={"request": [self._check_request]},
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    header_type = response.headers.get("content-type", "").split(";")[0].strip()
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > self.max_size:
                            raise UpstreamError(
                                service="download",
                                message=f"File at {url} exceeds {self.max_size} bytes",
                            )
                        chunks.append(chunk)
        except httpx.HTTPError as e:
            logger.error("Download of %s failed: %s", url, e)
            raise UpstreamError(service="download", message=f"Failed to download file: {e}") from e

        extension = extension_from_url(url)
        mime_type = mime_type_for(extension)
        if mime_type == "application/octet-stream" and header_type:
            mime_type = header_type
            extension = extension_for(header_type)
        content = b"".join(chunks)
        logger.info("Downloaded %s (%d bytes, %s)", url, len(content), mime_type)
        return UploadedDocument(
            filename=f"{basename}.{extension or 'bin'}",
            content=content,
            mime_type=mime_type,
        )


downloader = Downloader()

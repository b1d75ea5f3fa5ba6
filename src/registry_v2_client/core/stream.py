"""Lazily consumed blob body."""

import asyncio
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import aiofiles
import aiohttp

from ..exceptions import TransportError
from .types import RegistryResponse

DEFAULT_CHUNK_SIZE = 64 * 1024


class BlobReadStream:
    """Byte stream over the terminal response of a blob download.

    Iterate it once with ``async for``. It cannot be rewound; issue a new
    request to read the blob again. Closing before the end aborts the
    underlying connection.
    """

    def __init__(
        self, response: aiohttp.ClientResponse, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> None:
        self._response = response
        self._chunk_size = chunk_size
        self._info = RegistryResponse.from_client_response(response)
        self._started = False
        self._finished = False
        self._closed = False
        self.bytes_read = 0

    @property
    def response(self) -> RegistryResponse:
        return self._info

    @property
    def status(self) -> int:
        return self._info.status

    @property
    def status_code(self) -> int:
        return self._info.status

    @property
    def headers(self):
        return self._info.headers

    @property
    def url(self) -> str:
        return self._info.url

    @property
    def content_length(self) -> Optional[int]:
        return self._info.content_length

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise RuntimeError("BlobReadStream can only be iterated once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        if self._closed:
            raise RuntimeError("BlobReadStream is closed")
        try:
            async for chunk in self._response.content.iter_chunked(self._chunk_size):
                self.bytes_read += len(chunk)
                yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.close()
            raise TransportError(
                f"Blob download from {self.url} failed after {self.bytes_read} bytes: {e}",
                response=self._info,
            ) from e
        if self._closed:
            raise TransportError(
                f"Blob stream from {self.url} was closed before completion",
                response=self._info,
            )
        self._finished = True
        self.close()

    async def read(self) -> bytes:
        """Read the remaining body into memory."""
        chunks = [chunk async for chunk in self]
        return b"".join(chunks)

    async def save(self, path: Union[str, Path]) -> int:
        """Write the body to a file.

        Args:
            path: Destination file path

        Returns:
            Number of bytes written
        """
        async with aiofiles.open(path, "wb") as f:
            async for chunk in self:
                await f.write(chunk)
        return self.bytes_read

    def close(self) -> None:
        """Release the connection, aborting it if the body is unread."""
        if self._closed:
            return
        self._closed = True
        if self._finished:
            self._response.release()
        else:
            self._response.close()

    async def __aenter__(self) -> "BlobReadStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

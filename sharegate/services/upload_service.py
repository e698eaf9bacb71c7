"""
Streaming writers for authorized uploads.

Bytes go to a private partial file first; only a complete upload is linked
under its final name. ``os.link`` never replaces an existing file, so two
racing uploads of the same name cannot overwrite each other. Any failure,
size cutoff, disconnect or cancellation removes the partial file.

Multipart bodies are parsed as they arrive, so size limits apply while the
body is read rather than after it has been spooled.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import AsyncIterator, List, Optional, Set

import aiofiles
import aiofiles.os
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from sharegate.core.errors import MalformedUpload, NameConflict, TooLarge
from sharegate.schemas import Upload
from sharegate.services.authorizers import UploadAuthorizer, UploadTarget

logger = logging.getLogger(__name__)

MAX_PART_HEADER_BYTES = 16 * 1024


class UploadWriter:
    """Writes one upload; use as an async context manager."""

    def __init__(self, target: UploadTarget):
        """Initialize the writer.

        Args:
            target: Destination and byte limit granted by the upload authorizer.
        """
        self.target = target
        self.partial_path = target.partial_dir / f"{uuid.uuid4().hex}.part"
        self.written = 0
        self._file = None
        self._done = False

    async def open(self) -> "UploadWriter":
        self._file = await aiofiles.open(self.partial_path, mode="xb")
        return self

    async def __aenter__(self) -> "UploadWriter":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None or not self._done:
            await self.abort()

    async def write(self, chunk: bytes) -> None:
        """Append a chunk, enforcing the byte limit before writing it."""
        limit = self.target.limit
        if limit is not None and self.written + len(chunk) > limit:
            raise TooLarge(f"{self.target.name!r} exceeds the limit of {limit} bytes", limit=limit)
        await self._file.write(chunk)
        self.written += len(chunk)

    async def close(self) -> None:
        """Close the partial file without publishing it."""
        if self._file is not None:
            f, self._file = self._file, None
            await f.close()

    async def commit(self) -> Path:
        """Publish the partial file under its final name.

        Raises:
            NameConflict: If a file with the same name appeared meanwhile.
        """
        await self.close()
        try:
            await aiofiles.os.link(self.partial_path, self.target.path)
        except FileExistsError:
            raise NameConflict(f"{self.target.name!r} was already uploaded") from None
        finally:
            self._discard()
        self._done = True
        logger.info(f"Received {self.target.name} ({self.written} bytes)")
        return self.target.path

    async def abort(self) -> None:
        """Drop whatever was written so far."""
        await self.close()
        self._discard()
        if not self._done:
            logger.warning(f"Discarded partial upload of {self.target.name} after {self.written} bytes")
            self._done = True

    def _discard(self) -> None:
        try:
            os.unlink(self.partial_path)
        except FileNotFoundError:
            pass


async def receive(target: UploadTarget, chunks: AsyncIterator[bytes]) -> Path:
    """Stream ``chunks`` into ``target`` and publish the result.

    Returns:
        The final path of the received file.
    """
    async with UploadWriter(target) as writer:
        async for chunk in chunks:
            if chunk:
                await writer.write(chunk)
        return await writer.commit()


def _decode(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


class MultipartReceiver:
    """Streams every file part of a ``multipart/form-data`` body into an upload.

    Each file part is authorized when its headers arrive and written through
    its own ``UploadWriter``, with earlier parts counted against the quota.
    Nothing is published until the whole body has been read; a request either
    lands all of its files or none of them.
    """

    def __init__(self, authorizer: UploadAuthorizer, upload: Upload, content_type: str):
        """Initialize the receiver.

        Raises:
            MalformedUpload: If ``content_type`` is not multipart with a boundary.
        """
        ctype, params = parse_options_header(content_type or "")
        boundary = params.get(b"boundary")
        if ctype != b"multipart/form-data" or not boundary:
            raise MalformedUpload("Expected a multipart/form-data body")

        self.authorizer = authorizer
        self.upload = upload
        self.writers: List[UploadWriter] = []
        self._names: Set[str] = set()
        self._current: Optional[UploadWriter] = None

        # Parser callbacks are synchronous; they queue events for ``_drain``
        self._events: list = []
        self._in_file = False
        self._header_field = b""
        self._header_value = b""
        self._header_bytes = 0
        self._headers: dict = {}
        self._parser = MultipartParser(
            boundary,
            {
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
            },
        )

    # ------------------------------------------------------------------
    # Parser callbacks
    # ------------------------------------------------------------------

    def _on_part_begin(self) -> None:
        self._in_file = False
        self._headers = {}
        self._header_bytes = 0

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]
        self._count_header(end - start)

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]
        self._count_header(end - start)

    def _count_header(self, size: int) -> None:
        self._header_bytes += size
        if self._header_bytes > MAX_PART_HEADER_BYTES:
            raise MalformedUpload("Part headers are too large")

    def _on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        filename = options.get(b"filename")
        # Browsers send an empty filename for an unused file input
        if filename:
            self._in_file = True
            self._events.append(("file", _decode(filename)))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._in_file:
            self._events.append(("data", data[start:end]))

    def _on_part_end(self) -> None:
        if self._in_file:
            self._events.append(("end", None))
        self._in_file = False

    # ------------------------------------------------------------------
    # Async side
    # ------------------------------------------------------------------

    async def _open(self, filename: str) -> None:
        reserved = sum(writer.written for writer in self.writers)
        target = self.authorizer.authorize(self.upload, filename, reserved=reserved)
        if target.name in self._names:
            raise NameConflict(f"{target.name!r} appears twice in one request")
        self._names.add(target.name)

        writer = UploadWriter(target)
        self.writers.append(writer)
        self._current = await writer.open()

    async def _drain(self) -> None:
        events, self._events = self._events, []
        for kind, payload in events:
            if kind == "file":
                await self._open(payload)
            elif kind == "data":
                await self._current.write(payload)
            else:
                await self._current.close()
                self._current = None

    async def _feed(self, chunk: bytes) -> None:
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            raise MalformedUpload(f"Invalid multipart body: {e}") from e
        await self._drain()

    async def _publish(self) -> List[str]:
        published: List[Path] = []
        try:
            for writer in self.writers:
                published.append(await writer.commit())
        except BaseException:
            for path in published:
                path.unlink(missing_ok=True)
            if published:
                logger.warning(f"Rolled back {len(published)} file(s) of a failed multipart upload")
            raise
        return [writer.target.name for writer in self.writers]

    async def receive(self, chunks: AsyncIterator[bytes]) -> List[str]:
        """Read the whole body, then publish every file it carried.

        Returns:
            The names of the received files, in request order.

        Raises:
            MalformedUpload: If the body is not valid multipart or has no file.
            NameConflict: If a name already exists or repeats in the request.
            TooLarge: If a file outgrows its limit or the batch the quota.
        """
        try:
            async for chunk in chunks:
                if chunk:
                    await self._feed(chunk)
            self._parser.finalize()
            await self._drain()
            if self._current is not None:
                raise MalformedUpload("Multipart body ended inside a file")
            if not self.writers:
                raise MalformedUpload("No files in request")
            return await self._publish()
        finally:
            for writer in self.writers:
                await writer.abort()

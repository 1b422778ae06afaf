"""Minimal gzip + tar reader for registry tarballs.

Only what is needed to pull template files out of a package tarball:
decompress the gzip stream, walk the 512-byte tar header blocks and return
regular file entries. Everything here is pure (bytes in, values out) so it can
be tested without any network code.
"""

from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass

from .errors import MalformedSourceError
from .prompt_source import PROMPT_EXTENSION
from .prompt_source import DiscoveredPromptFile

logger = logging.getLogger(__name__)

BLOCK_SIZE = 512
DECOMPRESS_CHUNK_SIZE = 64 * 1024
PACKAGE_PREFIX = "package/"

# Header field offsets (POSIX ustar)
_NAME = slice(0, 100)
_SIZE = slice(124, 136)
_TYPEFLAG = 156
_MAGIC = slice(257, 262)
_PREFIX = slice(345, 500)

_REGULAR_TYPES = (ord("0"), 0)


@dataclass
class TarEntry:
    """Regular file extracted from a tar archive."""

    name: str
    size: int
    content: bytes


def decompress_gzip(data: bytes, chunk_size: int = DECOMPRESS_CHUNK_SIZE) -> bytes:
    """Decompress a gzip buffer by streaming it through zlib.

    Input is fed in ``chunk_size`` pieces and the decompressor's output chunks
    are accumulated, so arbitrarily chunked output is handled. Concatenated
    gzip members are decompressed one after another.

    Raises:
        MalformedSourceError: Data is not a valid gzip stream
    """
    chunks: list[bytes] = []
    position = 0

    try:
        while position < len(data):
            # Some writers pad the stream with zeros after the last member
            if not data[position:].strip(b"\0"):
                break

            decompressor = zlib.decompressobj(wbits=16 + zlib.MAX_WBITS)
            while position < len(data) and not decompressor.eof:
                chunk = data[position : position + chunk_size]
                position += len(chunk)
                chunks.append(decompressor.decompress(chunk))
            chunks.append(decompressor.flush())

            if not decompressor.eof:
                raise MalformedSourceError("Truncated gzip stream")

            # Rewind over input fed past the end of this member
            position -= len(decompressor.unused_data)
    except zlib.error as e:
        raise MalformedSourceError(f"Invalid gzip data: {e}") from e

    return b"".join(chunks)


def _read_string(field: bytes) -> str:
    """Decode a NUL-terminated header field."""
    end = field.find(b"\0")
    if end != -1:
        field = field[:end]
    return field.decode("utf-8", errors="replace").strip()


def _read_size(field: bytes, offset: int) -> int:
    text = _read_string(field)
    if not text:
        return 0
    try:
        return int(text, 8)
    except ValueError:
        raise MalformedSourceError(f"Invalid tar size field {text!r} in header at offset {offset}") from None


def parse_tar(data: bytes) -> list[TarEntry]:
    """Parse an uncompressed tar archive into its regular, non-empty files.

    Stops at the first all-zero header block. Directories, links and other
    non-regular entries are skipped, but their data blocks are still stepped
    over.

    Raises:
        MalformedSourceError: Header has an invalid size or file data is truncated
    """
    entries: list[TarEntry] = []
    offset = 0

    while offset + BLOCK_SIZE <= len(data):
        header = data[offset : offset + BLOCK_SIZE]
        if header.count(0) == BLOCK_SIZE:
            break

        name = _read_string(header[_NAME])
        if header[_MAGIC] == b"ustar":
            prefix = _read_string(header[_PREFIX])
            if prefix:
                name = f"{prefix}/{name}"
        size = _read_size(header[_SIZE], offset)
        type_flag = header[_TYPEFLAG]

        offset += BLOCK_SIZE

        if type_flag in _REGULAR_TYPES and size > 0:
            if offset + size > len(data):
                raise MalformedSourceError(f"Tar entry {name!r} is truncated ({size} bytes declared)")
            entries.append(TarEntry(name=name, size=size, content=data[offset : offset + size]))

        # File data is padded to whole blocks
        offset += -(-size // BLOCK_SIZE) * BLOCK_SIZE

    return entries


def extract_prompt_files(
    tarball: bytes,
    extension: str = PROMPT_EXTENSION,
    prompt_dir: str = "prompts",
) -> list[DiscoveredPromptFile]:
    """Extract ``prompts/*<extension>`` files from a gzipped package tarball.

    Registry tarballs nest everything under a ``package/`` directory; one such
    leading segment is stripped before matching. Only direct children of the
    prompt directory match.

    Raises:
        MalformedSourceError: Tarball cannot be decompressed or parsed, or a
            matching file is not valid UTF-8
    """
    entries = parse_tar(decompress_gzip(tarball))

    prompt_files: list[DiscoveredPromptFile] = []
    for entry in entries:
        path = entry.name.removeprefix(PACKAGE_PREFIX)
        directory, _, filename = path.rpartition("/")
        if directory != prompt_dir or not filename.endswith(extension):
            continue
        try:
            content = entry.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSourceError(f"Template file {entry.name!r} is not valid UTF-8") from e
        prompt_files.append(DiscoveredPromptFile(filename=filename, content=content))

    logger.debug(f"Extracted {len(prompt_files)} of {len(entries)} tarball entries")
    return prompt_files

from __future__ import annotations

import re
from typing import Iterator, List, NamedTuple, Union

from .constants import (
    BLOCK_SIZE,
    NAME_FIELD,
    SIZE_FIELD,
    TYPEFLAG_OFFSET,
    MAGIC_FIELD,
    PREFIX_FIELD,
    USTAR_MAGIC,
    TYPE_DIR,
    FILE_TYPEFLAGS,
)
from .errors import ArchiveFormatError
from .pathutil import member_path


_ZERO_BLOCK = bytes(BLOCK_SIZE)
_SIZE_TEXT = re.compile(rb"-?[0-7]+")

Buffer = Union[bytes, bytearray, memoryview]


class ArchiveRecord(NamedTuple):
    path: str
    content: bytes


def _read_string(block: memoryview, field) -> str:
    raw = bytes(block[field[0]:field[1]])
    end = raw.find(b"\x00")
    if end >= 0:
        raw = raw[:end]
    return raw.decode("utf-8", errors="replace").strip()


def _parse_size(block: memoryview) -> int:
    """Octal ASCII size; blank or unparseable text counts as zero."""
    text = bytes(block[SIZE_FIELD[0]:SIZE_FIELD[1]]).replace(b"\x00", b"").strip()
    if not _SIZE_TEXT.fullmatch(text):
        return 0
    return int(text, 8)


def _entry_name(block: memoryview) -> str:
    name = _read_string(block, NAME_FIELD)
    if name and bytes(block[MAGIC_FIELD[0]:MAGIC_FIELD[1]]) == USTAR_MAGIC:
        prefix = _read_string(block, PREFIX_FIELD)
        if prefix:
            name = prefix.rstrip("/") + "/" + name
    return name


def iter_records(data: Buffer) -> Iterator[ArchiveRecord]:
    """Yield ``(path, content)`` for every regular file in a ustar byte buffer.

    The scan is lenient about damaged headers: a non-zero block with an empty
    name is skipped, and a trailing partial block is ignored. Directories and
    other non-file entries produce no record. Each call scans from offset 0 of
    its own view, so the same buffer may be parsed any number of times.

    Raises:
        ArchiveFormatError: when a size field is negative or runs past the end
            of the buffer.
    """
    view = memoryview(data).cast("B")
    total = len(view)
    offset = 0
    while offset + BLOCK_SIZE <= total:
        block = view[offset:offset + BLOCK_SIZE]
        name = _entry_name(block)
        if not name:
            if block == _ZERO_BLOCK:
                return
            offset += BLOCK_SIZE
            continue
        size = _parse_size(block)
        typeflag = bytes(block[TYPEFLAG_OFFSET:TYPEFLAG_OFFSET + 1])
        offset += BLOCK_SIZE
        if typeflag == TYPE_DIR:
            continue
        if size < 0 or size > total - offset:
            raise ArchiveFormatError(
                f"Entry {name!r} declares {size} bytes but only {total - offset} remain"
            )
        span = -(-size // BLOCK_SIZE) * BLOCK_SIZE
        if typeflag in FILE_TYPEFLAGS:
            yield ArchiveRecord(member_path(name), bytes(view[offset:offset + size]))
        # Links and extension headers: skip their data, emit nothing.
        offset += span


def parse_archive(data: Buffer) -> List[ArchiveRecord]:
    return list(iter_records(data))

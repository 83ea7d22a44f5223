from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Set, Tuple

from .constants import (
    BLOCK_SIZE,
    END_OF_ARCHIVE,
    NAME_FIELD,
    MODE_FIELD,
    UID_FIELD,
    GID_FIELD,
    SIZE_FIELD,
    MTIME_FIELD,
    CHKSUM_FIELD,
    TYPEFLAG_OFFSET,
    MAGIC_FIELD,
    VERSION_FIELD,
    PREFIX_FIELD,
    USTAR_MAGIC,
    USTAR_VERSION,
    TYPE_FILE,
    TYPE_DIR,
    ENTRY_FILE,
    ENTRY_DIR,
)
from .errors import ArchiveIOError, UnsupportedEntryError
from .pathutil import archive_path


_NAME_LEN = NAME_FIELD[1] - NAME_FIELD[0]
_PREFIX_LEN = PREFIX_FIELD[1] - PREFIX_FIELD[0]


@dataclass
class ArchiveEntry:
    path: str
    kind: str  # ENTRY_FILE or ENTRY_DIR
    mode: int = 0o644
    mtime: int = 0
    content: bytes = b""

    @property
    def size(self) -> int:
        return len(self.content) if self.kind == ENTRY_FILE else 0


def _octal_field(value: int, field: Tuple[int, int], path: str) -> bytes:
    """Zero-padded octal ASCII terminated by NUL, filling ``field`` exactly."""
    width = field[1] - field[0]
    text = format(value, "o")
    if value < 0 or len(text) > width - 1:
        raise UnsupportedEntryError(path, f"value {value} does not fit the header field")
    return text.rjust(width - 1, "0").encode("ascii") + b"\x00"


def _split_name(path: str) -> Tuple[bytes, bytes]:
    """Split a long path into ustar (prefix, name) at a '/' boundary."""
    raw = path.encode("utf-8")
    if len(raw) <= _NAME_LEN:
        return b"", raw
    # Longest prefix that fits, cut at a separator; the separator itself is implied.
    # A directory's trailing '/' is never a cut point (the name would be empty).
    cut = min(len(raw) - 2, _PREFIX_LEN)
    while cut > 0 and raw[cut:cut + 1] != b"/":
        cut -= 1
    prefix, name = raw[:cut], raw[cut + 1:]
    if cut <= 0 or len(name) > _NAME_LEN:
        raise UnsupportedEntryError(path, "path is too long for the archive header")
    return prefix, name


def _pack_header(entry: ArchiveEntry) -> bytes:
    prefix, name = _split_name(entry.path)
    hdr = bytearray(BLOCK_SIZE)

    def put(field: Tuple[int, int], value: bytes) -> None:
        hdr[field[0]:field[0] + len(value)] = value

    put(NAME_FIELD, name)
    put(MODE_FIELD, _octal_field(entry.mode & 0o7777, MODE_FIELD, entry.path))
    put(UID_FIELD, _octal_field(0, UID_FIELD, entry.path))
    put(GID_FIELD, _octal_field(0, GID_FIELD, entry.path))
    put(SIZE_FIELD, _octal_field(entry.size, SIZE_FIELD, entry.path))
    put(MTIME_FIELD, _octal_field(max(0, int(entry.mtime)), MTIME_FIELD, entry.path))
    hdr[TYPEFLAG_OFFSET:TYPEFLAG_OFFSET + 1] = TYPE_DIR if entry.kind == ENTRY_DIR else TYPE_FILE
    put(MAGIC_FIELD, USTAR_MAGIC)
    put(VERSION_FIELD, USTAR_VERSION)
    put(PREFIX_FIELD, prefix)
    # Checksum is computed with its own field read as eight spaces.
    put(CHKSUM_FIELD, b" " * (CHKSUM_FIELD[1] - CHKSUM_FIELD[0]))
    checksum = sum(hdr)
    put(CHKSUM_FIELD, format(checksum, "06o").encode("ascii") + b"\x00 ")
    return bytes(hdr)


def _padding(size: int) -> bytes:
    return b"\x00" * ((BLOCK_SIZE - size % BLOCK_SIZE) % BLOCK_SIZE)


class ArchiveWriter:
    """In-memory ustar writer; bytes are only handed out by ``finalize``."""

    def __init__(self):
        self._buf = bytearray()
        self._paths: Set[str] = set()
        self._finalized = False
        self.file_count = 0
        self.dir_count = 0

    def add_dir(self, arc_path: str, mode: int = 0o755, mtime: int = 0):
        """Record a directory entry; the stored name always ends with '/'."""
        if not arc_path.endswith("/"):
            arc_path += "/"
        self.add_entry(ArchiveEntry(path=arc_path, kind=ENTRY_DIR, mode=mode, mtime=mtime))

    def add_file(self, arc_path: str, content: bytes, mode: int = 0o644, mtime: int = 0):
        self.add_entry(ArchiveEntry(path=arc_path, kind=ENTRY_FILE, mode=mode, mtime=mtime, content=bytes(content)))

    def add_entry(self, entry: ArchiveEntry):
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        if not entry.path or entry.path.startswith("/") or entry.path.startswith("./"):
            raise ValueError(f"Archive paths must be relative: {entry.path!r}")
        if entry.kind == ENTRY_DIR:
            if not entry.path.endswith("/") or entry.content:
                raise ValueError(f"Directory entry must end with '/' and carry no content: {entry.path}")
        elif entry.kind == ENTRY_FILE:
            if entry.path.endswith("/"):
                raise ValueError(f"File entry may not end with '/': {entry.path}")
        else:
            raise UnsupportedEntryError(entry.path)
        if entry.path in self._paths:
            raise ValueError(f"Duplicate archive path: {entry.path}")
        header = _pack_header(entry)
        self._paths.add(entry.path)
        self._buf += header
        if entry.kind == ENTRY_FILE:
            self._buf += entry.content
            self._buf += _padding(len(entry.content))
            self.file_count += 1
        else:
            self.dir_count += 1

    def finalize(self) -> bytes:
        """Append the end-of-archive marker and return the complete archive."""
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        self._finalized = True
        self._buf += END_OF_ARCHIVE
        return bytes(self._buf)


def _listing(fs_dir: str) -> Iterator[os.DirEntry]:
    try:
        with os.scandir(fs_dir) as it:
            children = sorted(it, key=lambda d: d.name)
    except OSError as exc:
        raise ArchiveIOError(fs_dir, exc) from exc
    return iter(children)


def iter_entries(root: str) -> Iterator[ArchiveEntry]:
    """Walk ``root`` depth-first (pre-order) without recursion.

    Each stack slot holds the remaining children of one open directory, so a
    directory header is always followed by its own contents. Listings are
    sorted by name for reproducible output.

    Raises:
        UnsupportedEntryError: on a symbolic link, a special file or a name
            that is not valid UTF-8.
        ArchiveIOError: when a directory or file cannot be read.
    """
    stack: List[Iterator[os.DirEntry]] = [_listing(root)]
    while stack:
        child = next(stack[-1], None)
        if child is None:
            stack.pop()
            continue
        rel = archive_path(root, child.path)
        try:
            rel.encode("utf-8")
        except UnicodeEncodeError:
            # os.scandir hands back undecodable bytes as lone surrogates.
            shown = rel.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
            raise UnsupportedEntryError(shown, "file name is not valid UTF-8") from None
        try:
            st = os.lstat(child.path)
        except OSError as exc:
            raise ArchiveIOError(child.path, exc) from exc
        if stat.S_ISLNK(st.st_mode):
            raise UnsupportedEntryError(rel, "symbolic links are not supported")
        if stat.S_ISDIR(st.st_mode):
            yield ArchiveEntry(path=rel + "/", kind=ENTRY_DIR, mode=st.st_mode & 0o7777, mtime=int(st.st_mtime))
            stack.append(_listing(child.path))
        elif stat.S_ISREG(st.st_mode):
            try:
                with open(child.path, "rb") as fh:
                    content = fh.read()
            except OSError as exc:
                raise ArchiveIOError(child.path, exc) from exc
            yield ArchiveEntry(
                path=rel,
                kind=ENTRY_FILE,
                mode=st.st_mode & 0o7777,
                mtime=int(st.st_mtime),
                content=content,
            )
        else:
            raise UnsupportedEntryError(rel, "special files are not supported")


def serialize_directory(
    root: str,
    writer: Optional[ArchiveWriter] = None,
    *,
    on_entry: Optional[Callable[[ArchiveEntry], None]] = None,
) -> bytes:
    """Serialize the tree under ``root`` into ustar bytes.

    ``on_entry`` is called after each entry is added. All-or-nothing: any
    error aborts the walk and no bytes are returned.
    """
    w = writer if writer is not None else ArchiveWriter()
    for entry in iter_entries(root):
        w.add_entry(entry)
        if on_entry is not None:
            on_entry(entry)
    return w.finalize()

"""In-memory request interception over a decrypted archive.

``InterceptionRuntime`` is the Python twin of the generated service worker:
it is loaded once with the decrypted archive bytes and then answers
same-origin content requests from a path index. The index is only ever
replaced as a whole, so a response never mixes content from two loads.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional
from urllib.parse import urlsplit

from .constants import MSG_ERROR, MSG_LOAD, MSG_READY, PBKDF2_ITERATIONS
from .errors import ArchiveFormatError
from .mime import detect_mime_type
from .pathutil import normalize_request_path
from .reader import Buffer, iter_records


_DEFAULT_PORTS = {"http": 80, "https": 443}


class RuntimeState(enum.Enum):
    IDLE = "idle"
    READY = "ready"


@dataclass(frozen=True)
class IndexedFile:
    content: bytes
    mime: str


class FileIndex(Mapping[str, IndexedFile]):
    """Read-only path -> file mapping; build a new one rather than editing."""

    def __init__(self, files: Mapping[str, IndexedFile]):
        self._files: Dict[str, IndexedFile] = dict(files)

    @classmethod
    def from_archive(cls, data: Buffer) -> "FileIndex":
        files: Dict[str, IndexedFile] = {}
        for record in iter_records(data):
            # Later duplicates win, as with Map.set in the service worker.
            files[record.path] = IndexedFile(record.content, detect_mime_type(record.path))
        return cls(files)

    def __getitem__(self, path: str) -> IndexedFile:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)


@dataclass
class ServedResponse:
    status: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")


def origin_of(url: str) -> str:
    """``scheme://host[:port]`` with default ports omitted and case folded."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        raise ValueError(f"URL has no origin: {url!r}")
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is None or port == _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


class InterceptionRuntime:
    """Idle -> Ready state machine serving one decrypted archive at a time.

    Loads and lookups share one lock: a request that arrives while a load is
    parsing waits for the new index instead of seeing a partial one.
    """

    def __init__(self, origin: str):
        self.origin = origin_of(origin)
        self._lock = threading.Lock()
        self._index: Optional[FileIndex] = None

    @property
    def state(self) -> RuntimeState:
        return RuntimeState.IDLE if self._index is None else RuntimeState.READY

    @property
    def index(self) -> Optional[FileIndex]:
        return self._index

    def load(self, payload: Buffer) -> int:
        """Index a decrypted archive, replacing any previous one.

        Returns the number of files indexed. On failure the previous index
        (or the Idle state) is left untouched and the error propagates.

        Raises:
            TypeError: ``payload`` is not bytes-like.
            ArchiveFormatError: the archive is malformed.
        """
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError("Expected a bytes-like archive payload")
        with self._lock:
            index = FileIndex.from_archive(payload)
            self._index = index
        return len(index)

    def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        """Answer a ``frontcrypt-load`` message with a ready or error reply.

        Messages of any other type are ignored (``None``).
        """
        if not isinstance(message, dict) or message.get("type") != MSG_LOAD:
            return None
        iterations = message.get("iterations")
        if iterations is not None and iterations != PBKDF2_ITERATIONS:
            return {
                "type": MSG_ERROR,
                "message": "Loader and runtime disagree on key derivation parameters",
            }
        try:
            count = self.load(message.get("payload"))
        except (ArchiveFormatError, TypeError) as exc:
            return {"type": MSG_ERROR, "message": str(exc)}
        return {"type": MSG_READY, "files": count}

    def fetch(self, url: str) -> Optional[ServedResponse]:
        """Serve ``url`` from the index, or decline with ``None``.

        Declines cross-origin requests, requests made before any archive was
        loaded, and paths the archive does not contain.
        """
        try:
            if origin_of(url) != self.origin:
                return None
        except ValueError:
            return None
        with self._lock:
            index = self._index
        if index is None:
            return None
        record = index.get(normalize_request_path(urlsplit(url).path))
        if record is None:
            return None
        return ServedResponse(
            status=200,
            body=record.content,
            headers={"Content-Type": record.mime, "Cache-Control": "no-store"},
        )

from __future__ import annotations

import base64
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .constants import (
    LOADER_NAME,
    PAYLOAD_NAME,
    PBKDF2_ITERATIONS,
    SERVICE_WORKER_NAME,
)
from .encryption import EncryptionResult, seal, unseal
from .errors import ArchiveIOError, PayloadFormatError
from .templates import build_loader_html, build_service_worker_script
from .writer import ArchiveEntry, ArchiveWriter, serialize_directory


_LOADER_PARAMS = {
    "salt": re.compile(r'const SALT_B64 = "([A-Za-z0-9+/=]*)";'),
    "iv": re.compile(r'const IV_B64 = "([A-Za-z0-9+/=]*)";'),
    "iterations": re.compile(r"const ITERATIONS = (\d+);"),
}


@dataclass(frozen=True)
class BundleArtifacts:
    payload: bytes
    loader_html: str
    service_worker: str

    def files(self) -> Dict[str, bytes]:
        return {
            PAYLOAD_NAME: self.payload,
            LOADER_NAME: self.loader_html.encode("utf-8"),
            SERVICE_WORKER_NAME: self.service_worker.encode("utf-8"),
        }


@dataclass
class BuildSummary:
    output_dir: Path
    file_count: int
    dir_count: int
    archive_size: int
    payload_size: int


def assemble_bundle(result: EncryptionResult) -> BundleArtifacts:
    salt_b64 = base64.b64encode(result.salt).decode("ascii")
    iv_b64 = base64.b64encode(result.nonce).decode("ascii")
    return BundleArtifacts(
        payload=result.ciphertext,
        loader_html=build_loader_html(salt_b64, iv_b64, result.iterations),
        service_worker=build_service_worker_script(result.iterations),
    )


def write_bundle(artifacts: BundleArtifacts, out_dir: str) -> List[Path]:
    """Write the three artifacts into ``out_dir``.

    Every file is first written to a temporary name in the same directory;
    only once all three are on disk are they renamed into place. On failure
    the temporaries are removed and no artifact name is touched.
    """
    out = Path(out_dir)
    staged: List[Tuple[Path, Path]] = []
    try:
        for name, data in artifacts.files().items():
            fd, tmp = tempfile.mkstemp(prefix=".frontcrypt-", suffix=".tmp", dir=str(out))
            staged.append((Path(tmp), out / name))
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
        for tmp, final in staged:
            os.replace(tmp, final)
    except OSError as exc:
        for tmp, _final in staged:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
        raise ArchiveIOError(str(out), exc) from exc
    return [final for _tmp, final in staged]


def build_bundle(
    source_dir: str,
    password: str,
    out_dir: str,
    *,
    on_entry: Optional[Callable[[ArchiveEntry], None]] = None,
) -> BuildSummary:
    """Archive ``source_dir``, seal it with ``password`` and write the bundle.

    Nothing is written to ``out_dir`` unless archiving and encryption both
    succeed.
    """
    writer = ArchiveWriter()
    archive = serialize_directory(source_dir, writer, on_entry=on_entry)
    result = seal(archive, password)
    artifacts = assemble_bundle(result)
    write_bundle(artifacts, out_dir)
    return BuildSummary(
        output_dir=Path(out_dir),
        file_count=writer.file_count,
        dir_count=writer.dir_count,
        archive_size=len(archive),
        payload_size=len(artifacts.payload),
    )


def read_loader_params(loader_html: str) -> Tuple[bytes, bytes, int]:
    """Recover (salt, nonce, iterations) embedded in a generated loader document."""
    found = {}
    for key, pattern in _LOADER_PARAMS.items():
        m = pattern.search(loader_html)
        if m is None:
            raise PayloadFormatError(f"Loader document has no {key} parameter")
        found[key] = m.group(1)
    try:
        salt = base64.b64decode(found["salt"], validate=True)
        nonce = base64.b64decode(found["iv"], validate=True)
    except ValueError as exc:
        raise PayloadFormatError("Loader document carries malformed base64") from exc
    return salt, nonce, int(found["iterations"])


def open_bundle(bundle_dir: str, password: str) -> bytes:
    """Decrypt a bundle directory back into its archive bytes.

    Raises:
        AuthenticationError: wrong password or tampered payload.
        PayloadFormatError: the loader parameters are missing or unusable.
        ArchiveIOError: a bundle file cannot be read.
    """
    base = Path(bundle_dir)
    try:
        loader_html = (base / LOADER_NAME).read_text(encoding="utf-8")
        payload = (base / PAYLOAD_NAME).read_bytes()
    except OSError as exc:
        raise ArchiveIOError(str(exc.filename or base), exc) from exc
    salt, nonce, iterations = read_loader_params(loader_html)
    if iterations != PBKDF2_ITERATIONS:
        raise PayloadFormatError(
            f"Bundle uses {iterations} KDF iterations; this version expects {PBKDF2_ITERATIONS}"
        )
    return unseal(payload, password, salt, nonce)

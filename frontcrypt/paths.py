from __future__ import annotations

import os
from typing import Optional

from .constants import DEFAULT_OUTPUT_SUFFIX
from .errors import ArchiveIOError, InputError


def determine_output_dir(source_dir: str, requested: Optional[str] = None) -> str:
    """Absolute output directory: the requested one, else ``<source>-protected``."""
    if requested:
        return os.path.abspath(requested)
    return os.path.abspath(source_dir.rstrip("/\\") + DEFAULT_OUTPUT_SUFFIX)


def is_inside_directory(target: str, parent: str) -> bool:
    """True when ``target`` lies strictly below ``parent``."""
    target = os.path.realpath(target)
    parent = os.path.realpath(parent)
    if target == parent:
        return False
    try:
        return os.path.commonpath([target, parent]) == parent
    except ValueError:  # different drives
        return False


def validate_output_dir(source_dir: str, output_dir: str) -> None:
    if os.path.realpath(source_dir) == os.path.realpath(output_dir):
        raise InputError("Output directory must differ from the source directory")
    if is_inside_directory(output_dir, source_dir):
        raise InputError("Output directory cannot be inside the source directory")


def ensure_directory_readable(directory: str) -> None:
    if not os.path.isdir(directory):
        raise InputError(f"Source path {directory} is not a readable directory")
    if not os.access(directory, os.R_OK | os.X_OK):
        raise InputError(f"Source directory {directory} is not readable")


def prepare_output_directory(output_dir: str) -> None:
    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as exc:
        raise ArchiveIOError(output_dir, exc) from exc

from __future__ import annotations

import os

from .constants import DEFAULT_DOCUMENT


def archive_path(root: str, fs_path: str) -> str:
    """Relative archive name for ``fs_path`` under ``root``.

    Rules:
    - Relative to the walk root
    - Platform separators become '/'
    - No leading './' or '/', no '..' segments
    """
    rel = os.path.relpath(fs_path, start=root)
    rel = rel.replace(os.sep, "/")
    if os.altsep:
        rel = rel.replace(os.altsep, "/")
    parts = [q for q in rel.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError(f"Path escapes archive root: {fs_path}")
    return "/".join(parts)


def member_path(name: str) -> str:
    """Map a stored archive name to the absolute form used as an index key."""
    if name.startswith("./"):
        name = name[1:]
    if not name.startswith("/"):
        name = "/" + name
    return name


def normalize_request_path(path: str) -> str:
    """Map a request path to the index key it should be served from.

    An empty path or '/' maps to '/index.html'; a trailing '/' gets
    'index.html' appended. Query strings and fragments are ignored.
    """
    path = path.split("#", 1)[0].split("?", 1)[0]
    if not path or path == "/":
        return "/" + DEFAULT_DOCUMENT
    if path.endswith("/"):
        return path + DEFAULT_DOCUMENT
    return path

from __future__ import annotations

# Fixed table shared with the service worker; see templates.SERVICE_WORKER_TEMPLATE.
MIME_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".htm": "text/html; charset=utf-8",
    ".js": "text/javascript; charset=utf-8",
    ".mjs": "text/javascript; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".ico": "image/x-icon",
    ".txt": "text/plain; charset=utf-8",
    ".wasm": "application/wasm",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def detect_mime_type(path: str) -> str:
    name = path.rsplit("/", 1)[-1].lower()
    dot = name.rfind(".")
    if dot < 0:
        return DEFAULT_MIME_TYPE
    return MIME_TYPES.get(name[dot:], DEFAULT_MIME_TYPE)

"""Static loader document and service worker, with the KDF inputs substituted in.

Both templates use ``string.Template`` placeholders (``$name``); a literal
dollar sign in the JavaScript is written ``$$``. The service worker
re-implements ``frontcrypt.reader``, ``frontcrypt.mime`` and
``frontcrypt.runtime`` and must be kept in step with them.
"""

from __future__ import annotations

import base64
import binascii
from string import Template

from .constants import (
    BLOCK_SIZE,
    MSG_ERROR,
    MSG_LOAD,
    MSG_READY,
    NONCE_SIZE,
    PAYLOAD_NAME,
    SALT_SIZE,
    SERVICE_WORKER_NAME,
)
from .errors import InputError


LOADER_TEMPLATE = Template(r"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Protected Application</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <style>
        :root {
            color-scheme: light dark;
            font-family: system-ui, -apple-system, "Segoe UI", sans-serif;
        }
        body {
            margin: 0;
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
        }
        main {
            width: min(380px, 90vw);
            padding: 32px;
            border-radius: 16px;
            box-shadow: 0 20px 45px rgba(15, 23, 42, 0.18);
        }
        form {
            display: grid;
            gap: 16px;
        }
        input, button {
            padding: 12px;
            border-radius: 10px;
            font-size: 1rem;
        }
        #status {
            min-height: 1.2rem;
        }
        .error {
            color: #b91c1c;
        }
    </style>
</head>
<body>
    <main>
        <h1>Unlock Application</h1>
        <form id="unlock-form" autocomplete="off">
            <label for="password">Password</label>
            <input id="password" name="password" type="password" required autocomplete="off" autofocus>
            <button type="submit">Unlock</button>
            <p id="status" role="status" aria-live="polite"></p>
        </form>
    </main>
    <script>
        (() => {
            const SALT_B64 = "$salt_b64";
            const IV_B64 = "$iv_b64";
            const ITERATIONS = $iterations;
            const PAYLOAD_URL = "/$payload_name";
            const WORKER_URL = "/$worker_name";
            const form = document.getElementById("unlock-form");
            const passwordField = document.getElementById("password");
            const statusElement = document.getElementById("status");

            form.addEventListener("submit", async (event) => {
                event.preventDefault();
                const password = passwordField.value;
                if (!password) {
                    setStatus("Password is required", true);
                    return;
                }
                const button = form.querySelector("button");
                button.disabled = true;
                setStatus("Unlocking...");
                try {
                    const archive = await decryptPayload(password);
                    const worker = await activeWorker();
                    await sendArchive(worker, archive);
                    window.location.replace("/");
                } catch (error) {
                    // WebCrypto reports a failed GCM tag check as a bare DOMException.
                    const message = error instanceof DOMException
                        ? "Invalid password"
                        : (error instanceof Error ? error.message : "Unlock failed");
                    setStatus(message, true);
                    button.disabled = false;
                } finally {
                    passwordField.value = "";
                    passwordField.focus();
                }
            });

            async function decryptPayload(password) {
                const material = await crypto.subtle.importKey(
                    "raw", new TextEncoder().encode(password), "PBKDF2", false, ["deriveKey"]
                );
                const key = await crypto.subtle.deriveKey(
                    { name: "PBKDF2", salt: decodeBase64(SALT_B64), iterations: ITERATIONS, hash: "SHA-256" },
                    material,
                    { name: "AES-GCM", length: 256 },
                    false,
                    ["decrypt"]
                );
                const response = await fetch(PAYLOAD_URL, { cache: "no-store" });
                if (!response.ok) {
                    throw new Error("Failed to download encrypted payload");
                }
                const sealed = await response.arrayBuffer();
                return await crypto.subtle.decrypt({ name: "AES-GCM", iv: decodeBase64(IV_B64) }, key, sealed);
            }

            function decodeBase64(value) {
                const binary = atob(value);
                const bytes = new Uint8Array(binary.length);
                for (let i = 0; i < binary.length; i += 1) {
                    bytes[i] = binary.charCodeAt(i);
                }
                return bytes;
            }

            async function activeWorker() {
                if (!("serviceWorker" in navigator)) {
                    throw new Error("Service workers are not supported in this browser");
                }
                const registration = await navigator.serviceWorker.register(WORKER_URL);
                if (registration.active) {
                    return registration.active;
                }
                const pending = registration.installing || registration.waiting;
                if (pending) {
                    await new Promise((resolve, reject) => {
                        const onChange = () => {
                            if (pending.state === "activated") {
                                pending.removeEventListener("statechange", onChange);
                                resolve();
                            } else if (pending.state === "redundant") {
                                pending.removeEventListener("statechange", onChange);
                                reject(new Error("Service worker became redundant during activation"));
                            }
                        };
                        pending.addEventListener("statechange", onChange);
                        onChange();
                    });
                }
                const ready = await navigator.serviceWorker.ready;
                if (!ready.active) {
                    throw new Error("Service worker did not activate");
                }
                return ready.active;
            }

            function sendArchive(worker, buffer) {
                const channel = new MessageChannel();
                return new Promise((resolve, reject) => {
                    channel.port1.onmessage = (event) => {
                        const reply = event.data || {};
                        channel.port1.close();
                        if (reply.type === "$msg_ready") {
                            resolve();
                        } else {
                            reject(new Error(reply.message || "Service worker reported failure"));
                        }
                    };
                    worker.postMessage(
                        { type: "$msg_load", payload: buffer, iterations: ITERATIONS },
                        [buffer, channel.port2]
                    );
                });
            }

            function setStatus(message, isError = false) {
                statusElement.textContent = message;
                statusElement.classList.toggle("error", Boolean(isError));
            }
        })();
    </script>
</body>
</html>
""")


SERVICE_WORKER_TEMPLATE = Template(r"""const KDF_ITERATIONS = $iterations;
const BLOCK_SIZE = $block_size;
const MIME_TYPES = {
    html: "text/html; charset=utf-8",
    htm: "text/html; charset=utf-8",
    js: "text/javascript; charset=utf-8",
    mjs: "text/javascript; charset=utf-8",
    css: "text/css; charset=utf-8",
    json: "application/json; charset=utf-8",
    svg: "image/svg+xml",
    png: "image/png",
    jpg: "image/jpeg",
    jpeg: "image/jpeg",
    webp: "image/webp",
    gif: "image/gif",
    ico: "image/x-icon",
    txt: "text/plain; charset=utf-8",
    wasm: "application/wasm"
};

// Replaced wholesale on every load, never mutated in place.
let fileIndex = null;

self.addEventListener("install", () => {
    self.skipWaiting();
});

self.addEventListener("activate", (event) => {
    event.waitUntil(self.clients.claim());
});

self.addEventListener("message", (event) => {
    const data = event.data;
    if (!data || data.type !== "$msg_load") {
        return;
    }
    const port = event.ports && event.ports[0];
    try {
        if (data.iterations !== undefined && data.iterations !== KDF_ITERATIONS) {
            throw new Error("Loader and service worker disagree on key derivation parameters");
        }
        if (!(data.payload instanceof ArrayBuffer)) {
            throw new Error("Expected ArrayBuffer payload");
        }
        const next = buildIndex(new Uint8Array(data.payload));
        fileIndex = next;
        if (port) {
            port.postMessage({ type: "$msg_ready", files: next.size });
        }
    } catch (error) {
        if (port) {
            port.postMessage({ type: "$msg_error", message: error instanceof Error ? error.message : String(error) });
        }
    }
});

self.addEventListener("fetch", (event) => {
    const url = new URL(event.request.url);
    if (url.origin !== self.location.origin || fileIndex === null) {
        return;
    }
    const record = fileIndex.get(normalizeRequestPath(url.pathname));
    if (!record) {
        return;
    }
    event.respondWith(new Response(record.content, {
        headers: {
            "Content-Type": record.type,
            "Cache-Control": "no-store"
        }
    }));
});

function buildIndex(bytes) {
    const index = new Map();
    for (const file of readArchive(bytes)) {
        index.set(file.path, { content: file.content, type: detectMimeType(file.path) });
    }
    return index;
}

function readArchive(bytes) {
    const files = [];
    let offset = 0;
    while (offset + BLOCK_SIZE <= bytes.length) {
        const name = entryName(bytes, offset);
        if (!name) {
            if (isZeroBlock(bytes, offset)) {
                break;
            }
            offset += BLOCK_SIZE;
            continue;
        }
        const size = parseOctal(bytes, offset + 124, 12);
        const typeFlag = bytes[offset + 156];
        offset += BLOCK_SIZE;
        if (typeFlag === 53) {
            continue;
        }
        if (size < 0 || size > bytes.length - offset) {
            throw new Error("Archive entry " + name + " runs past the end of the payload");
        }
        if (typeFlag === 48 || typeFlag === 0 || typeFlag === 55) {
            files.push({ path: memberPath(name), content: bytes.slice(offset, offset + size) });
        }
        offset += Math.ceil(size / BLOCK_SIZE) * BLOCK_SIZE;
    }
    return files;
}

function entryName(bytes, offset) {
    let name = readString(bytes, offset, 100);
    if (name && readRaw(bytes, offset + 257, 6) === "ustar\0") {
        const prefix = readString(bytes, offset + 345, 155);
        if (prefix) {
            name = prefix.replace(/\/+$$/, "") + "/" + name;
        }
    }
    return name;
}

function readRaw(bytes, start, length) {
    return String.fromCharCode(...bytes.subarray(start, start + length));
}

function readString(bytes, start, length) {
    const field = bytes.subarray(start, start + length);
    const end = field.indexOf(0);
    const text = new TextDecoder().decode(end >= 0 ? field.subarray(0, end) : field);
    return text.trim();
}

function parseOctal(bytes, start, length) {
    let text = "";
    for (const value of bytes.subarray(start, start + length)) {
        if (value !== 0) {
            text += String.fromCharCode(value);
        }
    }
    text = text.replace(/^[ \t\n\r\v\f]+|[ \t\n\r\v\f]+$$/g, "");
    if (!/^-?[0-7]+$$/.test(text)) {
        return 0;
    }
    return parseInt(text, 8);
}

function isZeroBlock(bytes, start) {
    for (let i = start; i < start + BLOCK_SIZE; i += 1) {
        if (bytes[i] !== 0) {
            return false;
        }
    }
    return true;
}

function memberPath(name) {
    const trimmed = name.startsWith("./") ? name.slice(1) : name;
    return trimmed.startsWith("/") ? trimmed : "/" + trimmed;
}

function detectMimeType(path) {
    const base = path.slice(path.lastIndexOf("/") + 1).toLowerCase();
    const dot = base.lastIndexOf(".");
    if (dot < 0) {
        return "application/octet-stream";
    }
    return MIME_TYPES[base.slice(dot + 1)] || "application/octet-stream";
}

function normalizeRequestPath(pathname) {
    if (!pathname || pathname === "/") {
        return "/index.html";
    }
    if (pathname.endsWith("/")) {
        return pathname + "index.html";
    }
    return pathname;
}
""")


def _check_base64(value: str, expected_len: int, label: str) -> str:
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise InputError(f"{label} is not valid base64") from exc
    if len(decoded) != expected_len:
        raise InputError(f"{label} must decode to {expected_len} bytes, got {len(decoded)}")
    return value


def _check_iterations(iterations: int) -> int:
    if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 0:
        raise InputError(f"Iteration count must be a non-negative integer, got {iterations!r}")
    return iterations


def build_loader_html(salt_b64: str, iv_b64: str, iterations: int) -> str:
    """Render the password gate with the salt, nonce and iteration count embedded."""
    return LOADER_TEMPLATE.substitute(
        salt_b64=_check_base64(salt_b64, SALT_SIZE, "Salt"),
        iv_b64=_check_base64(iv_b64, NONCE_SIZE, "Nonce"),
        iterations=_check_iterations(iterations),
        payload_name=PAYLOAD_NAME,
        worker_name=SERVICE_WORKER_NAME,
        msg_load=MSG_LOAD,
        msg_ready=MSG_READY,
    )


def build_service_worker_script(iterations: int) -> str:
    return SERVICE_WORKER_TEMPLATE.substitute(
        iterations=_check_iterations(iterations),
        block_size=BLOCK_SIZE,
        msg_load=MSG_LOAD,
        msg_ready=MSG_READY,
        msg_error=MSG_ERROR,
    )

"""
frontcrypt: password-protected static sites that decrypt in the browser.

Features:

- Deterministic ustar archive writer over a directory tree (no symlinks or
  special files), and a lenient, bounds-checked reader for the same layout.
- Whole-archive AES-256-GCM sealing with a PBKDF2-HMAC-SHA256 key, using
  parameters the browser's WebCrypto can reproduce.
- Bundle output of three files: app.enc (ciphertext), index.html (password
  gate carrying salt, nonce and iteration count) and sw.js (service worker that
  serves the decrypted archive from memory).
- An in-process interception runtime mirroring the service worker, used by the
  local preview server and by tests.

No secret ever leaves the client: the salt and nonce are public, and the
password is only needed at unlock time.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "writer",
    "reader",
    "encryption",
    "bundle",
    "runtime",
]

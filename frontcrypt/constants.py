# Tape archive layout (ustar)
BLOCK_SIZE = 512
END_OF_ARCHIVE = b"\x00" * (BLOCK_SIZE * 2)

NAME_FIELD = (0, 100)
MODE_FIELD = (100, 108)
UID_FIELD = (108, 116)
GID_FIELD = (116, 124)
SIZE_FIELD = (124, 136)
MTIME_FIELD = (136, 148)
CHKSUM_FIELD = (148, 156)
TYPEFLAG_OFFSET = 156
MAGIC_FIELD = (257, 263)
VERSION_FIELD = (263, 265)
PREFIX_FIELD = (345, 500)

USTAR_MAGIC = b"ustar\x00"
USTAR_VERSION = b"00"

TYPE_FILE = b"0"
TYPE_FILE_CONTIGUOUS = b"7"
TYPE_DIR = b"5"
# Flags treated as regular file content by the reader; NUL is the pre-POSIX default.
FILE_TYPEFLAGS = (TYPE_FILE, b"\x00", TYPE_FILE_CONTIGUOUS)

# Entry kinds
ENTRY_FILE = "file"
ENTRY_DIR = "dir"


# Encryption (must match the generated loader and service worker exactly)
PBKDF2_ITERATIONS = 250_000
SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


# Bundle outputs
PAYLOAD_NAME = "app.enc"
LOADER_NAME = "index.html"
SERVICE_WORKER_NAME = "sw.js"
BUNDLE_FILES = (PAYLOAD_NAME, LOADER_NAME, SERVICE_WORKER_NAME)

DEFAULT_OUTPUT_SUFFIX = "-protected"
PASSWORD_ENV = "FRONTCRYPT_PASSWORD"

# Runtime message protocol
MSG_LOAD = "frontcrypt-load"
MSG_READY = "frontcrypt-ready"
MSG_ERROR = "frontcrypt-error"

DEFAULT_DOCUMENT = "index.html"

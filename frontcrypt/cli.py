from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from frontcrypt.bundle import build_bundle, open_bundle
from frontcrypt.constants import PASSWORD_ENV
from frontcrypt.errors import AuthenticationError, FrontcryptError
from frontcrypt.password import acquire_password
from frontcrypt.paths import (
    determine_output_dir,
    ensure_directory_readable,
    prepare_output_directory,
    validate_output_dir,
)
from frontcrypt.preview import make_preview_server
from frontcrypt.reader import iter_records
from frontcrypt.writer import ArchiveEntry


def cmd_seal(source: str, *, output: Optional[str] = None, password: Optional[str] = None, quiet: bool = False) -> Path:
    """Seal a directory into a protected bundle.

    Args:
        source: Directory to package.
        output: Output directory; defaults to ``<source>-protected``.
        password: Password; ``FRONTCRYPT_PASSWORD`` takes precedence, and
            without either the user is prompted.
        quiet: Suppress per-entry progress lines.

    Returns:
        The output directory.
    """
    source_dir = os.path.abspath(source)
    out_dir = determine_output_dir(source_dir, output)
    validate_output_dir(source_dir, out_dir)
    ensure_directory_readable(source_dir)
    pw = acquire_password(password)
    created = not os.path.exists(out_dir)
    prepare_output_directory(out_dir)

    def _progress(entry: ArchiveEntry) -> None:
        if not quiet:
            print(f"   adding: {entry.path}")

    t0 = time.time()
    try:
        summary = build_bundle(source_dir, pw, out_dir, on_entry=_progress)
    except (FrontcryptError, OSError, ValueError):
        # Leave no empty output directory behind for a build that never wrote to it.
        if created:
            try:
                os.rmdir(out_dir)
            except OSError:
                pass
        raise
    dt = max(0.000001, time.time() - t0)
    mib = summary.archive_size / (1024.0 * 1024.0)
    print(
        f"Done: {summary.file_count} files, {summary.dir_count} dirs; "
        f"{mib:.2f} MiB archived in {dt:.1f}s"
    )
    print(f"Protected bundle created at {summary.output_dir}")
    return summary.output_dir


def cmd_list(bundle: str, *, password: Optional[str] = None) -> bool:
    """List files inside a bundle as ``size<TAB>path``."""
    archive = open_bundle(bundle, acquire_password(password))
    for record in iter_records(archive):
        print(f"{len(record.content)}\t{record.path}")
    return True


def cmd_unseal(bundle: str, *, outdir: str = ".", password: Optional[str] = None, quiet: bool = False) -> bool:
    """Decrypt a bundle and extract its files under ``outdir``."""
    archive = open_bundle(bundle, acquire_password(password))
    root = os.path.realpath(outdir)
    count = 0
    total = 0
    for record in iter_records(archive):
        dst = os.path.realpath(os.path.join(root, record.path.lstrip("/")))
        if os.path.commonpath([root, dst]) != root or dst == root:
            print(f"Warning: skipping {record.path} (outside output directory)", file=sys.stderr)
            continue
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        with open(dst, "wb") as fh:
            fh.write(record.content)
        count += 1
        total += len(record.content)
        if not quiet:
            print(f" unsealing: {record.path}")
    print(f"Done: extracted {count} files ({total / (1024.0 * 1024.0):.2f} MiB) to {root}")
    return True


def cmd_preview(bundle: str, *, host: str = "127.0.0.1", port: int = 8000, password: Optional[str] = None, quiet: bool = False) -> bool:
    """Serve a decrypted bundle locally through the interception runtime."""
    archive = open_bundle(bundle, acquire_password(password))
    server = make_preview_server(archive, host, port, quiet=quiet)
    index = server.runtime.index
    print(f"Serving {len(index) if index else 0} files at {server.runtime.origin}/ (Ctrl+C to stop)", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print()
    finally:
        server.server_close()
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="frontcrypt",
        description="Package a directory into a password-protected, client-decrypted web bundle",
        epilog=f"The password is read from {PASSWORD_ENV}, then --password, then an interactive prompt.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_seal = sub.add_parser("seal", help="Create a protected bundle from a directory")
    ap_seal.add_argument("source", help="Source directory")
    ap_seal.add_argument("-o", "--output", help="Output directory (default: <source>-protected)")
    ap_seal.add_argument("--password", help="Encryption password (insecure on shared terminals)")
    ap_seal.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List files inside a bundle")
    ap_list.add_argument("bundle", help="Bundle directory")
    ap_list.add_argument("--password", help="Bundle password")

    ap_unseal = sub.add_parser("unseal", help="Decrypt a bundle and extract its files")
    ap_unseal.add_argument("bundle", help="Bundle directory")
    ap_unseal.add_argument("--outdir", default=".", help="Output directory")
    ap_unseal.add_argument("--password", help="Bundle password")
    ap_unseal.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_preview = sub.add_parser("preview", help="Serve a decrypted bundle over local HTTP")
    ap_preview.add_argument("bundle", help="Bundle directory")
    ap_preview.add_argument("--host", default="127.0.0.1", help="Bind address (default 127.0.0.1)")
    ap_preview.add_argument("--port", type=int, default=8000, help="Port (default 8000)")
    ap_preview.add_argument("--password", help="Bundle password")
    ap_preview.add_argument("--quiet", help="do not log requests", action="store_true")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "seal":
            cmd_seal(args.source, output=args.output, password=args.password, quiet=args.quiet)
        elif args.cmd == "list":
            cmd_list(args.bundle, password=args.password)
        elif args.cmd == "unseal":
            cmd_unseal(args.bundle, outdir=args.outdir, password=args.password, quiet=args.quiet)
        elif args.cmd == "preview":
            cmd_preview(args.bundle, host=args.host, port=args.port, password=args.password, quiet=args.quiet)
        else:
            raise RuntimeError("Unknown command")
    except AuthenticationError:
        print("Error: Invalid password", file=sys.stderr)
        sys.exit(2)
    except (FrontcryptError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()

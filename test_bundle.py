from __future__ import annotations

import base64
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from frontcrypt.bundle import (
    assemble_bundle,
    build_bundle,
    open_bundle,
    read_loader_params,
    write_bundle,
)
from frontcrypt.constants import (
    BUNDLE_FILES,
    LOADER_NAME,
    NONCE_SIZE,
    PASSWORD_ENV,
    PAYLOAD_NAME,
    PBKDF2_ITERATIONS,
    SALT_SIZE,
    SERVICE_WORKER_NAME,
)
from frontcrypt.encryption import seal
from frontcrypt.errors import (
    ArchiveIOError,
    AuthenticationError,
    InputError,
    PayloadFormatError,
    UnsupportedEntryError,
)
from frontcrypt.password import acquire_password
from frontcrypt.paths import (
    determine_output_dir,
    ensure_directory_readable,
    is_inside_directory,
    prepare_output_directory,
    validate_output_dir,
)
from frontcrypt.reader import ArchiveRecord, parse_archive
from frontcrypt.templates import build_loader_html, build_service_worker_script


SALT_B64 = base64.b64encode(bytes(range(SALT_SIZE))).decode("ascii")
IV_B64 = base64.b64encode(bytes(range(NONCE_SIZE))).decode("ascii")


class TemplateTests(unittest.TestCase):
    def test_loader_embeds_parameters(self):
        html = build_loader_html(SALT_B64, IV_B64, PBKDF2_ITERATIONS)
        self.assertIn(f'const SALT_B64 = "{SALT_B64}";', html)
        self.assertIn(f'const IV_B64 = "{IV_B64}";', html)
        self.assertIn(f"const ITERATIONS = {PBKDF2_ITERATIONS};", html)
        self.assertIn(PAYLOAD_NAME, html)
        self.assertIn(SERVICE_WORKER_NAME, html)
        self.assertNotIn("$salt_b64", html)
        self.assertNotIn("$iterations", html)

    def test_service_worker_carries_iteration_count(self):
        script = build_service_worker_script(PBKDF2_ITERATIONS)
        self.assertTrue(script.startswith(f"const KDF_ITERATIONS = {PBKDF2_ITERATIONS};"))
        self.assertIn("/\\/+$/", script)
        self.assertIn("/^-?[0-7]+$/", script)
        self.assertNotIn("$block_size", script)
        self.assertNotIn("$msg_", script)

    def test_rendering_is_deterministic(self):
        self.assertEqual(build_loader_html(SALT_B64, IV_B64, 1000), build_loader_html(SALT_B64, IV_B64, 1000))
        self.assertEqual(build_service_worker_script(0), build_service_worker_script(0))

    def test_invalid_parameters_rejected(self):
        with self.assertRaises(InputError):
            build_loader_html("not base64!", IV_B64, 1000)
        with self.assertRaises(InputError):
            build_loader_html(base64.b64encode(b"short").decode(), IV_B64, 1000)
        with self.assertRaises(InputError):
            build_loader_html(SALT_B64, SALT_B64, 1000)
        with self.assertRaises(InputError):
            build_loader_html(SALT_B64, IV_B64, -1)
        with self.assertRaises(InputError):
            build_service_worker_script(True)
        with self.assertRaises(InputError):
            build_service_worker_script("250000")


class BundleTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)
        self.src = self.root / "site"
        (self.src / "dir").mkdir(parents=True)
        (self.src / "a.txt").write_bytes(b"hi")
        (self.src / "dir" / "b.txt").write_bytes(b"world")
        self.out = self.root / "site-protected"
        self.out.mkdir()

    def test_assemble_and_read_back_parameters(self):
        result = seal(b"archive", "pw")
        artifacts = assemble_bundle(result)
        self.assertEqual(artifacts.payload, result.ciphertext)
        self.assertEqual(sorted(artifacts.files()), sorted(BUNDLE_FILES))
        salt, nonce, iterations = read_loader_params(artifacts.loader_html)
        self.assertEqual((salt, nonce, iterations), (result.salt, result.nonce, PBKDF2_ITERATIONS))

    def test_read_loader_params_rejects_foreign_html(self):
        with self.assertRaises(PayloadFormatError):
            read_loader_params("<html><body>hello</body></html>")

    def test_write_bundle_leaves_no_temporaries(self):
        artifacts = assemble_bundle(seal(b"archive", "pw"))
        written = write_bundle(artifacts, str(self.out))
        self.assertEqual(sorted(p.name for p in written), sorted(BUNDLE_FILES))
        self.assertEqual(sorted(os.listdir(self.out)), sorted(BUNDLE_FILES))
        self.assertEqual((self.out / PAYLOAD_NAME).read_bytes(), artifacts.payload)

    def test_write_bundle_into_missing_directory(self):
        artifacts = assemble_bundle(seal(b"archive", "pw"))
        with self.assertRaises(ArchiveIOError):
            write_bundle(artifacts, str(self.root / "absent"))

    def test_build_then_open(self):
        seen = []
        summary = build_bundle(str(self.src), "s3cret", str(self.out), on_entry=lambda e: seen.append(e.path))
        self.assertEqual(seen, ["a.txt", "dir/", "dir/b.txt"])
        self.assertEqual((summary.file_count, summary.dir_count), (2, 1))
        self.assertEqual(summary.payload_size, (self.out / PAYLOAD_NAME).stat().st_size)
        self.assertTrue((self.out / LOADER_NAME).read_text(encoding="utf-8").startswith("<!DOCTYPE html>"))

        archive = open_bundle(str(self.out), "s3cret")
        self.assertEqual(len(archive), summary.archive_size)
        self.assertEqual(
            parse_archive(archive),
            [ArchiveRecord("/a.txt", b"hi"), ArchiveRecord("/dir/b.txt", b"world")],
        )
        with self.assertRaises(AuthenticationError):
            open_bundle(str(self.out), "wrong")

    def test_open_bundle_checks_iterations_and_files(self):
        build_bundle(str(self.src), "pw", str(self.out))
        loader = self.out / LOADER_NAME
        html = loader.read_text(encoding="utf-8")
        loader.write_text(html.replace(f"const ITERATIONS = {PBKDF2_ITERATIONS};", "const ITERATIONS = 1000;"), encoding="utf-8")
        with self.assertRaises(PayloadFormatError):
            open_bundle(str(self.out), "pw")
        (self.out / PAYLOAD_NAME).unlink()
        with self.assertRaises(ArchiveIOError):
            open_bundle(str(self.out), "pw")

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks unavailable")
    def test_unsupported_entry_writes_nothing(self):
        try:
            os.symlink("a.txt", self.src / "link.txt")
        except (OSError, NotImplementedError):
            self.skipTest("cannot create symlinks here")
        with self.assertRaises(UnsupportedEntryError):
            build_bundle(str(self.src), "pw", str(self.out))
        self.assertEqual(os.listdir(self.out), [])


class PathTests(unittest.TestCase):
    def test_default_output_dir(self):
        self.assertEqual(determine_output_dir("/srv/site"), os.path.abspath("/srv/site-protected"))
        self.assertEqual(determine_output_dir("/srv/site/"), os.path.abspath("/srv/site-protected"))
        self.assertEqual(determine_output_dir("/srv/site", "/tmp/out"), os.path.abspath("/tmp/out"))

    def test_output_inside_or_equal_to_source_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = os.path.join(tmp, "src")
            os.mkdir(src)
            with self.assertRaises(InputError):
                validate_output_dir(src, src)
            with self.assertRaises(InputError):
                validate_output_dir(src, os.path.join(src, "out"))
            validate_output_dir(src, os.path.join(tmp, "src-protected"))
            self.assertTrue(is_inside_directory(os.path.join(src, "a", "b"), src))
            self.assertFalse(is_inside_directory(os.path.join(tmp, "srcx"), src))

    def test_source_must_be_directory(self):
        with tempfile.TemporaryDirectory() as tmp:
            file_path = os.path.join(tmp, "file.txt")
            Path(file_path).write_text("x")
            with self.assertRaises(InputError):
                ensure_directory_readable(file_path)
            with self.assertRaises(InputError):
                ensure_directory_readable(os.path.join(tmp, "missing"))
            ensure_directory_readable(tmp)

    def test_prepare_output_directory(self):
        with tempfile.TemporaryDirectory() as tmp:
            nested = os.path.join(tmp, "a", "b")
            prepare_output_directory(nested)
            prepare_output_directory(nested)
            self.assertTrue(os.path.isdir(nested))
            blocker = os.path.join(tmp, "blocker")
            Path(blocker).write_text("x")
            with self.assertRaises(ArchiveIOError):
                prepare_output_directory(os.path.join(blocker, "out"))


class PasswordTests(unittest.TestCase):
    def test_environment_takes_precedence(self):
        with mock.patch.dict(os.environ, {PASSWORD_ENV: "from-env"}):
            self.assertEqual(acquire_password("from-flag"), "from-env")

    def test_option_used_without_environment(self):
        with mock.patch.dict(os.environ, {PASSWORD_ENV: ""}):
            self.assertEqual(acquire_password("from-flag"), "from-flag")

    def test_prompt(self):
        tty = mock.Mock()
        tty.isatty.return_value = True
        with mock.patch.dict(os.environ, {PASSWORD_ENV: ""}), \
                mock.patch("sys.stdin", tty), mock.patch("sys.stdout", tty), \
                mock.patch("getpass.getpass", return_value="typed") as prompt:
            self.assertEqual(acquire_password(), "typed")
            prompt.assert_called_once()

    def test_empty_or_cancelled_prompt(self):
        tty = mock.Mock()
        tty.isatty.return_value = True
        with mock.patch.dict(os.environ, {PASSWORD_ENV: ""}), \
                mock.patch("sys.stdin", tty), mock.patch("sys.stdout", tty):
            with mock.patch("getpass.getpass", return_value=""):
                with self.assertRaises(InputError):
                    acquire_password()
            with mock.patch("getpass.getpass", side_effect=KeyboardInterrupt):
                with self.assertRaises(InputError):
                    acquire_password()

    def test_no_terminal(self):
        pipe = mock.Mock()
        pipe.isatty.return_value = False
        with mock.patch.dict(os.environ, {PASSWORD_ENV: ""}), mock.patch("sys.stdin", pipe):
            with self.assertRaises(InputError):
                acquire_password()


if __name__ == "__main__":
    unittest.main()

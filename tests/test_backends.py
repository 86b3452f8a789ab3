import tempfile
import unittest
from pathlib import Path
from unittest import mock

from minio.error import S3Error

from ancientstore.config import BackendConfig
from ancientstore.errors import (
    CancelledError,
    FatalBackendError,
    NotFoundError,
    NotSupportedError,
    TransientBackendError,
)
from ancientstore.storage import CancelToken, FilesystemBackend, MemoryBackend, ObjectBackend, open_backend
from ancientstore.storage.backend import LIST_PAGE_SIZE
from ancientstore.storage.s3 import S3Backend


class BackendContractMixin:
    """Behaviour every object backend must share."""

    def make_backend(self):
        raise NotImplementedError

    def setUp(self) -> None:
        self.backend = self.make_backend()
        self.backend.ensure("chain")

    def test_is_object_backend(self) -> None:
        self.assertIsInstance(self.backend, ObjectBackend)

    def test_ensure_is_idempotent(self) -> None:
        self.backend.ensure("chain")
        self.backend.put("chain", "index-marker", b"1")
        self.backend.ensure("chain")
        self.assertEqual(self.backend.get("chain", "index-marker"), b"1")

    def test_put_overwrites(self) -> None:
        self.backend.put("chain", "blocks/000000000.json", b"first")
        self.backend.put("chain", "blocks/000000000.json", b"second")
        self.assertEqual(self.backend.get("chain", "blocks/000000000.json"), b"second")

    def test_get_missing_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.backend.get("chain", "blocks/000001024.json")

    def test_delete_missing_succeeds(self) -> None:
        self.backend.delete("chain", "blocks/000001024.json")
        self.backend.put("chain", "blocks/000001024.json", b"x")
        self.backend.delete("chain", "blocks/000001024.json")
        with self.assertRaises(NotFoundError):
            self.backend.get("chain", "blocks/000001024.json")

    def test_list_is_sorted_and_respects_cursor_and_prefix(self) -> None:
        for key in ("hashes/000000000.json", "blocks/000001024.json", "blocks/000000000.json", "index-marker"):
            self.backend.put("chain", key, b"x")
        self.assertEqual(
            list(self.backend.list("chain")),
            ["blocks/000000000.json", "blocks/000001024.json", "hashes/000000000.json", "index-marker"],
        )
        self.assertEqual(
            list(self.backend.list("chain", "blocks/000000000.json", prefix="blocks/")),
            ["blocks/000001024.json"],
        )

    def test_list_spans_pages(self) -> None:
        total = LIST_PAGE_SIZE + 5
        for n in range(total):
            self.backend.put("chain", f"hashes/{n:09d}.json", b"")
        keys = list(self.backend.list("chain", prefix="hashes/"))
        self.assertEqual(len(keys), total)
        self.assertEqual(keys, sorted(keys))

    def test_size_sums_family_objects(self) -> None:
        self.backend.put("chain", "blocks/000000000.json", b"12345")
        self.backend.put("chain", "blocks/000001024.json", b"123")
        self.backend.put("chain", "hashes/000000000.json", b"1")
        self.assertEqual(self.backend.size("chain", "blocks/"), 8)

    def test_cancelled_token_stops_calls(self) -> None:
        token = CancelToken()
        token.cancel()
        with self.assertRaises(CancelledError):
            self.backend.put("chain", "index-marker", b"1", token=token)
        with self.assertRaises(CancelledError):
            list(self.backend.list("chain", token=token))

    def test_missing_namespace_is_fatal(self) -> None:
        with self.assertRaises(FatalBackendError):
            self.backend.get("other", "index-marker")


class FilesystemBackendTests(BackendContractMixin, unittest.TestCase):
    def make_backend(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        return FilesystemBackend(Path(self.tmpdir.name))

    def test_objects_are_plain_files(self) -> None:
        self.backend.put("chain", "blocks/000000000.json.gz", b"payload")
        path = Path(self.tmpdir.name) / "chain" / "blocks" / "000000000.json.gz"
        self.assertEqual(path.read_bytes(), b"payload")
        self.assertFalse(path.with_name(path.name + ".tmp").exists())

    def test_temporary_files_are_not_listed(self) -> None:
        base = Path(self.tmpdir.name) / "chain" / "blocks"
        base.mkdir(parents=True)
        (base / "000000000.json.tmp").write_bytes(b"partial")
        self.assertEqual(list(self.backend.list("chain")), [])

    def test_rejects_escaping_keys(self) -> None:
        with self.assertRaises(FatalBackendError):
            self.backend.put("chain", "../outside", b"x")


class MemoryBackendTests(BackendContractMixin, unittest.TestCase):
    def make_backend(self):
        return MemoryBackend()


def s3_error(code: str) -> S3Error:
    return S3Error(
        code=code,
        message=f"{code} message",
        resource="/chain/key",
        request_id="req",
        host_id="host",
        response=mock.Mock(),
    )


class S3BackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = mock.Mock()
        self.backend = S3Backend("s3.example.com", client=self.client)

    def test_ensure_creates_missing_bucket(self) -> None:
        self.client.bucket_exists.return_value = False
        self.backend.ensure("chain")
        self.client.make_bucket.assert_called_once_with(bucket_name="chain")

    def test_ensure_tolerates_existing_bucket(self) -> None:
        self.client.bucket_exists.return_value = False
        self.client.make_bucket.side_effect = s3_error("BucketAlreadyOwnedByYou")
        self.backend.ensure("chain")

    def test_get_reads_and_releases_response(self) -> None:
        response = mock.Mock()
        response.read.return_value = b"payload"
        self.client.get_object.return_value = response
        self.assertEqual(self.backend.get("chain", "index-marker"), b"payload")
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    def test_error_codes_are_translated(self) -> None:
        self.client.get_object.side_effect = s3_error("NoSuchKey")
        with self.assertRaises(NotFoundError):
            self.backend.get("chain", "index-marker")
        self.client.get_object.side_effect = s3_error("AccessDenied")
        with self.assertRaises(FatalBackendError):
            self.backend.get("chain", "index-marker")
        self.client.get_object.side_effect = s3_error("SlowDown")
        with self.assertRaises(TransientBackendError):
            self.backend.get("chain", "index-marker")
        self.client.get_object.side_effect = ConnectionResetError("reset")
        with self.assertRaises(TransientBackendError):
            self.backend.get("chain", "index-marker")

    def test_put_passes_length(self) -> None:
        self.backend.put("chain", "index-marker", b"2050")
        kwargs = self.client.put_object.call_args.kwargs
        self.assertEqual(kwargs["bucket_name"], "chain")
        self.assertEqual(kwargs["object_name"], "index-marker")
        self.assertEqual(kwargs["length"], 4)
        self.assertEqual(kwargs["data"].read(), b"2050")

    def test_delete_ignores_missing_key(self) -> None:
        self.client.remove_object.side_effect = s3_error("NoSuchKey")
        self.backend.delete("chain", "blocks/000000000.json.gz")

    def test_list_uses_start_after(self) -> None:
        objects = [mock.Mock(object_name="blocks/000001024.json.gz"), mock.Mock(object_name="blocks/000002048.json.gz")]
        self.client.list_objects.return_value = iter(objects)
        keys = list(self.backend.list("chain", "blocks/000000000.json.gz", prefix="blocks/"))
        self.assertEqual(keys, ["blocks/000001024.json.gz", "blocks/000002048.json.gz"])
        self.client.list_objects.assert_called_once_with(
            bucket_name="chain",
            prefix="blocks/",
            recursive=True,
            start_after="blocks/000000000.json.gz",
        )

    def test_size_not_supported(self) -> None:
        with self.assertRaises(NotSupportedError):
            self.backend.size("chain", "blocks/")


class OpenBackendTests(unittest.TestCase):
    def test_drivers(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            self.assertIsInstance(open_backend(BackendConfig(driver="fs", root=tmpdir)), FilesystemBackend)
        self.assertIsInstance(open_backend(BackendConfig(driver="memory")), MemoryBackend)
        with mock.patch("ancientstore.storage.s3.Minio") as minio_cls:
            backend = open_backend(BackendConfig(driver="s3", endpoint="s3.example.com", access_key="ak"))
        self.assertIsInstance(backend, S3Backend)
        self.assertEqual(minio_cls.call_args.kwargs["endpoint"], "s3.example.com")
        self.assertEqual(minio_cls.call_args.kwargs["access_key"], "ak")


if __name__ == "__main__":
    unittest.main()

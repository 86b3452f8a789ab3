"""
S3-compatible object backend built on the MinIO client.
"""

from __future__ import annotations

import io
import logging
import time
from collections.abc import Iterator

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from ..errors import FatalBackendError, NotFoundError, TransientBackendError
from .backend import CancelToken, check_token, unsupported_size

__all__ = ["S3Backend"]

FATAL_CODES = {"NoSuchBucket", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "AllAccessDisabled"}
NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject"}
BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}


class S3Backend:
    """
    Stores chunk objects in an S3 bucket named after the namespace.

    Credentials are opaque to the freezer: they are handed straight to the
    client, which falls back to its own environment lookup when they are empty.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        access_key: str = "",
        secret_key: str = "",
        region: str = "",
        secure: bool = True,
        client: Minio | None = None,
    ):
        self.log = logging.getLogger("ancientstore.backend.s3")
        self.endpoint = endpoint
        self.client = client or Minio(
            endpoint=endpoint,
            access_key=access_key or None,
            secret_key=secret_key or None,
            region=region or None,
            secure=secure,
        )

    def _translate(self, exc: Exception, what: str) -> Exception:
        if isinstance(exc, S3Error):
            if exc.code in NOT_FOUND_CODES:
                return NotFoundError(f"{what}: {exc.code}")
            if exc.code in FATAL_CODES:
                return FatalBackendError(f"{what}: {exc.code} {exc.message}")
            return TransientBackendError(f"{what}: {exc.code} {exc.message}")
        return TransientBackendError(f"{what}: {exc}")

    def ensure(self, namespace: str, *, token: CancelToken | None = None) -> None:
        check_token(token)
        start = time.time()
        self.log.info("Creating bucket if not exists name=%s", namespace)
        try:
            if self.client.bucket_exists(bucket_name=namespace):
                self.log.debug("Bucket exists name=%s", namespace)
                return
            self.client.make_bucket(bucket_name=namespace)
        except S3Error as exc:
            if exc.code in BUCKET_EXISTS_CODES:
                self.log.debug("Bucket exists name=%s", namespace)
                return
            raise self._translate(exc, f"create bucket {namespace}") from exc
        except (HTTPError, OSError) as exc:
            raise self._translate(exc, f"create bucket {namespace}") from exc
        self.log.info("Bucket created name=%s elapsed=%.3fs", namespace, time.time() - start)

    def put(self, namespace: str, key: str, data: bytes, *, token: CancelToken | None = None) -> None:
        check_token(token)
        payload = bytes(data)
        try:
            self.client.put_object(
                bucket_name=namespace,
                object_name=key,
                data=io.BytesIO(payload),
                length=len(payload),
            )
        except (S3Error, HTTPError, OSError) as exc:
            raise self._translate(exc, f"put {key}") from exc

    def get(self, namespace: str, key: str, *, token: CancelToken | None = None) -> bytes:
        check_token(token)
        response = None
        try:
            response = self.client.get_object(bucket_name=namespace, object_name=key)
            return response.read()
        except (S3Error, HTTPError, OSError) as exc:
            err = self._translate(exc, f"get {key}")
            if not isinstance(err, NotFoundError):
                self.log.error("Download error key=%s error=%s", key, exc)
            raise err from exc
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def delete(self, namespace: str, key: str, *, token: CancelToken | None = None) -> None:
        check_token(token)
        try:
            self.client.remove_object(bucket_name=namespace, object_name=key)
        except (S3Error, HTTPError, OSError) as exc:
            err = self._translate(exc, f"delete {key}")
            if isinstance(err, NotFoundError):
                return
            raise err from exc

    def list(
        self,
        namespace: str,
        cursor: str = "",
        *,
        prefix: str = "",
        token: CancelToken | None = None,
    ) -> Iterator[str]:
        check_token(token)
        objects = self.client.list_objects(
            bucket_name=namespace,
            prefix=prefix or None,
            recursive=True,
            start_after=cursor or None,
        )
        try:
            for obj in objects:
                check_token(token)
                if obj.object_name > cursor:
                    yield obj.object_name
        except (S3Error, HTTPError, OSError) as exc:
            raise self._translate(exc, f"list {namespace}") from exc
        finally:
            close = getattr(objects, "close", None)
            if close is not None:
                close()

    def size(self, namespace: str, prefix: str, *, token: CancelToken | None = None) -> int:
        return unsupported_size(self)

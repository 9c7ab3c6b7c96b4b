import hashlib
import io
import logging
import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple
from urllib.parse import quote, urlparse

import pytz
from firebase_admin import storage as firebase_storage
from minio import Minio

from .firebase import get_firebase_app
from .settings import settings

logger = logging.getLogger(__name__)

KIND_PREFIXES = {
    "image": "images",
    "audio": "audios",
    "video": "videos",
    "document": "documents",
    "sticker": "stickers",
}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class StorageError(RuntimeError):
    pass


@dataclass
class StoredObject:
    url: str
    object_name: str
    checksum: str


def _sanitize(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value or "")


def build_object_path(
    kind: str, instance: str, file_name: str, now: Optional[datetime] = None
) -> str:
    """``<kind prefix>/<instance>/<yyyy>/<mm>/<file_name>``."""
    now = now or datetime.now(pytz.timezone(settings.timezone))
    prefix = KIND_PREFIXES.get(kind, "documents")
    instance_part = _sanitize(instance) or "default"
    return f"{prefix}/{instance_part}/{now.year}/{now.month:02d}/{file_name}"


def build_file_name(
    message_id: str, extension: str, original_name: Optional[str] = None
) -> str:
    """Storage file name carrying the detected extension.

    A sanitised original name is kept when present; its extension is replaced
    when it disagrees with the detected one.
    """
    extension = extension.lstrip(".").lower() or "bin"
    base = _sanitize(message_id) or uuid.uuid4().hex

    if original_name:
        stem, dot, current = original_name.rpartition(".")
        if not dot or len(current) > 4:
            stem = original_name
        stem = _sanitize(stem).strip("_")[:50]
        if stem:
            base = f"{base}_{stem}"
    return f"{base}.{extension}"


def md5_checksum(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def _parse_minio_endpoint(endpoint: str) -> Tuple[str, bool]:
    if not endpoint:
        return "localhost:9000", False
    secure = False
    cleaned = endpoint
    if "://" in endpoint:
        parsed = urlparse(endpoint)
        secure = parsed.scheme.lower() == "https"
        cleaned = parsed.netloc or parsed.path
    return cleaned or "localhost:9000", secure


class MinioStorage:
    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None) -> None:
        self.bucket = bucket or settings.minio_bucket
        self._client = client
        self._bucket_ready = False

    @property
    def client(self) -> Minio:
        if self._client is None:
            if not settings.minio_access_key or not settings.minio_secret_key:
                raise StorageError(
                    "Credenciais do MinIO nao configuradas. Defina MINIO_ROOT_USER e MINIO_ROOT_PASSWORD."
                )
            endpoint, secure = _parse_minio_endpoint(settings.minio_server_url)
            self._client = Minio(
                endpoint,
                access_key=settings.minio_access_key,
                secret_key=settings.minio_secret_key,
                secure=secure,
                region=settings.minio_region,
            )
        return self._client

    def ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info("Bucket %s criado com sucesso", self.bucket)
        except StorageError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise StorageError(
                f"Nao foi possivel preparar o bucket '{self.bucket}' no MinIO: {exc}"
            ) from exc
        self._bucket_ready = True

    def public_url(self, object_name: str) -> str:
        return f"{settings.minio_public_url}/{self.bucket}/{object_name}"

    def upload(
        self,
        data: bytes,
        object_name: str,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> StoredObject:
        self.ensure_bucket()
        checksum = md5_checksum(data)
        meta = {"X-Checksum": checksum}
        meta.update(metadata or {})
        try:
            self.client.put_object(
                self.bucket,
                object_name,
                io.BytesIO(data),
                len(data),
                content_type=content_type,
                metadata=meta,
            )
        except Exception as exc:  # pylint: disable=broad-except
            raise StorageError(f"Falha ao enviar arquivo para o MinIO: {exc}") from exc
        logger.info("Upload MinIO concluido: %s (%s bytes)", object_name, len(data))
        return StoredObject(url=self.public_url(object_name), object_name=object_name, checksum=checksum)


class FirebaseStorage:
    DOWNLOAD_URL = "https://firebasestorage.googleapis.com/v0/b/{bucket}/o/{path}?alt=media&token={token}"

    def __init__(self, bucket=None) -> None:
        self._bucket = bucket

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = firebase_storage.bucket(app=get_firebase_app())
        return self._bucket

    def download_url(self, object_name: str, token: str) -> str:
        # Encoded exactly once: "/" becomes %2F, never %252F
        return self.DOWNLOAD_URL.format(
            bucket=self.bucket.name, path=quote(object_name, safe=""), token=token
        )

    def upload(
        self,
        data: bytes,
        object_name: str,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> StoredObject:
        checksum = md5_checksum(data)
        token = str(uuid.uuid4())
        try:
            blob = self.bucket.blob(object_name)
            blob.metadata = {
                "firebaseStorageDownloadTokens": token,
                "checksum": checksum,
                **(metadata or {}),
            }
            blob.upload_from_string(data, content_type=content_type)
        except Exception as exc:  # pylint: disable=broad-except
            raise StorageError(f"Falha ao enviar arquivo para o Firebase Storage: {exc}") from exc
        logger.info("Upload Firebase Storage concluido: %s (%s bytes)", object_name, len(data))
        return StoredObject(url=self.download_url(object_name, token), object_name=object_name, checksum=checksum)


_storage_lock = threading.Lock()
_storage = None


def get_storage():
    global _storage  # pylint: disable=global-statement
    with _storage_lock:
        if _storage is None:
            if settings.storage_backend == "firebase":
                _storage = FirebaseStorage()
            else:
                _storage = MinioStorage()
        return _storage


def reset_storage() -> None:
    global _storage  # pylint: disable=global-statement
    with _storage_lock:
        _storage = None

import logging
from typing import Any
from urllib.parse import urlparse

from .settings import settings

logger = logging.getLogger(__name__)

FIREBASE_STORAGE_HOST = "firebasestorage.googleapis.com"
WHATSAPP_MEDIA_HOSTS = ("mmg.whatsapp.net", "pps.whatsapp.net", "media.whatsapp.net")
MINIO_MARKERS = ("minio", "localhost:9000", "/api/minio-proxy")

DOUBLE_ENCODED_SLASH = "%252F"
ENCODED_SLASH = "%2F"


def is_firebase_storage_url(value: Any) -> bool:
    return isinstance(value, str) and FIREBASE_STORAGE_HOST in value


def is_minio_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    if any(marker in value for marker in MINIO_MARKERS):
        return True
    host = settings.minio_host
    return bool(host) and host in value


def is_whatsapp_media_url(value: Any) -> bool:
    return isinstance(value, str) and any(host in value for host in WHATSAPP_MEDIA_HOSTS)


def is_encrypted_whatsapp_url(value: Any) -> bool:
    """True for WhatsApp CDN URLs whose path names an AES-encrypted ``.enc`` file."""
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    host = parsed.netloc.lower().split(":", 1)[0]
    return host.endswith("whatsapp.net") and parsed.path.endswith(".enc")


def is_valid_media_url(value: Any) -> bool:
    """True for data-URIs and plain http(s) URLs; WhatsApp ``.enc`` URLs are rejected."""
    if not value or not isinstance(value, str):
        return False
    if value.startswith("data:"):
        return True
    if is_encrypted_whatsapp_url(value):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def fix_malformed_url(value: Any) -> Any:
    """Undo the double percent-encoding of Firebase Storage object paths.

    ``.../o/images%252Fphoto.jpg`` becomes ``.../o/images%2Fphoto.jpg``.
    Anything that is not a Firebase Storage URL is returned untouched, and
    parse failures return the original value.
    """
    if not value or not isinstance(value, str):
        return value
    if FIREBASE_STORAGE_HOST not in value:
        return value

    try:
        parsed = urlparse(value)
        if DOUBLE_ENCODED_SLASH not in parsed.path:
            return value

        fixed_path = parsed.path.replace(DOUBLE_ENCODED_SLASH, ENCODED_SLASH)
        fixed = f"{parsed.scheme}://{parsed.netloc}{fixed_path}"
        if parsed.query:
            fixed = f"{fixed}?{parsed.query}"
        logger.info("URL do Storage com dupla codificacao corrigida: %s", fixed[:100])
        return fixed
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Erro ao processar URL %s: %s", value[:100], exc)
        return value

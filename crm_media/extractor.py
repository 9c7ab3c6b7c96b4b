import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .classifier import AUDIO, DOCUMENT, IMAGE, MEDIA_KINDS, STICKER, TEXT, VIDEO
from .media_urls import is_encrypted_whatsapp_url, is_valid_media_url

logger = logging.getLogger(__name__)

DEFAULT_MIMETYPES = {
    IMAGE: "image/jpeg",
    VIDEO: "video/mp4",
    # Evolution API delivers voice notes as OGG/Opus
    AUDIO: "audio/ogg",
    STICKER: "image/webp",
    DOCUMENT: "application/pdf",
}

SOURCE_BASE64 = "base64"
SOURCE_URL = "url"
SOURCE_THUMBNAIL = "thumbnail"
SOURCE_ENCRYPTED = "encrypted"
SOURCE_EVOLUTION = "evolution"

_DATA_URI_PREFIX = re.compile(r"^data:[^;,]*;base64,")
_DATA_URI = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(;[^;,]*)*),(?P<payload>.*)$", re.DOTALL)


@dataclass
class MediaReference:
    url: str
    source: str
    mimetype: str
    encrypted: bool = False

    @property
    def is_data_uri(self) -> bool:
        return self.url.startswith("data:")


def default_mimetype(kind: str) -> str:
    return DEFAULT_MIMETYPES.get(kind, "application/octet-stream")


def build_data_uri(payload: str, mimetype: str) -> str:
    """Wrap raw base64 as ``data:<mimetype>;base64,<payload>``, replacing any existing prefix."""
    clean = _DATA_URI_PREFIX.sub("", payload.strip())
    return f"data:{mimetype};base64,{clean}"


def parse_data_uri(uri: str) -> Tuple[str, bytes]:
    match = _DATA_URI.match(uri or "")
    if not match:
        raise ValueError("Data URL invalida")
    if ";base64" not in match.group("params"):
        raise ValueError("Data URL sem codificacao base64")
    payload = re.sub(r"\s+", "", match.group("payload"))
    if not payload:
        raise ValueError("Data URL sem conteudo")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Base64 invalido na data URL: {exc}") from exc
    return match.group("mime") or "application/octet-stream", data


def media_message(message: Optional[Dict[str, Any]], kind: str) -> Optional[Dict[str, Any]]:
    if not message or kind not in MEDIA_KINDS:
        return None
    media = message.get(f"{kind}Message")
    if media is None and kind == DOCUMENT:
        wrapped = message.get("documentWithCaptionMessage") or {}
        media = (wrapped.get("message") or {}).get("documentMessage")
    return media if isinstance(media, dict) else None


def message_kind(message: Optional[Dict[str, Any]]) -> str:
    if not message:
        return TEXT
    for kind in (IMAGE, VIDEO, AUDIO, DOCUMENT, STICKER):
        if media_message(message, kind) is not None:
            return kind
    return TEXT


def message_text(message: Optional[Dict[str, Any]]) -> str:
    if not message:
        return ""
    if message.get("conversation"):
        return message["conversation"]
    extended = message.get("extendedTextMessage") or {}
    return extended.get("text") or ""


def media_metadata(message: Optional[Dict[str, Any]], kind: str) -> Dict[str, Any]:
    media = media_message(message, kind) or {}
    return {
        "fileName": media.get("fileName"),
        "mimetype": media.get("mimetype"),
        "mediaKey": media.get("mediaKey"),
        "caption": media.get("caption"),
        "seconds": media.get("seconds"),
    }


def extract_media_reference(
    message: Optional[Dict[str, Any]], kind: str
) -> Optional[MediaReference]:
    """Pick the single source to trust for the bytes of a media message.

    Order: inline ``base64`` (already decrypted by Evolution), a direct URL
    that is not a WhatsApp ``.enc`` URL, an inline thumbnail, and finally the
    ``.enc`` URL itself, which is ciphertext and only usable with ``mediaKey``.
    """
    media = media_message(message, kind)
    if media is None:
        return None

    mimetype = media.get("mimetype") or default_mimetype(kind)

    inline = message.get("base64")
    if inline and isinstance(inline, str):
        url = inline if inline.startswith("data:") else build_data_uri(inline, mimetype)
        logger.info("Usando base64 descriptografado do webhook (%s)", kind)
        return MediaReference(url=url, source=SOURCE_BASE64, mimetype=mimetype)

    url = media.get("url")
    if url and is_valid_media_url(url):
        return MediaReference(url=url, source=SOURCE_URL, mimetype=mimetype)

    jpeg_thumbnail = media.get("jpegThumbnail")
    if jpeg_thumbnail and isinstance(jpeg_thumbnail, str):
        thumb_url = (
            jpeg_thumbnail
            if jpeg_thumbnail.startswith("data:")
            else build_data_uri(jpeg_thumbnail, "image/jpeg")
        )
        logger.info("URL indisponivel ou criptografada, usando jpegThumbnail (%s)", kind)
        return MediaReference(url=thumb_url, source=SOURCE_THUMBNAIL, mimetype="image/jpeg")

    thumbnail = media.get("thumbnail")
    if thumbnail and isinstance(thumbnail, str):
        thumb_url = (
            thumbnail if thumbnail.startswith("data:") else build_data_uri(thumbnail, mimetype)
        )
        return MediaReference(url=thumb_url, source=SOURCE_THUMBNAIL, mimetype=mimetype)

    if is_encrypted_whatsapp_url(url):
        logger.warning(
            "Somente URL .enc disponivel para %s; conteudo criptografado exige mediaKey", kind
        )
        return MediaReference(url=url, source=SOURCE_ENCRYPTED, mimetype=mimetype, encrypted=True)

    return None

"""Classify stored message content into a media kind.

Message content may be a data-URI, a re-hosted Storage/MinIO URL, a WhatsApp
CDN URL, a placeholder such as ``[Imagem]`` or a bare base64 payload.
"""
from typing import Any, Dict, FrozenSet

from .media_urls import is_firebase_storage_url, is_minio_url, is_whatsapp_media_url

TEXT = "text"
IMAGE = "image"
VIDEO = "video"
AUDIO = "audio"
DOCUMENT = "document"
STICKER = "sticker"

MEDIA_KINDS = (IMAGE, VIDEO, AUDIO, DOCUMENT, STICKER)

EXTENSION_KINDS: Dict[str, FrozenSet[str]] = {
    STICKER: frozenset({"webp"}),
    IMAGE: frozenset({"jpg", "jpeg", "png", "gif", "svg", "bmp", "tiff"}),
    VIDEO: frozenset({"mp4", "avi", "mov", "wmv", "flv", "webm", "mkv", "3gp"}),
    AUDIO: frozenset({"mp3", "wav", "ogg", "aac", "m4a", "flac", "opus"}),
    DOCUMENT: frozenset({"pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "rtf", "csv"}),
}

PLACEHOLDERS: Dict[str, str] = {
    IMAGE: "[Imagem]",
    VIDEO: "[Vídeo]",
    AUDIO: "[Áudio]",
    DOCUMENT: "[Documento]",
    STICKER: "[Sticker]",
}
GENERIC_PLACEHOLDER = "[Mídia]"

# Bare base64 longer than this (without whitespace) is treated as an image
BARE_BASE64_MIN_LENGTH = 100


def placeholder_for(kind: str) -> str:
    return PLACEHOLDERS.get(kind, GENERIC_PLACEHOLDER)


def _kind_from_data_uri(content: str):
    if content.startswith("data:image/webp"):
        return STICKER
    if content.startswith("data:image/"):
        return IMAGE
    if content.startswith("data:video/"):
        return VIDEO
    if content.startswith("data:audio/"):
        return AUDIO
    return None


def _kind_from_storage_path(content: str, minio: bool) -> str:
    if any(token in content for token in ("/videos/", ".mp4", ".webm", ".mov")):
        return VIDEO
    if "/stickers/" in content or ".webp" in content:
        return STICKER
    audio_tokens = ["/audios/", ".mp3", ".ogg"]
    if minio:
        audio_tokens += [".m4a", ".aac"]
    if any(token in content for token in audio_tokens):
        return AUDIO
    document_tokens = ["/documents/", ".pdf", ".doc"]
    if any(token in content for token in document_tokens):
        return DOCUMENT
    return IMAGE


def url_extension(url: str) -> str:
    """Lower-cased text after the last dot, with any query string removed."""
    return url.rsplit(".", 1)[-1].split("?", 1)[0].lower()


def _kind_from_extension(url: str) -> str:
    extension = url_extension(url)
    for kind in (STICKER, IMAGE, VIDEO, AUDIO, DOCUMENT):
        if extension in EXTENSION_KINDS[kind]:
            return kind
    return DOCUMENT


def _kind_from_placeholder(content: str):
    if content == "[Imagem]" or "📷" in content or "Imagem" in content:
        return IMAGE
    if content == "[Vídeo]" or "🎬" in content or "Vídeo" in content:
        return VIDEO
    if content == "[Sticker]" or "🎭" in content or "Sticker" in content:
        return STICKER
    if content == "[Áudio]" or "🎵" in content or "Áudio" in content:
        return AUDIO
    if (
        content.startswith("[")
        and content.endswith("]")
        and ("Documento" in content or "📄" in content)
    ):
        return DOCUMENT
    return None


def detect_content_type(content: Any) -> str:
    """Return one of ``text|image|video|audio|document|sticker`` for ``content``.

    Rules are applied in a fixed order and the first match wins: data-URI
    prefix, re-hosted Storage/MinIO URL, WhatsApp CDN URL, any other http URL
    by extension, placeholder tokens, long whitespace-free strings, text.
    """
    if not content or not isinstance(content, str):
        return TEXT

    kind = _kind_from_data_uri(content)
    if kind:
        return kind

    if is_firebase_storage_url(content):
        return _kind_from_storage_path(content, minio=False)
    if is_minio_url(content):
        return _kind_from_storage_path(content, minio=True)

    if is_whatsapp_media_url(content):
        return IMAGE

    if content.startswith("http"):
        return _kind_from_extension(content)

    kind = _kind_from_placeholder(content)
    if kind:
        return kind

    if len(content) > BARE_BASE64_MIN_LENGTH and " " not in content and "\n" not in content:
        return IMAGE

    return TEXT

import logging
from typing import NamedTuple, Optional

logger = logging.getLogger(__name__)


class FileType(NamedTuple):
    mime_type: str
    extension: str


JPEG = FileType("image/jpeg", "jpg")
PNG = FileType("image/png", "png")
GIF = FileType("image/gif", "gif")
WEBP = FileType("image/webp", "webp")
BMP = FileType("image/bmp", "bmp")
TIFF = FileType("image/tiff", "tiff")
OGG = FileType("audio/ogg", "ogg")
WAV = FileType("audio/wav", "wav")
MP3 = FileType("audio/mpeg", "mp3")
M4A = FileType("audio/mp4", "m4a")
MP4 = FileType("video/mp4", "mp4")
WEBM = FileType("video/webm", "webm")
PDF = FileType("application/pdf", "pdf")
ZIP = FileType("application/zip", "zip")

MARKUP_PREFIXES = (b"<!doctype", b"<html", b"<?xml")

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
    "audio/opus": "ogg",
    "audio/mp4": "m4a",
    "audio/m4a": "m4a",
    "audio/x-m4a": "m4a",
    "audio/aac": "aac",
    "audio/flac": "flac",
    "video/mp4": "mp4",
    "video/avi": "avi",
    "video/x-msvideo": "avi",
    "video/mov": "mov",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/mkv": "mkv",
    "video/3gpp": "3gp",
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "text/plain": "txt",
    "text/csv": "csv",
    "application/zip": "zip",
    "application/x-rar-compressed": "rar",
    "application/x-7z-compressed": "7z",
}

KIND_FALLBACK_EXTENSIONS = {
    "image": "jpg",
    "audio": "ogg",
    "video": "mp4",
    "document": "pdf",
    "sticker": "webp",
}


def is_markup_payload(data: bytes) -> bool:
    """True when ``data`` looks like an HTML/XML page instead of binary media.

    This is what a storage or CDN URL returns when the object is missing or
    the request was refused.
    """
    if not data:
        return False
    head = bytes(data[:100]).lstrip(b"\xef\xbb\xbf").lstrip().lower()
    return head.startswith(MARKUP_PREFIXES) or b"<html" in head


def _is_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def detect_image_type(data: bytes) -> Optional[FileType]:
    """Identify an image format from its leading bytes, ignoring any declared type.

    Returns ``None`` for unrecognised buffers and for HTML/XML error pages.
    """
    if not data:
        return None
    if is_markup_payload(data):
        logger.warning("Conteudo HTML/XML recebido no lugar da midia (URL de origem retornou erro?)")
        return None
    data = bytes(data[:16])

    if data[:3] == b"\xff\xd8\xff":
        return JPEG
    if data[:4] == b"\x89PNG":
        return PNG
    if data[:3] == b"GIF":
        return GIF
    if _is_webp(data):
        return WEBP
    if data[:2] == b"BM":
        return BMP
    return None


def detect_media_type(data: bytes) -> Optional[FileType]:
    if not data:
        return None

    image_type = detect_image_type(data)
    if image_type:
        return image_type
    if is_markup_payload(data):
        return None

    head = bytes(data[:16])
    if head[:4] in (b"II*\x00", b"MM\x00*"):
        return TIFF
    if head[:4] == b"OggS":
        return OGG
    if head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return WAV
    if head[:3] == b"ID3" or (len(head) > 1 and head[0] == 0xFF and head[1] & 0xE0 == 0xE0):
        return MP3
    if head[4:8] == b"ftyp":
        if head[8:12] == b"M4A ":
            return M4A
        return MP4
    if head[:4] == b"\x1a\x45\xdf\xa3":
        return WEBM
    if head[:4] == b"%PDF":
        return PDF
    if head[:4] == b"PK\x03\x04":
        return ZIP

    logger.debug("Bytes nao reconhecidos: %s", head[:8].hex())
    return None


def extension_for_mime(mime_type: Optional[str], kind: Optional[str] = None) -> str:
    """Canonical file extension for a MIME type, falling back to the media kind."""
    if mime_type:
        base = mime_type.split(";", 1)[0].strip().lower()
        if base in MIME_EXTENSIONS:
            return MIME_EXTENSIONS[base]
    return KIND_FALLBACK_EXTENSIONS.get(kind or "", "bin")

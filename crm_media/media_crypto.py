"""Decryption of WhatsApp ``.enc`` media.

WhatsApp stores media on its CDN encrypted with a per-message ``mediaKey``.
The key is expanded with HKDF-SHA256 into an IV, an AES-256-CBC key and an
HMAC key; the downloaded file is the ciphertext followed by the first ten
bytes of ``HMAC-SHA256(mac_key, iv + ciphertext)``.
"""
import base64
import binascii
import hashlib
import hmac
import logging
from typing import Any, List

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

MEDIA_KEY_LENGTH = 32
EXPANDED_KEY_LENGTH = 112
MAC_LENGTH = 10

HKDF_INFO = {
    "image": b"WhatsApp Image Keys",
    "sticker": b"WhatsApp Image Keys",
    "video": b"WhatsApp Video Keys",
    "audio": b"WhatsApp Audio Keys",
    "document": b"WhatsApp Document Keys",
}


class MediaDecryptionError(ValueError):
    pass


def _byte_values(values: List[Any]) -> bytes:
    try:
        return bytes(values)
    except (TypeError, ValueError) as exc:
        raise MediaDecryptionError("mediaKey com valores de byte invalidos") from exc


def _media_key_bytes(media_key: Any) -> bytes:
    """Normalise the ``mediaKey`` shapes Evolution API delivers into raw bytes.

    Besides base64 strings, Baileys serialises the key as a JSON byte array:
    a list of ints, an index-keyed dict (``{"0": 12, "1": 200, ...}``) or a
    Node ``{"type": "Buffer", "data": [...]}`` object.
    """
    if isinstance(media_key, str):
        try:
            media_key = base64.b64decode(media_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MediaDecryptionError("mediaKey nao e base64 valido") from exc
    elif isinstance(media_key, (bytearray, memoryview)):
        media_key = bytes(media_key)
    elif isinstance(media_key, list):
        media_key = _byte_values(media_key)
    elif isinstance(media_key, dict):
        if media_key.get("type") == "Buffer" and isinstance(media_key.get("data"), list):
            media_key = _byte_values(media_key["data"])
        else:
            try:
                ordered = sorted(media_key.items(), key=lambda item: int(item[0]))
            except (TypeError, ValueError) as exc:
                raise MediaDecryptionError("mediaKey em formato de objeto desconhecido") from exc
            media_key = _byte_values([value for _, value in ordered])
    elif not isinstance(media_key, bytes):
        raise MediaDecryptionError(
            f"mediaKey com tipo nao suportado: {type(media_key).__name__}"
        )
    if len(media_key) != MEDIA_KEY_LENGTH:
        raise MediaDecryptionError(
            f"mediaKey com tamanho invalido: {len(media_key)} bytes"
        )
    return media_key


def expand_media_key(media_key: Any, kind: str) -> bytes:
    info = HKDF_INFO.get(kind)
    if info is None:
        raise MediaDecryptionError(f"Tipo de midia sem chave conhecida: {kind}")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=EXPANDED_KEY_LENGTH,
        salt=None,
        info=info,
    )
    return hkdf.derive(_media_key_bytes(media_key))


def decrypt_media(encrypted: bytes, media_key: Any, kind: str) -> bytes:
    """Verify and decrypt a downloaded ``.enc`` file, returning the plain media bytes."""
    if len(encrypted) <= MAC_LENGTH:
        raise MediaDecryptionError("Arquivo criptografado vazio ou truncado")

    expanded = expand_media_key(media_key, kind)
    iv = expanded[:16]
    cipher_key = expanded[16:48]
    mac_key = expanded[48:80]

    ciphertext = encrypted[:-MAC_LENGTH]
    mac = encrypted[-MAC_LENGTH:]

    expected = hmac.new(mac_key, iv + ciphertext, hashlib.sha256).digest()[:MAC_LENGTH]
    if not hmac.compare_digest(mac, expected):
        raise MediaDecryptionError("HMAC da midia nao confere")

    if len(ciphertext) % AES.block_size:
        raise MediaDecryptionError("Tamanho do ciphertext nao e multiplo do bloco AES")

    cipher = AES.new(cipher_key, AES.MODE_CBC, iv)
    try:
        plain = unpad(cipher.decrypt(ciphertext), AES.block_size)
    except ValueError as exc:
        raise MediaDecryptionError("Padding invalido apos descriptografia") from exc

    logger.info("Midia %s descriptografada: %s bytes", kind, len(plain))
    return plain

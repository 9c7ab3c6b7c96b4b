import logging
from typing import Dict, Optional, Tuple

import requests

from .classifier import VIDEO
from .extractor import build_data_uri, default_mimetype
from .media_urls import is_encrypted_whatsapp_url
from .settings import settings

logger = logging.getLogger(__name__)

WHATSAPP_DOWNLOAD_HEADERS = {
    "User-Agent": "WhatsApp/2.23.24.76 A",
    "Accept": "*/*",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
}


class MediaDownloadError(RuntimeError):
    pass


def _headers() -> Dict[str, str]:
    return {
        "apikey": settings.evolution_api_key,
        "Content-Type": "application/json",
    }


def fetch_media_base64(
    instance: str,
    message_id: str,
    remote_jid: Optional[str] = None,
    convert_to_mp4: bool = False,
) -> Optional[str]:
    """Ask Evolution API for the decrypted media of a message, as raw base64."""
    try:
        url = f"{settings.evolution_server_url}chat/getBase64FromMediaMessage/{instance}"
        key = {"id": message_id}
        if remote_jid:
            key["remoteJid"] = remote_jid
        payload = {
            "message": {"key": key},
            "convertToMp4": convert_to_mp4,
        }
        logger.info("Buscando midia no Evolution API: %s", url)
        response = requests.post(
            url, json=payload, headers=_headers(), timeout=settings.evolution_timeout
        )
        if response.status_code in (200, 201):
            data = response.json()
            media_base64 = data.get("base64")
            if media_base64:
                logger.info("Base64 encontrado via API Evolution.")
                return media_base64
            logger.warning("API retornou sem campo base64. Resposta: %s", list(data))
        else:
            logger.error(
                "Erro ao buscar midia: %s - %s", response.status_code, response.text[:200]
            )
    except requests.exceptions.RequestException as exc:
        logger.error("Excecao ao buscar midia: %s", exc)
    except ValueError as exc:
        logger.error("Erro ao decodificar resposta JSON: %s", exc)
    return None


def fetch_media_data_uri(
    instance: str, message_id: str, remote_jid: Optional[str], kind: str, mimetype: Optional[str] = None
) -> Optional[str]:
    media_base64 = fetch_media_base64(
        instance, message_id, remote_jid, convert_to_mp4=kind == VIDEO
    )
    if not media_base64:
        return None
    if media_base64.startswith("data:"):
        return media_base64
    return build_data_uri(media_base64, mimetype or default_mimetype(kind))


def download_media(url: str, timeout: Optional[int] = None) -> Tuple[bytes, str]:
    """Download ``url`` and return ``(content, content_type)``.

    Raises ``MediaDownloadError`` on network errors and non-2xx responses.
    """
    headers = WHATSAPP_DOWNLOAD_HEADERS if is_encrypted_whatsapp_url(url) else None
    try:
        response = requests.get(
            url,
            headers=headers,
            timeout=timeout or settings.media_download_timeout,
        )
    except requests.exceptions.RequestException as exc:
        raise MediaDownloadError(f"Falha no download de {url[:100]}: {exc}") from exc

    if not response.ok:
        raise MediaDownloadError(
            f"HTTP {response.status_code} ao baixar {url[:100]}"
        )
    content_type = response.headers.get("Content-Type", "")
    logger.info(
        "Download concluido: %s bytes (%s)", len(response.content), content_type or "sem tipo"
    )
    return response.content, content_type


def fetch_profile_picture(instance: str, number: str) -> Optional[str]:
    url = f"{settings.evolution_server_url}chat/fetchProfilePictureUrl/{instance}"
    payload = {"number": number}

    try:
        response = requests.post(
            url, json=payload, headers=_headers(), timeout=settings.evolution_timeout
        )
        response.raise_for_status()
        data = response.json()
        return data.get("profilePictureUrl")
    except requests.exceptions.RequestException as exc:
        logger.error("Erro na requisicao de foto de perfil: %s", exc)
    except ValueError as exc:
        logger.error("Erro ao decodificar resposta JSON: %s", exc)
    return None

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .classifier import IMAGE, STICKER, TEXT, placeholder_for
from .database import now_iso, save_message, save_or_update_ticket, update_instance_connection
from .evolution_api import (
    MediaDownloadError,
    download_media,
    fetch_media_data_uri,
    fetch_profile_picture,
)
from .extractor import (
    SOURCE_ENCRYPTED,
    SOURCE_EVOLUTION,
    SOURCE_THUMBNAIL,
    MediaReference,
    extract_media_reference,
    media_metadata,
    message_kind,
    message_text,
    parse_data_uri,
)
from .media_crypto import MediaDecryptionError, decrypt_media
from .settings import settings
from .signatures import (
    ZIP,
    FileType,
    detect_image_type,
    detect_media_type,
    extension_for_mime,
    is_markup_payload,
)
from .state import processed_lock, processed_messages
from .storage import StorageError, build_file_name, build_object_path, get_storage

logger = logging.getLogger(__name__)

GENERIC_MIME_TYPES = ("", "application/octet-stream", "binary/octet-stream")


class InvalidMediaError(ValueError):
    pass


@dataclass
class MediaResult:
    content: str
    source: Optional[str] = None
    mimetype: Optional[str] = None
    file_name: Optional[str] = None
    object_name: Optional[str] = None
    checksum: Optional[str] = None
    stored: bool = False


def normalize_event_name(event: Optional[str]) -> str:
    return (event or "").strip().lower().replace("_", ".").replace("-", ".")


def is_duplicate(message_id: str) -> bool:
    if not message_id:
        return False
    now = time.time()
    with processed_lock:
        expired = [key for key, expires in processed_messages.items() if expires <= now]
        for key in expired:
            del processed_messages[key]
        return message_id in processed_messages


def mark_processed(message_id: str) -> None:
    if not message_id:
        return
    with processed_lock:
        processed_messages[message_id] = time.time() + settings.dedup_ttl_seconds


def resolve_file_type(payload: bytes, declared_mime: Optional[str], kind: str) -> FileType:
    """Decide the MIME type and extension to store, trusting bytes over declarations."""
    if not payload:
        raise InvalidMediaError("Midia vazia")
    if is_markup_payload(payload):
        raise InvalidMediaError("Conteudo HTML/XML no lugar da midia")

    if kind in (IMAGE, STICKER):
        detected = detect_image_type(payload)
        if detected is None:
            raise InvalidMediaError(
                f"Bytes nao correspondem a uma imagem valida: {payload[:8].hex()}"
            )
        return detected

    detected = detect_media_type(payload)
    declared = (declared_mime or "").split(";", 1)[0].strip().lower()
    # Office documents are ZIP containers; keep their declared type
    if detected and not (detected == ZIP and declared not in GENERIC_MIME_TYPES):
        return detected
    if declared in GENERIC_MIME_TYPES:
        declared = "application/octet-stream"
    return FileType(declared, extension_for_mime(declared, kind))


def load_media_bytes(
    reference: MediaReference, media_key: Any, kind: str
) -> Tuple[bytes, str]:
    if reference.is_data_uri:
        mime, payload = parse_data_uri(reference.url)
        return payload, mime

    payload, content_type = download_media(reference.url)
    if reference.encrypted:
        payload = decrypt_media(payload, media_key, kind)
        return payload, reference.mimetype
    if content_type.split(";", 1)[0].strip().lower() in GENERIC_MIME_TYPES:
        content_type = reference.mimetype
    return payload, content_type


def _evolution_reference(
    instance: str, key: Dict[str, Any], kind: str, mimetype: Optional[str]
) -> Optional[MediaReference]:
    data_uri = fetch_media_data_uri(instance, key.get("id") or "", key.get("remoteJid"), kind, mimetype)
    if not data_uri:
        return None
    return MediaReference(
        url=data_uri,
        source=SOURCE_EVOLUTION,
        mimetype=mimetype or data_uri[5:].split(";", 1)[0],
    )


def _load_and_resolve(
    reference: MediaReference, media_key: Any, kind: str, storage_kind: str
) -> Tuple[bytes, str, FileType]:
    payload, declared_mime = load_media_bytes(reference, media_key, kind)
    return payload, declared_mime, resolve_file_type(payload, declared_mime, storage_kind)


def ingest_media(instance: str, data: Dict[str, Any], kind: str) -> MediaResult:
    key = data.get("key") or {}
    message = data.get("message") or {}
    message_id = key.get("id") or ""
    meta = media_metadata(message, kind)

    reference = extract_media_reference(message, kind)
    if reference is None or (reference.encrypted and not meta["mediaKey"]):
        reference = _evolution_reference(instance, key, kind, meta["mimetype"]) or reference

    if reference is None:
        logger.warning("Nenhuma referencia de midia utilizavel para %s (%s)", message_id, kind)
        return MediaResult(content=placeholder_for(kind))

    if reference.encrypted and not meta["mediaKey"]:
        logger.warning(
            "URL .enc sem mediaKey para %s; mantendo URL criptografada sem upload", message_id
        )
        return MediaResult(content=reference.url, source=SOURCE_ENCRYPTED, mimetype=reference.mimetype)

    # Thumbnails are JPEG previews whatever the message kind
    storage_kind = IMAGE if reference.source == SOURCE_THUMBNAIL else kind

    try:
        try:
            payload, declared_mime, file_type = _load_and_resolve(
                reference, meta["mediaKey"], kind, storage_kind
            )
        except (MediaDownloadError, MediaDecryptionError) as exc:
            if not reference.encrypted:
                raise
            recovered = _evolution_reference(instance, key, kind, meta["mimetype"])
            if recovered is None:
                raise
            logger.warning(
                "Falha com a URL .enc de %s (%s); usando midia do Evolution API", message_id, exc
            )
            reference = recovered
            payload, declared_mime, file_type = _load_and_resolve(reference, None, kind, storage_kind)
    except (InvalidMediaError, MediaDecryptionError) as exc:
        logger.error("Midia %s invalida (%s): %s", message_id, reference.source, exc)
        return MediaResult(content=placeholder_for(kind), source=reference.source)
    except ValueError as exc:
        logger.error("Data URL invalida para %s: %s", message_id, exc)
        return MediaResult(content=placeholder_for(kind), source=reference.source)
    except MediaDownloadError as exc:
        logger.error("Falha no download da midia %s: %s", message_id, exc)
        return MediaResult(content=reference.url, source=reference.source, mimetype=reference.mimetype)

    if declared_mime and file_type.mime_type != declared_mime.split(";", 1)[0].strip().lower():
        logger.info(
            "Tipo corrigido para %s: declarado=%s detectado=%s",
            message_id,
            declared_mime,
            file_type.mime_type,
        )

    file_name = build_file_name(message_id, file_type.extension, meta["fileName"])
    object_name = build_object_path(storage_kind, instance, file_name)
    try:
        stored = get_storage().upload(
            payload,
            object_name,
            file_type.mime_type,
            metadata={"message-id": message_id, "source": reference.source},
        )
    except StorageError as exc:
        logger.error("Falha no upload da midia %s: %s", message_id, exc)
        return MediaResult(content=reference.url, source=reference.source, mimetype=file_type.mime_type)

    return MediaResult(
        content=stored.url,
        source=reference.source,
        mimetype=file_type.mime_type,
        file_name=file_name,
        object_name=stored.object_name,
        checksum=stored.checksum,
        stored=True,
    )


def _update_ticket(instance: str, remote_jid: str, push_name: str, content: str) -> None:
    phone = remote_jid.split("@")[0]
    client = {
        "name": push_name,
        "phone": phone,
        "subject": "Conversa WhatsApp",
        "avatar": fetch_profile_picture(instance, phone),
    }
    try:
        save_or_update_ticket(remote_jid, instance, client, content)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Ticket de %s nao atualizado: %s", remote_jid, exc)


def handle_new_message(instance: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    key = data.get("key") or {}
    message_id = key.get("id") or ""
    if is_duplicate(message_id):
        logger.info("Mensagem %s ja processada, ignorando duplicata", message_id)
        return None

    remote_jid = key.get("remoteJid") or ""
    from_me = bool(key.get("fromMe"))
    push_name = data.get("pushName") or "Usuário"
    message = data.get("message") or {}
    kind = message_kind(message)

    record: Dict[str, Any] = {
        "messageId": message_id,
        "remoteJid": remote_jid,
        "type": kind,
        "messageType": kind,
        "sender": "agent" if from_me else "client",
        "isFromMe": from_me,
        "pushName": push_name,
        "instanceName": instance,
        "status": "sent",
        "timestamp": now_iso(),
    }

    if kind == TEXT:
        record["content"] = message_text(message)
    else:
        meta = media_metadata(message, kind)
        result = ingest_media(instance, data, kind)
        record.update(
            {
                "content": result.content,
                "mimetype": result.mimetype or meta["mimetype"],
                "fileName": result.file_name or meta["fileName"],
                "caption": meta["caption"],
                "mediaSource": result.source,
                "storagePath": result.object_name,
                "checksum": result.checksum,
            }
        )

    logger.info("Mensagem de %s (%s): %s", remote_jid, kind, str(record["content"])[:100])
    save_message(record)
    mark_processed(message_id)

    if not from_me and remote_jid:
        _update_ticket(instance, remote_jid, push_name, record["content"])
    return record


def _upsert_messages(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict) and isinstance(data.get("messages"), list):
        return [item for item in data["messages"] if isinstance(item, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def process_webhook_event(event: str, instance: str, data: Any) -> Dict[str, Any]:
    name = normalize_event_name(event)
    logger.info("Processando evento %s da instancia %s", name, instance)

    if name == "messages.upsert":
        records = [handle_new_message(instance, item) for item in _upsert_messages(data)]
        saved = [record for record in records if record is not None]
        return {"event": name, "saved": len(saved), "duplicates": len(records) - len(saved)}

    if name == "connection.update":
        state = data.get("state") if isinstance(data, dict) else None
        return {"event": name, "updated": update_instance_connection(instance, state)}

    if name in ("messages.update", "presence.update"):
        logger.info("Evento %s de %s: %s", name, instance, str(data)[:200])
        return {"event": name}

    logger.info("Evento nao tratado: %s", event)
    return {"event": name, "ignored": True}

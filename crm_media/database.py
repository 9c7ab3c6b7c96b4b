import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

import pytz
from firebase_admin import firestore

from .firebase import get_firebase_app
from .settings import settings

logger = logging.getLogger(__name__)

MESSAGES_COLLECTION = "messages"
TICKETS_COLLECTION = "tickets"
INSTANCES_COLLECTION = "instances"

_db_lock = threading.Lock()
_db = None


def get_db():
    global _db  # pylint: disable=global-statement
    with _db_lock:
        if _db is None:
            _db = firestore.client(app=get_firebase_app())
        return _db


def now_iso() -> str:
    return datetime.now(pytz.timezone(settings.timezone)).isoformat()


def save_message(record: Dict[str, Any]) -> None:
    message_id = record.get("messageId")
    try:
        collection = get_db().collection(MESSAGES_COLLECTION)
        doc_ref = collection.document(message_id) if message_id else collection.document()
        doc_ref.set(record)
        logger.info("Mensagem %s salva no Firestore (%s)", doc_ref.id, record.get("type"))
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Erro ao salvar mensagem %s no Firestore: %s", message_id, exc)
        raise


def save_or_update_ticket(
    remote_jid: str,
    instance: str,
    client: Dict[str, Any],
    last_message: str,
) -> None:
    client_data = {key: value for key, value in client.items() if value is not None}
    payload: Dict[str, Any] = {
        "remoteJid": remote_jid,
        "instanceName": instance,
        "client": client_data,
        "status": "open",
        "lastMessage": last_message,
        "unreadCount": firestore.Increment(1),
        "updatedAt": now_iso(),
    }
    try:
        doc_ref = get_db().collection(TICKETS_COLLECTION).document(remote_jid)
        if not doc_ref.get().exists:
            payload["createdAt"] = payload["updatedAt"]
        doc_ref.set(payload, merge=True)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Erro ao salvar ticket de %s: %s", remote_jid, exc)
        raise


def update_instance_connection(instance: str, state: Optional[str]) -> bool:
    if not state:
        return False
    try:
        get_db().collection(INSTANCES_COLLECTION).document(instance).set(
            {
                "instanceName": instance,
                "connectionState": state,
                "lastUpdate": now_iso(),
            },
            merge=True,
        )
        logger.info("Instancia %s com estado de conexao: %s", instance, state)
        return True
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Erro ao atualizar conexao da instancia %s: %s", instance, exc)
        return False

import logging
import threading

import firebase_admin
from firebase_admin import credentials

from .settings import settings

logger = logging.getLogger(__name__)

_firebase_lock = threading.Lock()


def get_firebase_app() -> firebase_admin.App:
    with _firebase_lock:
        try:
            return firebase_admin.get_app()
        except ValueError:
            pass

        options = {}
        if settings.firebase_storage_bucket:
            options["storageBucket"] = settings.firebase_storage_bucket

        if settings.firebase_credentials:
            cred = credentials.Certificate(settings.firebase_credentials)
        else:
            cred = credentials.ApplicationDefault()
        logger.info("Inicializando Firebase (bucket=%s)", options.get("storageBucket", "-"))
        return firebase_admin.initialize_app(cred, options)

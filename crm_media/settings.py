import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables and configure logging as early as possible
load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Valor invalido para %s: %s (usando %s)", name, raw, default)
        return default


@dataclass
class Settings:
    """Application-level settings for the webhook, storage and Evolution clients."""

    evolution_api_key: str = field(init=False, default="")
    evolution_server_url: str = field(init=False, default="")
    webhook_secret: str = field(init=False, default="")
    storage_backend: str = field(init=False, default="minio")
    minio_server_url: str = field(init=False, default="")
    minio_access_key: str = field(init=False, default="")
    minio_secret_key: str = field(init=False, default="")
    minio_bucket: str = field(init=False, default="crm-media-files")
    minio_region: str = field(init=False, default="us-east-1")
    minio_public_url: str = field(init=False, default="")
    firebase_credentials: str = field(init=False, default="")
    firebase_storage_bucket: str = field(init=False, default="")
    media_download_timeout: int = field(init=False, default=30)
    evolution_timeout: int = field(init=False, default=60)
    dedup_ttl_seconds: int = field(init=False, default=3600)
    webhook_rate_limit: int = field(init=False, default=100)
    timezone: str = field(init=False, default="America/Sao_Paulo")

    def __post_init__(self) -> None:
        self.reload()

    def reload(self) -> "Settings":
        self.evolution_api_key = os.getenv("EVO_API_KEY", "")
        server_url = os.getenv("EVOLUTION_SERVER_URL", "http://localhost:8080/")
        # Endpoints are appended without a leading slash
        self.evolution_server_url = server_url if server_url.endswith("/") else f"{server_url}/"
        self.webhook_secret = os.getenv("EVOLUTION_WEBHOOK_SECRET", "")
        self.storage_backend = os.getenv("STORAGE_BACKEND", "minio").strip().lower()

        self.minio_server_url = os.getenv("MINIO_SERVER_URL", "").rstrip("/")
        self.minio_access_key = os.getenv("MINIO_ROOT_USER", "")
        self.minio_secret_key = os.getenv("MINIO_ROOT_PASSWORD", "")
        self.minio_bucket = os.getenv("MINIO_BUCKET_NAME", "crm-media-files")
        self.minio_region = os.getenv("MINIO_REGION", "us-east-1")
        self.minio_public_url = (
            os.getenv("MINIO_PUBLIC_URL", "").rstrip("/") or self.minio_server_url
        )

        self.firebase_credentials = os.getenv("FIREBASE_CREDENTIALS", "")
        self.firebase_storage_bucket = os.getenv("FIREBASE_STORAGE_BUCKET", "")

        self.media_download_timeout = _env_int("MEDIA_DOWNLOAD_TIMEOUT", 30)
        self.evolution_timeout = _env_int("EVOLUTION_TIMEOUT", 60)
        self.dedup_ttl_seconds = _env_int("DEDUP_TTL_SECONDS", 3600)
        self.webhook_rate_limit = _env_int("WEBHOOK_RATE_LIMIT", 100)
        self.timezone = os.getenv("TIMEZONE", "America/Sao_Paulo")

        if self.storage_backend not in ("minio", "firebase"):
            logger.warning(
                "STORAGE_BACKEND desconhecido: %s (usando minio)", self.storage_backend
            )
            self.storage_backend = "minio"
        return self

    @property
    def minio_host(self) -> str:
        """Host part of the public MinIO URL, used to recognise re-hosted media."""
        url = self.minio_public_url
        if "://" in url:
            url = url.split("://", 1)[1]
        return url.split("/", 1)[0]


settings = Settings()

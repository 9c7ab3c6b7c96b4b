import logging
import time
from typing import Tuple

import requests
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from .ingestion import normalize_event_name, process_webhook_event
from .media_urls import fix_malformed_url, is_firebase_storage_url
from .settings import settings
from .signatures import detect_media_type
from .state import rate_limit_lock, rate_limit_windows

logger = logging.getLogger(__name__)

router = APIRouter()

RATE_LIMIT_WINDOW_SECONDS = 60
IMAGE_PROXY_TIMEOUT = 15

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def check_rate_limit(instance: str) -> Tuple[bool, int]:
    now = time.time()
    with rate_limit_lock:
        window = rate_limit_windows.get(instance)
        if not window or now > window[1]:
            window = [0, now + RATE_LIMIT_WINDOW_SECONDS]
        window[0] += 1
        rate_limit_windows[instance] = window
        count = int(window[0])
    return count <= settings.webhook_rate_limit, max(0, settings.webhook_rate_limit - count)


async def _handle_webhook(request: Request, event_override: str = "") -> JSONResponse:
    if settings.webhook_secret and request.headers.get("apikey") != settings.webhook_secret:
        return JSONResponse(content={"error": "Unauthorized"}, status_code=401)

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(content={"error": "JSON invalido"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse(content={"error": "Payload invalido"}, status_code=400)

    event = event_override or body.get("event") or ""
    instance = body.get("instance") or "default"
    data = body.get("data") or {}

    allowed, remaining = check_rate_limit(instance)
    limit_headers = {
        "X-RateLimit-Limit": str(settings.webhook_rate_limit),
        "X-RateLimit-Remaining": str(remaining),
    }
    if not allowed:
        logger.warning("Rate limit excedido para a instancia %s", instance)
        return JSONResponse(
            content={"error": "Rate limit exceeded", "retryAfter": RATE_LIMIT_WINDOW_SECONDS},
            status_code=429,
            headers={**limit_headers, "Retry-After": str(RATE_LIMIT_WINDOW_SECONDS)},
        )

    if not event:
        return JSONResponse(content={"error": "Evento ausente"}, status_code=400)

    try:
        # Media downloads and Firestore writes are blocking calls
        result = await run_in_threadpool(process_webhook_event, event, instance, data)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Erro ao processar webhook %s: %s", event, exc)
        return JSONResponse(
            content={"error": "Internal server error", "event": normalize_event_name(event)},
            status_code=500,
            headers=limit_headers,
        )

    return JSONResponse(
        content={"status": "processed", **result}, status_code=200, headers=limit_headers
    )


@router.post("/api/webhooks/evolution")
async def evolution_webhook(request: Request):
    return await _handle_webhook(request)


@router.post("/api/webhooks/evolution/{event_slug}")
async def evolution_event_webhook(event_slug: str, request: Request):
    return await _handle_webhook(request, event_override=event_slug)


@router.get("/api/image-proxy")
def image_proxy(url: str = ""):
    if not url:
        return JSONResponse(content={"error": "URL da imagem e obrigatoria"}, status_code=400)
    if not is_firebase_storage_url(url):
        return JSONResponse(
            content={"error": "Apenas URLs do Firebase Storage sao permitidas"}, status_code=403
        )

    image_url = fix_malformed_url(url)
    started = time.time()
    try:
        upstream = requests.get(
            image_url,
            headers={"User-Agent": "CRM-ImageProxy/1.0", "Accept": "*/*", "Cache-Control": "no-cache"},
            timeout=IMAGE_PROXY_TIMEOUT,
        )
    except requests.exceptions.Timeout:
        logger.error("Timeout ao buscar imagem: %s", image_url[:100])
        return JSONResponse(content={"error": "Timeout ao buscar imagem do Storage"}, status_code=504)
    except requests.exceptions.RequestException as exc:
        logger.error("Erro ao buscar imagem %s: %s", image_url[:100], exc)
        return JSONResponse(
            content={"error": "Erro interno do servidor ao processar imagem", "details": str(exc)},
            status_code=500,
        )

    if not upstream.ok:
        logger.error("Storage respondeu %s para %s", upstream.status_code, image_url[:100])
        return JSONResponse(
            content={"error": f"Erro ao buscar imagem: {upstream.status_code} {upstream.reason}"},
            status_code=upstream.status_code,
        )

    content = upstream.content
    original_type = upstream.headers.get("Content-Type", "")
    if original_type.startswith("image/"):
        content_type = original_type
    elif original_type in ("", "application/octet-stream", "binary/octet-stream"):
        detected = detect_media_type(content)
        content_type = detected.mime_type if detected else "image/jpeg"
    else:
        content_type = original_type

    logger.info(
        "Imagem servida via proxy: %s bytes, tipo=%s (original=%s) em %.0fms",
        len(content),
        content_type,
        original_type or "-",
        (time.time() - started) * 1000,
    )
    return Response(
        content=content,
        media_type=content_type,
        headers={**CORS_HEADERS, "Cache-Control": "public, max-age=3600"},
    )


@router.options("/api/image-proxy")
def image_proxy_preflight():
    return Response(status_code=200, headers={**CORS_HEADERS, "Access-Control-Max-Age": "86400"})


@router.get("/health")
def health():
    return {"status": "ok"}

import asyncio
import unittest
from unittest import mock

import requests
from fastapi.testclient import TestClient

from crm_media import routes
from crm_media.application import create_app
from crm_media.settings import settings
from crm_media.state import rate_limit_windows, reset_state

FIREBASE_URL = (
    "https://firebasestorage.googleapis.com/v0/b/crm.appspot.com/o/"
    "images%252Floja%252Fa.jpg?alt=media&token=abc"
)
JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 20


def upstream_response(status=200, content=JPEG, content_type="image/jpeg", reason="OK"):
    response = mock.MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    response.content = content
    response.headers = {"Content-Type": content_type} if content_type else {}
    return response


class WebhookRouteTest(unittest.TestCase):
    def setUp(self):
        reset_state()
        self.client = TestClient(create_app())
        patcher = mock.patch.object(
            routes, "process_webhook_event", return_value={"event": "messages.upsert", "saved": 1, "duplicates": 0}
        )
        self.process = patcher.start()
        self.addCleanup(patcher.stop)

    def test_event_is_dispatched(self):
        body = {"event": "MESSAGES_UPSERT", "instance": "loja", "data": {"key": {"id": "A"}}}
        response = self.client.post("/api/webhooks/evolution", json=body)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "processed")
        self.assertEqual(response.json()["saved"], 1)
        self.process.assert_called_once_with("MESSAGES_UPSERT", "loja", {"key": {"id": "A"}})
        self.assertIn("X-RateLimit-Remaining", response.headers)

    def test_event_from_path(self):
        response = self.client.post(
            "/api/webhooks/evolution/messages-upsert", json={"instance": "loja", "data": {}}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.process.call_args[0][0], "messages-upsert")

    def test_missing_event_and_bad_json(self):
        self.assertEqual(
            self.client.post("/api/webhooks/evolution", json={"instance": "loja"}).status_code, 400
        )
        response = self.client.post(
            "/api/webhooks/evolution",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)
        self.process.assert_not_called()

    def test_secret_is_checked(self):
        with mock.patch.object(settings, "webhook_secret", "s3cr3t"):
            denied = self.client.post("/api/webhooks/evolution", json={"event": "call"})
            allowed = self.client.post(
                "/api/webhooks/evolution", json={"event": "call"}, headers={"apikey": "s3cr3t"}
            )
        self.assertEqual(denied.status_code, 401)
        self.assertEqual(allowed.status_code, 200)

    def test_rate_limit_per_instance(self):
        with mock.patch.object(settings, "webhook_rate_limit", 2):
            codes = [
                self.client.post("/api/webhooks/evolution", json={"event": "call", "instance": "a"}).status_code
                for _ in range(3)
            ]
            other = self.client.post("/api/webhooks/evolution", json={"event": "call", "instance": "b"})
            blocked = self.client.post("/api/webhooks/evolution", json={"event": "call", "instance": "a"})

        self.assertEqual(codes, [200, 200, 429])
        self.assertEqual(other.status_code, 200)
        self.assertEqual(blocked.headers["Retry-After"], "60")

    def test_processing_runs_off_the_event_loop(self):
        def no_running_loop(*_args):
            with self.assertRaises(RuntimeError):
                asyncio.get_running_loop()
            return {"event": "messages.upsert", "saved": 0, "duplicates": 0}

        self.process.side_effect = no_running_loop
        response = self.client.post("/api/webhooks/evolution", json={"event": "MESSAGES_UPSERT"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"status": "processed", "event": "messages.upsert", "saved": 0, "duplicates": 0},
        )
        self.process.assert_called_once_with("MESSAGES_UPSERT", "default", {})
        self.assertEqual(list(rate_limit_windows), ["default"])

    def test_processing_error_returns_500(self):
        self.process.side_effect = RuntimeError("firestore fora do ar")
        response = self.client.post("/api/webhooks/evolution", json={"event": "MESSAGES_UPSERT"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Internal server error", "event": "messages.upsert"})


class ImageProxyRouteTest(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        patcher = mock.patch.object(routes.requests, "get")
        self.get = patcher.start()
        self.addCleanup(patcher.stop)

    def test_requires_firebase_url(self):
        self.assertEqual(self.client.get("/api/image-proxy").status_code, 400)
        response = self.client.get("/api/image-proxy", params={"url": "https://evil.example.com/a.jpg"})
        self.assertEqual(response.status_code, 403)
        self.get.assert_not_called()

    def test_fixes_double_encoding_and_serves_bytes(self):
        self.get.return_value = upstream_response()
        response = self.client.get("/api/image-proxy", params={"url": FIREBASE_URL})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, JPEG)
        self.assertEqual(response.headers["content-type"], "image/jpeg")
        self.assertEqual(response.headers["cache-control"], "public, max-age=3600")
        self.assertEqual(response.headers["access-control-allow-origin"], "*")
        requested = self.get.call_args[0][0]
        self.assertIn("images%2Floja%2Fa.jpg", requested)
        self.assertNotIn("%252F", requested)
        self.assertEqual(self.get.call_args[1]["timeout"], 15)

    def test_octet_stream_is_sniffed(self):
        png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
        self.get.return_value = upstream_response(content=png, content_type="application/octet-stream")
        response = self.client.get("/api/image-proxy", params={"url": FIREBASE_URL})
        self.assertEqual(response.headers["content-type"], "image/png")

    def test_unknown_bytes_default_to_jpeg(self):
        self.get.return_value = upstream_response(content=b"\x00\x01\x02\x03", content_type="")
        response = self.client.get("/api/image-proxy", params={"url": FIREBASE_URL})
        self.assertEqual(response.headers["content-type"], "image/jpeg")

    def test_upstream_error_status_is_propagated(self):
        self.get.return_value = upstream_response(status=404, content=b"", reason="Not Found")
        response = self.client.get("/api/image-proxy", params={"url": FIREBASE_URL})
        self.assertEqual(response.status_code, 404)
        self.assertIn("404", response.json()["error"])

    def test_timeout_returns_504(self):
        self.get.side_effect = requests.exceptions.Timeout()
        response = self.client.get("/api/image-proxy", params={"url": FIREBASE_URL})
        self.assertEqual(response.status_code, 504)

    def test_preflight(self):
        response = self.client.options("/api/image-proxy")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["access-control-max-age"], "86400")


class HealthRouteTest(unittest.TestCase):
    def test_health(self):
        response = TestClient(create_app()).get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()

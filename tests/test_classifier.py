import unittest

from crm_media.classifier import detect_content_type, placeholder_for, url_extension

FIREBASE = "https://firebasestorage.googleapis.com/v0/b/crm.appspot.com/o"


class DetectContentTypeTest(unittest.TestCase):
    def test_empty_and_non_string_are_text(self):
        self.assertEqual(detect_content_type(""), "text")
        self.assertEqual(detect_content_type(None), "text")
        self.assertEqual(detect_content_type(123), "text")

    def test_data_uri_prefixes(self):
        cases = {
            "data:image/webp;base64,UklGR": "sticker",
            "data:image/png;base64,iVBOR": "image",
            "data:image/jpeg;base64,/9j/4A": "image",
            "data:video/mp4;base64,AAAA": "video",
            "data:audio/ogg;base64,T2dn": "audio",
        }
        for content, kind in cases.items():
            with self.subTest(content=content):
                self.assertEqual(detect_content_type(content), kind)

    def test_firebase_storage_paths(self):
        self.assertEqual(detect_content_type(f"{FIREBASE}/clip.mp4?alt=media"), "video")
        self.assertEqual(detect_content_type(f"{FIREBASE}/x/videos/a"), "video")
        self.assertEqual(detect_content_type(f"{FIREBASE}/x/stickers/a"), "sticker")
        self.assertEqual(detect_content_type(f"{FIREBASE}/x/audios/a"), "audio")
        self.assertEqual(detect_content_type(f"{FIREBASE}/x/documents/a"), "document")
        self.assertEqual(detect_content_type(f"{FIREBASE}/x/a.ogg?alt=media"), "audio")
        self.assertEqual(detect_content_type(f"{FIREBASE}/x/photo?alt=media"), "image")

    def test_minio_paths(self):
        self.assertEqual(detect_content_type("http://localhost:9000/bucket/audios/x/a.m4a"), "audio")
        self.assertEqual(detect_content_type("https://minio.example.com/b/a.aac"), "audio")
        self.assertEqual(detect_content_type("/api/minio-proxy?objectName=a.pdf"), "document")
        self.assertEqual(detect_content_type("https://minio.example.com/b/images/x/a"), "image")

    def test_whatsapp_cdn_is_image(self):
        url = "https://mmg.whatsapp.net/v/t62.7118-24/123.enc?ccb=11-4&oh=x"
        self.assertEqual(detect_content_type(url), "image")

    def test_http_extension_tables(self):
        cases = {
            "https://cdn.example.com/a.webp": "sticker",
            "https://cdn.example.com/a.JPG": "image",
            "https://cdn.example.com/a.png?x=1": "image",
            "https://cdn.example.com/a.3gp": "video",
            "https://cdn.example.com/a.opus": "audio",
            "https://cdn.example.com/a.xlsx": "document",
            "https://cdn.example.com/download": "document",
        }
        for content, kind in cases.items():
            with self.subTest(content=content):
                self.assertEqual(detect_content_type(content), kind)

    def test_placeholders(self):
        self.assertEqual(detect_content_type("[Imagem]"), "image")
        self.assertEqual(detect_content_type("📷 foto da fachada"), "image")
        self.assertEqual(detect_content_type("[Vídeo]"), "video")
        self.assertEqual(detect_content_type("[Sticker]"), "sticker")
        self.assertEqual(detect_content_type("🎵 Áudio"), "audio")
        self.assertEqual(detect_content_type("[📄 contrato.pdf]"), "document")
        self.assertEqual(detect_content_type("[Documento]"), "document")

    def test_long_string_without_whitespace_is_image(self):
        self.assertEqual(detect_content_type("/9j/" + "A" * 200), "image")
        self.assertEqual(detect_content_type("A" * 100), "text")

    def test_plain_text(self):
        self.assertEqual(detect_content_type("Olá, tudo bem?"), "text")
        self.assertEqual(detect_content_type("palavra " * 30), "text")


class HelpersTest(unittest.TestCase):
    def test_placeholder_for(self):
        self.assertEqual(placeholder_for("image"), "[Imagem]")
        self.assertEqual(placeholder_for("audio"), "[Áudio]")
        self.assertEqual(placeholder_for("text"), "[Mídia]")

    def test_url_extension_strips_query(self):
        self.assertEqual(url_extension("https://a.com/b/c.MP4?token=1.2"), "mp4")


if __name__ == "__main__":
    unittest.main()

import unittest

from crm_media.media_urls import (
    fix_malformed_url,
    is_encrypted_whatsapp_url,
    is_valid_media_url,
)

BROKEN = (
    "https://firebasestorage.googleapis.com/v0/b/crm.appspot.com/o/"
    "images%252Finst%252F2024%252Fphoto.jpg?alt=media&token=abc"
)
FIXED = (
    "https://firebasestorage.googleapis.com/v0/b/crm.appspot.com/o/"
    "images%2Finst%2F2024%2Fphoto.jpg?alt=media&token=abc"
)
ENC_URL = "https://mmg.whatsapp.net/v/t62.7118-24/31_n.enc?ccb=11-4&oh=01&oe=6"


class FixMalformedUrlTest(unittest.TestCase):
    def test_double_encoded_path_is_repaired(self):
        self.assertEqual(fix_malformed_url(BROKEN), FIXED)

    def test_idempotent(self):
        once = fix_malformed_url(BROKEN)
        self.assertEqual(fix_malformed_url(once), once)
        self.assertEqual(fix_malformed_url(FIXED), FIXED)

    def test_non_firebase_urls_untouched(self):
        for value in (
            "https://example.com/o/images%252Fphoto.jpg",
            "http://localhost:9000/bucket/images%252Fa.jpg",
            ENC_URL,
            "texto qualquer",
        ):
            with self.subTest(value=value):
                self.assertEqual(fix_malformed_url(value), value)

    def test_double_encoding_only_in_query_is_left_alone(self):
        url = "https://firebasestorage.googleapis.com/v0/b/x/o/a.jpg?next=%252F"
        self.assertEqual(fix_malformed_url(url), url)

    def test_never_raises_on_odd_input(self):
        self.assertIsNone(fix_malformed_url(None))
        self.assertEqual(fix_malformed_url(""), "")
        weird = "http://[firebasestorage.googleapis.com/%252F"
        self.assertEqual(fix_malformed_url(weird), weird)


class UrlPredicatesTest(unittest.TestCase):
    def test_encrypted_whatsapp_url(self):
        self.assertTrue(is_encrypted_whatsapp_url(ENC_URL))
        self.assertFalse(is_encrypted_whatsapp_url("https://example.com/file.enc?x=1"))
        self.assertTrue(is_encrypted_whatsapp_url("https://mmg.whatsapp.net/d/f/abc.enc"))
        self.assertFalse(is_encrypted_whatsapp_url("https://cdn.encora.com/a.jpg"))
        self.assertFalse(is_encrypted_whatsapp_url("https://mmg.whatsapp.net/d/photo.encoded.jpg"))
        self.assertFalse(is_encrypted_whatsapp_url(None))

    def test_valid_media_url(self):
        self.assertTrue(is_valid_media_url("data:image/png;base64,AAAA"))
        self.assertTrue(is_valid_media_url("https://cdn.example.com/a.jpg"))
        self.assertFalse(is_valid_media_url(ENC_URL))
        self.assertTrue(is_valid_media_url("https://cdn.encora.com/files/photo.encoded.jpg"))
        self.assertFalse(is_valid_media_url("ftp://example.com/a.jpg"))
        self.assertFalse(is_valid_media_url("[Imagem]"))
        self.assertFalse(is_valid_media_url(""))


if __name__ == "__main__":
    unittest.main()

import unittest

from sitemirror.crawler.sniff import base_type, detect_content_type, extension_for


class TestDetectContentType(unittest.TestCase):

    def test_html(self):
        self.assertEqual(detect_content_type(b"<!DOCTYPE html><html></html>"), "text/html; charset=utf-8")
        self.assertEqual(detect_content_type(b"\n  <!doctype HTML>"), "text/html; charset=utf-8")
        self.assertEqual(detect_content_type(b"<p>hello</p>"), "text/html; charset=utf-8")

    def test_tag_must_be_terminated(self):
        # "<pre" is not "<p" followed by a space or '>'
        self.assertEqual(detect_content_type(b"<pre>x</pre>"), "text/plain; charset=utf-8")

    def test_xml(self):
        self.assertEqual(detect_content_type(b'<?xml version="1.0"?><urlset/>'), "text/xml; charset=utf-8")

    def test_images(self):
        self.assertEqual(detect_content_type(b"\x89PNG\r\n\x1a\n" + b"\x00" * 8), "image/png")
        self.assertEqual(detect_content_type(b"GIF89a\x01\x00"), "image/gif")
        self.assertEqual(detect_content_type(b"\xff\xd8\xff\xe0"), "image/jpeg")
        self.assertEqual(detect_content_type(b"RIFF\x00\x00\x00\x00WEBPVP8 "), "image/webp")

    def test_ogg_and_fonts(self):
        self.assertEqual(detect_content_type(b"OggS\x00\x02"), "application/ogg")
        self.assertEqual(detect_content_type(b"wOF2\x00\x01"), "font/woff2")

    def test_plain_text_and_binary(self):
        self.assertEqual(detect_content_type(b"body { color: red }"), "text/plain; charset=utf-8")
        self.assertEqual(detect_content_type(b""), "text/plain; charset=utf-8")
        self.assertEqual(detect_content_type(b"\x02\x03binary"), "application/octet-stream")

    def test_only_leading_bytes_are_read(self):
        body = b"a" * 600 + b"\x00"
        self.assertEqual(detect_content_type(body), "text/plain; charset=utf-8")


class TestExtensions(unittest.TestCase):

    def test_base_type(self):
        self.assertEqual(base_type("Text/HTML; charset=utf-8"), "text/html")

    def test_extension_for(self):
        self.assertEqual(extension_for("text/html; charset=utf-8"), ".html")
        self.assertEqual(extension_for("text/plain; charset=utf-8"), ".txt")
        self.assertEqual(extension_for("image/png"), ".png")
        self.assertEqual(extension_for("application/x-no-such-type"), ".html")


if __name__ == "__main__":
    unittest.main()

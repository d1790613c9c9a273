import os
import unittest

from sitemirror.utils.config import Config, ConfigManager, load_config, validate_config
from tests.fakes import TempDirMixin


class TestConfig(TempDirMixin, unittest.TestCase):

    def write(self, text):
        path = os.path.join(self.make_tempdir(), "config.yaml")
        with open(path, "w") as f:
            f.write(text)
        return path

    def test_defaults(self):
        config = Config()
        self.assertEqual(config.crawler.max_concurrent_requests, 20)
        self.assertEqual(config.crawler.max_retries, 3)
        self.assertIsNone(config.crawler.output_root)
        self.assertFalse(config.monitoring.metrics_enabled)
        validate_config(config)

    def test_partial_file_keeps_defaults(self):
        config = load_config(self.write("crawler:\n  max_retries: 5\nlogging:\n  json: true\n"))
        self.assertEqual(config.crawler.max_retries, 5)
        self.assertEqual(config.crawler.max_url_length, 1000)
        self.assertTrue(config.logging.json)
        self.assertEqual(config.monitoring.prometheus_port, 8000)

    def test_empty_file(self):
        config = load_config(self.write(""))
        self.assertEqual(config, Config())

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            load_config(self.write("crawler:\n  max_concurrent_requests: 0\n"))
        with self.assertRaises(ValueError):
            load_config(self.write("crawler:\n  max_retries: -1\n"))
        with self.assertRaises(ValueError):
            load_config(self.write("logging:\n  level: LOUD\n"))

    def test_malformed_yaml(self):
        with self.assertRaises(ValueError):
            load_config(self.write("crawler: [max_retries: 5\n"))

    def test_top_level_must_be_a_mapping(self):
        with self.assertRaises(ValueError):
            load_config(self.write("- crawler\n- logging\n"))

    def test_unknown_key(self):
        with self.assertRaises(TypeError):
            load_config(self.write("crawler:\n  no_such_option: 1\n"))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config(os.path.join(self.make_tempdir(), "missing.yaml"))

    def test_manager_requires_load(self):
        manager = ConfigManager(self.write("{}"))
        with self.assertRaises(ValueError):
            manager.config
        manager.load_config()
        self.assertEqual(manager.config, Config())

    def test_shipped_config_is_valid(self):
        shipped = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.yaml")
        config = load_config(shipped)
        self.assertGreaterEqual(config.crawler.max_concurrent_requests, 1)


if __name__ == "__main__":
    unittest.main()

"""Tests for settings loading and the data folder layout.

Covers: mtt.core.config, mtt.common.setup
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from mtt.common.setup import ProjectPaths
from mtt.core.config import Settings, load_settings, save_settings


class TestSettings(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.data_dir = Path(self.tmpdir)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def write_settings(self, raw):
        (self.data_dir / "settings.json").write_text(json.dumps(raw), encoding="utf-8")

    def test_defaults_without_file(self):
        settings = load_settings(self.data_dir, environ={})
        self.assertEqual(settings, Settings())
        self.assertEqual(settings.port, 13331)
        self.assertEqual(settings.max_payload_bytes, 1048576)
        self.assertEqual(settings.base_url, "http://127.0.0.1:13331")

    def test_file_values_are_used(self):
        self.write_settings({"port": 8080, "lock_timeout": 2, "refresh_interval_ms": 500})
        settings = load_settings(self.data_dir, environ={})
        self.assertEqual(settings.port, 8080)
        self.assertEqual(settings.lock_timeout, 2.0)
        self.assertEqual(settings.refresh_interval_ms, 500)

    def test_invalid_values_are_defaulted(self):
        """Bad values fall back individually, the rest of the file still applies."""
        self.write_settings({"port": "not a port", "max_payload_bytes": -5, "host": "", "request_timeout": 9})
        settings = load_settings(self.data_dir, environ={})
        self.assertEqual(settings.port, 13331)
        self.assertEqual(settings.max_payload_bytes, 1048576)
        self.assertEqual(settings.host, "127.0.0.1")
        self.assertEqual(settings.request_timeout, 9.0)

    def test_unreadable_file_is_ignored(self):
        (self.data_dir / "settings.json").write_text("{broken", encoding="utf-8")
        self.assertEqual(load_settings(self.data_dir, environ={}), Settings())

    def test_environment_overrides_file(self):
        self.write_settings({"port": 8080})
        self.assertEqual(load_settings(self.data_dir, environ={"PORT": "9090"}).port, 9090)
        self.assertEqual(load_settings(self.data_dir, environ={"MTT_PORT": "7070", "PORT": "9090"}).port, 7070)
        self.assertEqual(load_settings(self.data_dir, environ={"MTT_PORT": "nope"}).port, 8080)

    def test_save_and_load_roundtrip(self):
        settings = Settings(port=4000, notification_ms=2500)
        save_settings(settings, self.data_dir)
        self.assertEqual(load_settings(self.data_dir, environ={}), settings)


class TestProjectPaths(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_explicit_folder_creates_layout(self):
        paths = ProjectPaths.build(Path(self.tmpdir) / "tracker")
        self.assertTrue(paths.data.is_dir())
        self.assertEqual(paths.logs, paths.data / "logs")
        self.assertTrue(paths.snapshots.is_dir())

    def test_environment_folder(self):
        with patch.dict("os.environ", {"MTT_DATA_DIR": self.tmpdir, "DATA_DIR": "/nonexistent"}):
            paths = ProjectPaths.build()
        self.assertEqual(paths.data, Path(self.tmpdir))


if __name__ == "__main__":
    unittest.main()

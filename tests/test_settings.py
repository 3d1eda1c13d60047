from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from markov_brain.settings import load_settings


class LoadSettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.env_path = Path(self._tmp.name) / ".env"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_defaults_without_env_file(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = load_settings(self.env_path)
        self.assertEqual(settings.sqlite_dsn(), "var/markov_brain.sqlite3")
        self.assertEqual(settings.order, 2)
        self.assertEqual(settings.max_iterations, 20)
        self.assertIsNone(settings.max_reply_length)
        self.assertEqual(settings.token_filter, "")
        self.assertIsNone(settings.env_file)

    def test_env_file_values_are_loaded(self) -> None:
        self.env_path.write_text(
            "# comment\n"
            "MARKOV_BRAIN_SQLITE_PATH='/tmp/brain.sqlite3'\n"
            "MARKOV_BRAIN_ORDER=3\n"
            "MARKOV_BRAIN_MAX_REPLY_LENGTH=140\n"
            "MARKOV_BRAIN_TOKEN_FILTER=u@\n"
            "not a pair\n",
            encoding="utf-8",
        )
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = load_settings(self.env_path)
        self.assertEqual(settings.sqlite_path, "/tmp/brain.sqlite3")
        self.assertEqual(settings.order, 3)
        self.assertEqual(settings.max_reply_length, 140)
        self.assertEqual(settings.token_filter, "u@")
        self.assertEqual(settings.env_file, self.env_path)

    def test_environment_overrides_env_file(self) -> None:
        self.env_path.write_text("MARKOV_BRAIN_ORDER=3\n", encoding="utf-8")
        overrides = {"MARKOV_BRAIN_ORDER": "4", "MARKOV_BRAIN_MAX_REPLY_LENGTH": "0"}
        with mock.patch.dict(os.environ, overrides, clear=True):
            settings = load_settings(self.env_path)
        self.assertEqual(settings.order, 4)
        self.assertIsNone(settings.max_reply_length)


if __name__ == "__main__":
    unittest.main()

"""Tests for locale switching."""

from __future__ import annotations

import unittest

from usernotify.i18n import Translator


class TranslatorTests(unittest.TestCase):
    def test_switching_to_active_locale_is_a_no_op(self) -> None:
        translator = Translator("en_US")
        self.assertFalse(translator.switch_to_locale("en_US"))
        self.assertFalse(translator.switch_to_locale(""))
        self.assertIsNone(translator.restore_previous_locale())
        self.assertEqual(translator.current_locale, "en_US")

    def test_locale_scope_restores_after_error(self) -> None:
        translator = Translator("en_US")
        with self.assertRaises(RuntimeError):
            with translator.locale_scope("fr_FR") as active:
                self.assertEqual(active, "fr_FR")
                raise RuntimeError("boom")
        self.assertEqual(translator.current_locale, "en_US")

    def test_missing_catalog_returns_message_unchanged(self) -> None:
        translator = Translator("de_DE")
        self.assertEqual(translator.gettext("<p>Username: %s</p>"), "<p>Username: %s</p>")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

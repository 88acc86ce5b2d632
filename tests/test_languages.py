from __future__ import annotations

import unittest

from languages import (
    SELECTOR_LANGUAGES,
    UNDETERMINED,
    detect_language,
    detector_language_name,
    is_selector_code,
    selector_language_name,
    to_selector_code,
)


class LanguageBridgeTests(unittest.TestCase):
    def test_chinese_variants_bridge_to_one_selector_code(self) -> None:
        self.assertEqual(to_selector_code("zh-cn"), "zh")
        self.assertEqual(to_selector_code("zh-tw"), "zh")

    def test_unmapped_codes_have_no_selector(self) -> None:
        self.assertIsNone(to_selector_code("sw"))
        self.assertIsNone(to_selector_code(UNDETERMINED))

    def test_every_bridged_code_is_selectable(self) -> None:
        for code in ("en", "de", "zh-cn", "tl", "ca"):
            with self.subTest(code=code):
                self.assertTrue(is_selector_code(to_selector_code(code)))

    def test_display_names(self) -> None:
        self.assertEqual(detector_language_name("de"), "German")
        self.assertEqual(detector_language_name("zh-tw"), "Chinese (Traditional)")
        self.assertEqual(detector_language_name("xx"), "XX")
        self.assertEqual(selector_language_name("en"), "English")
        self.assertEqual(len(SELECTOR_LANGUAGES), 40)


class DetectLanguageTests(unittest.TestCase):
    def test_blank_text_is_undetermined(self) -> None:
        self.assertEqual(detect_language("   "), UNDETERMINED)

    def test_text_without_letters_is_undetermined(self) -> None:
        self.assertEqual(detect_language("1234 5678"), UNDETERMINED)

    def test_detects_plain_english(self) -> None:
        self.assertEqual(
            detect_language("The weather is lovely today and we are going for a long walk in the park."),
            "en",
        )

    def test_detects_plain_german(self) -> None:
        self.assertEqual(
            detect_language("Heute ist das Wetter sehr schön und wir gehen zusammen im Park spazieren."),
            "de",
        )


if __name__ == "__main__":
    unittest.main()

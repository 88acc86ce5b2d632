from __future__ import annotations

from typing import Final, Optional

from langdetect import DetectorFactory, detect
from langdetect.lang_detect_exception import LangDetectException

# langdetect samples n-grams randomly; a fixed seed keeps results stable per text.
DetectorFactory.seed = 0

UNDETERMINED: Final[str] = "und"

DETECTOR_LANGUAGE_NAMES: Final[dict[str, str]] = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh-cn": "Chinese (Simplified)",
    "zh-tw": "Chinese (Traditional)",
    "ar": "Arabic",
    "hi": "Hindi",
    "nl": "Dutch",
    "sv": "Swedish",
    "no": "Norwegian",
    "da": "Danish",
    "fi": "Finnish",
    "pl": "Polish",
    "cs": "Czech",
    "hu": "Hungarian",
    "ro": "Romanian",
    "bg": "Bulgarian",
    "hr": "Croatian",
    "sk": "Slovak",
    "sl": "Slovenian",
    "et": "Estonian",
    "lv": "Latvian",
    "lt": "Lithuanian",
    "el": "Greek",
    "tr": "Turkish",
    "he": "Hebrew",
    "th": "Thai",
    "vi": "Vietnamese",
    "id": "Indonesian",
    "tl": "Filipino",
    "uk": "Ukrainian",
    "ca": "Catalan",
    "af": "Afrikaans",
    "sw": "Swahili",
    UNDETERMINED: "Unknown",
}

# Detector vocabulary -> selector vocabulary. Codes missing here never trigger
# auto-translation.
DETECTOR_TO_SELECTOR: Final[dict[str, str]] = {
    "en": "en",
    "es": "es",
    "fr": "fr",
    "de": "de",
    "it": "it",
    "pt": "pt",
    "ru": "ru",
    "ja": "ja",
    "ko": "ko",
    "zh-cn": "zh",
    "zh-tw": "zh",
    "ar": "ar",
    "hi": "hi",
    "nl": "nl",
    "sv": "sv",
    "no": "no",
    "da": "da",
    "fi": "fi",
    "pl": "pl",
    "cs": "cs",
    "hu": "hu",
    "ro": "ro",
    "bg": "bg",
    "hr": "hr",
    "sk": "sk",
    "sl": "sl",
    "et": "et",
    "lv": "lv",
    "lt": "lt",
    "el": "el",
    "tr": "tr",
    "he": "he",
    "th": "th",
    "vi": "vi",
    "id": "id",
    "tl": "tl",
    "uk": "uk",
    "ca": "ca",
}

SELECTOR_LANGUAGES: Final[tuple[tuple[str, str], ...]] = (
    ("en", "English"),
    ("es", "Spanish"),
    ("fr", "French"),
    ("de", "German"),
    ("it", "Italian"),
    ("pt", "Portuguese"),
    ("ru", "Russian"),
    ("ja", "Japanese"),
    ("ko", "Korean"),
    ("zh", "Chinese"),
    ("ar", "Arabic"),
    ("hi", "Hindi"),
    ("nl", "Dutch"),
    ("sv", "Swedish"),
    ("no", "Norwegian"),
    ("da", "Danish"),
    ("fi", "Finnish"),
    ("pl", "Polish"),
    ("cs", "Czech"),
    ("hu", "Hungarian"),
    ("ro", "Romanian"),
    ("bg", "Bulgarian"),
    ("hr", "Croatian"),
    ("sk", "Slovak"),
    ("sl", "Slovenian"),
    ("et", "Estonian"),
    ("lv", "Latvian"),
    ("lt", "Lithuanian"),
    ("el", "Greek"),
    ("tr", "Turkish"),
    ("he", "Hebrew"),
    ("th", "Thai"),
    ("vi", "Vietnamese"),
    ("id", "Indonesian"),
    ("ms", "Malay"),
    ("tl", "Filipino"),
    ("uk", "Ukrainian"),
    ("ca", "Catalan"),
    ("eu", "Basque"),
    ("gl", "Galician"),
)
_SELECTOR_NAMES: Final[dict[str, str]] = dict(SELECTOR_LANGUAGES)


def detect_language(text: str) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        return UNDETERMINED
    try:
        return detect(cleaned).lower()
    except LangDetectException:
        return UNDETERMINED


def detector_language_name(code: str) -> str:
    return DETECTOR_LANGUAGE_NAMES.get(code, code.upper())


def to_selector_code(code: str) -> Optional[str]:
    return DETECTOR_TO_SELECTOR.get(code)


def selector_language_name(code: str) -> str:
    return _SELECTOR_NAMES.get(code, code.upper())


def is_selector_code(code: str) -> bool:
    return code in _SELECTOR_NAMES

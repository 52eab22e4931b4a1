"""Locale value type and script-based language inference.

Locales key both the embedded model catalog and system voice selection.
The script classifier looks at a short prefix of the text to be spoken and
picks a locale and speaking rate for it:

    profile = infer_voice_profile("こんにちは")
    profile.locale  # Locale(language="ja", region=None)
    profile.rate    # 1.5

The classifier is a character-range heuristic, not a language detector.
Japanese ranges are checked before Latin letters so mixed text such as
"iPhoneを使う" is spoken with the Japanese voice.
"""

import locale as _host_locale
import os
from dataclasses import dataclass
from enum import Enum

from assistant_speech.core.logging_system import get_logger

logger = get_logger(__name__)

# Number of leading characters inspected by the classifier
SAMPLE_LENGTH = 100

# Rate multipliers relative to the backend's normal speed
RATE_JAPANESE = 1.5
RATE_LATIN = 1.2
RATE_NEUTRAL = 1.0

# Inclusive code point ranges treated as Japanese script
JAPANESE_RANGES: tuple[tuple[int, int], ...] = (
    (0x3040, 0x309F),  # Hiragana
    (0x30A0, 0x30FF),  # Katakana
    (0x4E00, 0x9FAF),  # CJK unified ideographs (Kanji)
)

LANGUAGE_DISPLAY_NAMES: dict[str, str] = {
    "en": "English",
    "ja": "Japanese",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "zh": "Chinese",
    "ko": "Korean",
}


@dataclass(frozen=True)
class Locale:
    """Language/region tag such as "ja" or "en-US".

    Attributes:
        language: Lower-case ISO 639 language code.
        region: Upper-case region code, or None.
    """

    language: str
    region: str | None = None

    @classmethod
    def parse(cls, tag: "str | Locale") -> "Locale":
        """Parse a locale tag.

        Accepts "en", "en-US", "en_US" and POSIX forms like "en_US.UTF-8".

        Args:
            tag: Tag string, or an existing Locale (returned unchanged).

        Returns:
            Parsed Locale.

        Raises:
            ValueError: If the tag has no language part.
        """
        if isinstance(tag, Locale):
            return tag

        cleaned = tag.strip().split(".", 1)[0].split("@", 1)[0]
        parts = cleaned.replace("_", "-").split("-")
        language = parts[0].lower()
        if not language or not language.isalpha():
            raise ValueError(f"Invalid locale tag: {tag!r}")

        region = parts[1].upper() if len(parts) > 1 and parts[1] else None
        return cls(language=language, region=region)

    @property
    def tag(self) -> str:
        """BCP 47 style tag, e.g. "en-US"."""
        if self.region:
            return f"{self.language}-{self.region}"
        return self.language

    @property
    def display_name(self) -> str:
        """Human readable name, e.g. "English (US)"."""
        name = LANGUAGE_DISPLAY_NAMES.get(self.language, self.language)
        if self.region:
            return f"{name} ({self.region})"
        return name

    def __str__(self) -> str:
        return self.tag


JAPANESE = Locale("ja")
ENGLISH = Locale("en")
US_ENGLISH = Locale("en", "US")


def system_default_locale() -> Locale:
    """Get the host's default locale.

    Falls back to US English when the host locale is unset or "C"/"POSIX".

    Returns:
        Host Locale.
    """
    try:
        host_tag = _host_locale.getlocale()[0]
    except ValueError:
        host_tag = None

    candidates = [
        host_tag,
        os.environ.get("LC_ALL"),
        os.environ.get("LC_MESSAGES"),
        os.environ.get("LANG"),
    ]
    for candidate in candidates:
        if not candidate or candidate.split(".")[0] in ("C", "POSIX"):
            continue
        try:
            return Locale.parse(candidate)
        except ValueError:
            logger.debug("Ignoring unparseable host locale: %s", candidate)
    return US_ENGLISH


class ScriptClass(Enum):
    """Script family detected in a text sample."""

    JAPANESE = "japanese"
    LATIN = "latin"
    OTHER = "other"


def _is_japanese(char: str) -> bool:
    code = ord(char)
    return any(start <= code <= end for start, end in JAPANESE_RANGES)


def _is_latin(char: str) -> bool:
    return ("a" <= char <= "z") or ("A" <= char <= "Z")


def classify_script(text: str) -> ScriptClass:
    """Classify the script of the first SAMPLE_LENGTH characters of text.

    Args:
        text: Text to inspect.

    Returns:
        JAPANESE if any Hiragana/Katakana/Kanji is present, else LATIN if
        any ASCII letter is present, else OTHER.
    """
    sample = text[:SAMPLE_LENGTH]
    if any(_is_japanese(c) for c in sample):
        return ScriptClass.JAPANESE
    if any(_is_latin(c) for c in sample):
        return ScriptClass.LATIN
    return ScriptClass.OTHER


@dataclass(frozen=True)
class VoiceProfile:
    """Locale and rate chosen for a piece of text.

    Attributes:
        locale: Locale the text should be spoken in.
        rate: Rate multiplier (1.0 is the backend's normal speed).
        script: Script class the choice was based on.
    """

    locale: Locale
    rate: float
    script: ScriptClass


def infer_voice_profile(
    text: str,
    locale_hint: Locale | None = None,
    default_locale: Locale | None = None,
) -> VoiceProfile:
    """Choose locale and rate for text.

    Args:
        text: Text to be spoken.
        locale_hint: Caller-supplied locale, used only for text that is
            neither Japanese nor Latin script.
        default_locale: Fallback when no hint is given. Defaults to the
            host locale.

    Returns:
        VoiceProfile for the text.
    """
    script = classify_script(text)
    if script is ScriptClass.JAPANESE:
        return VoiceProfile(locale=JAPANESE, rate=RATE_JAPANESE, script=script)
    if script is ScriptClass.LATIN:
        return VoiceProfile(locale=US_ENGLISH, rate=RATE_LATIN, script=script)

    fallback = locale_hint or default_locale or system_default_locale()
    return VoiceProfile(locale=fallback, rate=RATE_NEUTRAL, script=script)

"""Message catalog for user-facing diagnostic text.

Translations are stored in the package's i18n/{language}.yaml files and
looked up with dot-separated keys:

    translator = Translator("ja")
    translator.translate("diagnostics.tts.voice_data_missing",
                         language="Japanese", engine="espeak")

Missing keys fall back to English, then to the key itself.
"""

from pathlib import Path
from typing import Any

import yaml

from assistant_speech.core.logging_system import get_logger

logger = get_logger(__name__)

SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "ja": "日本語",
}

DEFAULT_LANGUAGE = "en"

I18N_DIR = Path(__file__).resolve().parent.parent / "i18n"


class Translator:
    """Loads message catalogs and resolves keys for one UI language.

    Attributes:
        language: Current language code (e.g., "en", "ja").
    """

    def __init__(self, language: str = DEFAULT_LANGUAGE, i18n_dir: Path | None = None) -> None:
        """Initialize translator.

        Args:
            language: UI language code. Unsupported codes fall back to English.
            i18n_dir: Directory holding {language}.yaml files.
        """
        self._i18n_dir = i18n_dir or I18N_DIR
        self._translations: dict[str, dict[str, Any]] = {}
        self._language = DEFAULT_LANGUAGE
        self._load_translations()
        self.set_language(language)

    @property
    def language(self) -> str:
        """Get current language code."""
        return self._language

    def set_language(self, language: str) -> bool:
        """Set the current language.

        Args:
            language: Language code; region suffixes ("ja-JP") are ignored.

        Returns:
            True if the language is supported and now active.
        """
        code = language.replace("_", "-").split("-")[0].lower()
        if code not in SUPPORTED_LANGUAGES:
            logger.warning("Unsupported UI language: %s", language)
            return False
        self._language = code
        return True

    def _load_translations(self) -> None:
        for lang_code in SUPPORTED_LANGUAGES:
            path = self._i18n_dir / f"{lang_code}.yaml"
            if not path.exists():
                logger.debug("Translation file not found: %s", path)
                continue
            try:
                with open(path, encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error("Failed to load translations for %s: %s", lang_code, e)
                continue
            if data:
                self._translations[lang_code] = data

    def translate(self, key: str, **kwargs: Any) -> str:
        """Translate a key to the current language.

        Args:
            key: Dot-separated key (e.g., "diagnostics.stt.not_found").
            **kwargs: Format arguments for interpolation.

        Returns:
            Translated string, or the key if not found.
        """
        result = self._lookup(key, self._language)
        if result is None and self._language != DEFAULT_LANGUAGE:
            result = self._lookup(key, DEFAULT_LANGUAGE)
        if result is None:
            logger.debug("Translation not found: %s", key)
            return key

        if kwargs:
            try:
                result = result.format(**kwargs)
            except KeyError as e:
                logger.warning("Format key missing in translation %s: %s", key, e)
        return result

    def _lookup(self, key: str, lang_code: str) -> str | None:
        current: Any = self._translations.get(lang_code)
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return None
            current = current[part]
        return current if isinstance(current, str) else None

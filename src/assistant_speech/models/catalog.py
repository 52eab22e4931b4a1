"""Catalog of installable embedded voice models.

Each supported locale maps to a ModelDescriptor naming the files that make
up the model, where to fetch them and which neural voice to use. Locales
without an entry resolve to the default (English) descriptor so that an
embedded voice is always available to try.

The built-in table can be extended or overridden from YAML:

    default: en
    models:
      fr:
        folder: kokoro-fr
        voice: ff_siwis
        lang_code: fr-fr
        files:
          kokoro-v1.0.onnx:
            url: https://example.org/kokoro-v1.0.onnx
            sha256: 1f0e...
          voices-v1.0.bin:
            url: https://example.org/voices-v1.0.bin
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from assistant_speech.core.locales import Locale
from assistant_speech.core.logging_system import get_logger

logger = get_logger(__name__)

KOKORO_RELEASE_URL = "https://github.com/thewh1teagle/kokoro-onnx/releases/download/model-files-v1.0/"
KOKORO_MODEL_FILE = "kokoro-v1.0.onnx"
KOKORO_VOICES_FILE = "voices-v1.0.bin"


class UnsupportedLocale(LookupError):
    """Raised when a locale has no catalog entry and no default exists."""


class CatalogError(ValueError):
    """Raised when a catalog file is malformed."""


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of one installable voice model.

    Attributes:
        locale: Locale the model speaks.
        storage_folder_name: Folder under the models root holding the files.
        required_file_names: Files that must all be present for an install.
        source_urls: File name -> download URL.
        voice: Voice identifier passed to the synthesizer.
        lang_code: Phonemizer language passed to the synthesizer.
        checksums: Optional file name -> expected sha256 hex digest.
    """

    locale: Locale
    storage_folder_name: str
    required_file_names: frozenset[str]
    source_urls: dict[str, str] = field(hash=False)
    voice: str = "af_bella"
    lang_code: str = "en-us"
    checksums: dict[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        missing = self.required_file_names - set(self.source_urls)
        if missing:
            raise CatalogError(
                f"Model {self.storage_folder_name} has no URL for: {', '.join(sorted(missing))}"
            )

    @property
    def model_file(self) -> str:
        """Weights file name (the .onnx file)."""
        for name in sorted(self.required_file_names):
            if name.endswith(".onnx"):
                return name
        return sorted(self.required_file_names)[0]

    @property
    def voices_file(self) -> str:
        """Voice/vocabulary file name (the file that is not the weights)."""
        others = sorted(self.required_file_names - {self.model_file})
        return others[0] if others else self.model_file


def _kokoro_descriptor(locale: Locale, folder: str, voice: str, lang_code: str) -> ModelDescriptor:
    files = (KOKORO_MODEL_FILE, KOKORO_VOICES_FILE)
    return ModelDescriptor(
        locale=locale,
        storage_folder_name=folder,
        required_file_names=frozenset(files),
        source_urls={name: KOKORO_RELEASE_URL + name for name in files},
        voice=voice,
        lang_code=lang_code,
    )


BUILTIN_DESCRIPTORS: dict[str, ModelDescriptor] = {
    "ja": _kokoro_descriptor(Locale("ja"), "kokoro-ja", "jf_alpha", "ja"),
    "en": _kokoro_descriptor(Locale("en"), "kokoro-en", "af_bella", "en-us"),
}

DEFAULT_LANGUAGE = "en"


class ModelCatalog:
    """Locale -> ModelDescriptor lookup with a deterministic default."""

    def __init__(
        self,
        descriptors: dict[str, ModelDescriptor] | None = None,
        default_language: str = DEFAULT_LANGUAGE,
    ) -> None:
        """Initialize catalog.

        Args:
            descriptors: Language code -> descriptor. Defaults to the built-in table.
            default_language: Entry used for unmapped locales.

        Raises:
            UnsupportedLocale: If the default language has no entry.
        """
        self._descriptors = dict(BUILTIN_DESCRIPTORS if descriptors is None else descriptors)
        if default_language not in self._descriptors:
            raise UnsupportedLocale(
                f"Default model language {default_language!r} is not in the catalog"
            )
        self._default_language = default_language

    @property
    def default(self) -> ModelDescriptor:
        """Descriptor used for unmapped locales."""
        return self._descriptors[self._default_language]

    def languages(self) -> list[str]:
        """Language codes with an explicit entry."""
        return sorted(self._descriptors)

    def descriptors(self) -> list[ModelDescriptor]:
        """All descriptors, ordered by language code."""
        return [self._descriptors[lang] for lang in self.languages()]

    def has_entry(self, locale: Locale | str) -> bool:
        """Check whether a locale has its own entry."""
        return Locale.parse(locale).language in self._descriptors

    def descriptor_for(self, locale: Locale | str) -> ModelDescriptor:
        """Resolve the descriptor for a locale.

        Args:
            locale: Locale or tag.

        Returns:
            The locale's descriptor, or the default descriptor if unmapped.
        """
        language = Locale.parse(locale).language
        descriptor = self._descriptors.get(language)
        if descriptor is None:
            logger.debug("No model for %s, using %s", language, self._default_language)
            return self.default
        return descriptor


def _descriptor_from_dict(language: str, data: dict[str, Any]) -> ModelDescriptor:
    files = data.get("files")
    if not isinstance(files, dict) or not files:
        raise CatalogError(f"Model {language!r} must list at least one file")

    urls: dict[str, str] = {}
    checksums: dict[str, str] = {}
    for name, spec in files.items():
        if isinstance(spec, str):
            urls[name] = spec
        elif isinstance(spec, dict) and "url" in spec:
            urls[name] = spec["url"]
            if spec.get("sha256"):
                checksums[name] = str(spec["sha256"]).lower()
        else:
            raise CatalogError(f"Model {language!r} file {name!r} has no url")

    return ModelDescriptor(
        locale=Locale.parse(data.get("locale", language)),
        storage_folder_name=data.get("folder", f"model-{language}"),
        required_file_names=frozenset(urls),
        source_urls=urls,
        voice=data.get("voice", "af_bella"),
        lang_code=data.get("lang_code", language),
        checksums=checksums,
    )


def load_model_catalog(path: Path | str | None = None) -> ModelCatalog:
    """Build the model catalog, applying an optional YAML override file.

    Args:
        path: YAML catalog file. If None or missing, only built-ins are used.

    Returns:
        ModelCatalog instance.

    Raises:
        CatalogError: If the file exists but is malformed.
    """
    descriptors = dict(BUILTIN_DESCRIPTORS)
    default_language = DEFAULT_LANGUAGE

    if path is None:
        return ModelCatalog(descriptors, default_language)

    catalog_path = Path(path).expanduser()
    if not catalog_path.exists():
        logger.warning("Model catalog %s not found, using built-in models", catalog_path)
        return ModelCatalog(descriptors, default_language)

    try:
        with open(catalog_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid model catalog {catalog_path}: {e}") from e

    if not isinstance(data, dict):
        raise CatalogError(f"Model catalog {catalog_path} must be a mapping")

    for language, entry in (data.get("models") or {}).items():
        if not isinstance(entry, dict):
            raise CatalogError(f"Model {language!r} must be a mapping")
        descriptors[str(language).lower()] = _descriptor_from_dict(str(language).lower(), entry)

    default_language = str(data.get("default", default_language)).lower()
    logger.info("Loaded model catalog from %s (%d models)", catalog_path, len(descriptors))
    return ModelCatalog(descriptors, default_language)

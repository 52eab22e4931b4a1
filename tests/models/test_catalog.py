"""Tests for the model catalog."""

from pathlib import Path

import pytest

from assistant_speech.core.locales import Locale
from assistant_speech.models.catalog import (
    BUILTIN_DESCRIPTORS,
    KOKORO_MODEL_FILE,
    KOKORO_VOICES_FILE,
    CatalogError,
    ModelCatalog,
    ModelDescriptor,
    UnsupportedLocale,
    load_model_catalog,
)


class TestModelDescriptor:
    """Tests for ModelDescriptor."""

    def test_builtin_files(self) -> None:
        """Test the built-in Kokoro descriptors."""
        descriptor = BUILTIN_DESCRIPTORS["ja"]
        assert descriptor.storage_folder_name == "kokoro-ja"
        assert descriptor.required_file_names == {KOKORO_MODEL_FILE, KOKORO_VOICES_FILE}
        assert descriptor.model_file == KOKORO_MODEL_FILE
        assert descriptor.voices_file == KOKORO_VOICES_FILE
        assert descriptor.lang_code == "ja"
        assert all(url.startswith("https://") for url in descriptor.source_urls.values())

    def test_every_file_needs_a_url(self) -> None:
        """Test a descriptor without a URL for a required file is rejected."""
        with pytest.raises(CatalogError, match="voices.bin"):
            ModelDescriptor(
                locale=Locale("ja"),
                storage_folder_name="broken",
                required_file_names=frozenset({"model.onnx", "voices.bin"}),
                source_urls={"model.onnx": "https://models.test/model.onnx"},
            )

    def test_descriptors_are_hashable(self) -> None:
        """Test descriptors can be compared and hashed."""
        assert len({BUILTIN_DESCRIPTORS["ja"], BUILTIN_DESCRIPTORS["en"]}) == 2


class TestModelCatalog:
    """Tests for ModelCatalog lookup."""

    def test_known_locale(self) -> None:
        """Test a mapped language resolves to its own entry."""
        catalog = ModelCatalog()
        assert catalog.descriptor_for("ja-JP") is BUILTIN_DESCRIPTORS["ja"]
        assert catalog.has_entry(Locale("ja"))

    def test_unmapped_locale_uses_default(self) -> None:
        """Test unmapped languages resolve to the English entry."""
        catalog = ModelCatalog()
        assert not catalog.has_entry("fr")
        assert catalog.descriptor_for("fr") is catalog.default
        assert catalog.default.storage_folder_name == "kokoro-en"

    def test_languages_sorted(self) -> None:
        """Test entries are listed in a stable order."""
        catalog = ModelCatalog()
        assert catalog.languages() == ["en", "ja"]
        assert [d.storage_folder_name for d in catalog.descriptors()] == ["kokoro-en", "kokoro-ja"]

    def test_default_must_exist(self) -> None:
        """Test a default language without an entry is rejected."""
        with pytest.raises(UnsupportedLocale):
            ModelCatalog({"ja": BUILTIN_DESCRIPTORS["ja"]}, default_language="en")


class TestLoadModelCatalog:
    """Tests for loading catalog overrides from YAML."""

    def test_builtin_only(self) -> None:
        """Test no path gives the built-in table."""
        assert load_model_catalog().languages() == ["en", "ja"]

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing override file is not an error."""
        assert load_model_catalog(tmp_path / "none.yaml").languages() == ["en", "ja"]

    def test_override_adds_language(self, tmp_path: Path) -> None:
        """Test a YAML entry adds a language with checksums."""
        path = tmp_path / "catalog.yaml"
        path.write_text(
            """
default: fr
models:
  fr:
    folder: kokoro-fr
    voice: ff_siwis
    lang_code: fr-fr
    files:
      model.onnx:
        url: https://models.test/fr/model.onnx
        sha256: ABCDEF
      voices.bin: https://models.test/fr/voices.bin
""",
            encoding="utf-8",
        )

        catalog = load_model_catalog(path)

        assert catalog.languages() == ["en", "fr", "ja"]
        descriptor = catalog.descriptor_for("de")
        assert descriptor.storage_folder_name == "kokoro-fr"
        assert descriptor.voice == "ff_siwis"
        assert descriptor.lang_code == "fr-fr"
        assert descriptor.checksums == {"model.onnx": "abcdef"}
        assert descriptor.source_urls["voices.bin"] == "https://models.test/fr/voices.bin"

    def test_override_replaces_builtin(self, tmp_path: Path) -> None:
        """Test a YAML entry replaces a built-in language."""
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "models:\n  ja:\n    folder: custom-ja\n    files:\n      a.onnx: https://models.test/a.onnx\n",
            encoding="utf-8",
        )

        descriptor = load_model_catalog(path).descriptor_for("ja")

        assert descriptor.storage_folder_name == "custom-ja"
        assert descriptor.model_file == "a.onnx"

    def test_entry_without_files(self, tmp_path: Path) -> None:
        """Test entries must list files."""
        path = tmp_path / "catalog.yaml"
        path.write_text("models:\n  fr:\n    folder: kokoro-fr\n", encoding="utf-8")
        with pytest.raises(CatalogError):
            load_model_catalog(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test malformed YAML is reported as a catalog error."""
        path = tmp_path / "catalog.yaml"
        path.write_text("models: [unclosed\n", encoding="utf-8")
        with pytest.raises(CatalogError):
            load_model_catalog(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        """Test a top-level list is rejected."""
        path = tmp_path / "catalog.yaml"
        path.write_text("- ja\n- en\n", encoding="utf-8")
        with pytest.raises(CatalogError):
            load_model_catalog(path)

"""Tests for the on-disk model store."""

from collections.abc import Callable
from pathlib import Path

import pytest

from assistant_speech.models.store import (
    Downloading,
    Failed,
    Installed,
    ModelStore,
    ModelStoreError,
    NotInstalled,
)


class TestInstalledCheck:
    """Tests for is_installed and files_complete."""

    def test_empty_store(self, store: ModelStore) -> None:
        """Test nothing is installed initially."""
        assert not store.is_installed("ja")
        assert store.state_of("ja") == NotInstalled()
        assert store.installed_locales() == []

    def test_complete_folder(self, store: ModelStore, install_model: Callable[[str], Path]) -> None:
        """Test a folder with every file is installed."""
        install_model("ja")
        assert store.is_installed("ja")
        assert store.state_of("ja-JP") == Installed()
        assert [locale.language for locale in store.installed_locales()] == ["ja"]

    def test_missing_file(self, store: ModelStore, install_model: Callable[[str], Path]) -> None:
        """Test a folder missing a file is not installed."""
        folder = install_model("ja")
        (folder / "voices.bin").unlink()
        assert not store.is_installed("ja")

    def test_empty_file(self, store: ModelStore, install_model: Callable[[str], Path]) -> None:
        """Test a zero-byte file is not an install."""
        folder = install_model("ja")
        (folder / "voices.bin").write_bytes(b"")
        assert not store.is_installed("ja")

    def test_extra_file(self, store: ModelStore, install_model: Callable[[str], Path]) -> None:
        """Test leftover partial files make the folder incomplete."""
        folder = install_model("ja")
        (folder / "model.onnx.partial").write_bytes(b"x")
        assert not store.is_installed("ja")

    def test_unmapped_locale_shares_default(
        self, store: ModelStore, install_model: Callable[[str], Path]
    ) -> None:
        """Test an unmapped locale reports the English model."""
        install_model("en")
        assert store.is_installed("fr")
        assert store.model_dir("fr") == store.model_dir("en")
        assert store.lock_for("fr") is store.lock_for("en")
        assert store.lock_for("ja") is not store.lock_for("en")

    def test_removal_outside_process(
        self, store: ModelStore, install_model: Callable[[str], Path]
    ) -> None:
        """Test state follows files deleted behind the store's back."""
        folder = install_model("en")
        assert store.state_of("en") == Installed()
        (folder / "model.onnx").unlink()
        assert store.state_of("en") == NotInstalled()


class TestFilePath:
    """Tests for file_path."""

    def test_known_file(self, store: ModelStore) -> None:
        """Test paths of descriptor files."""
        assert store.file_path("ja", "model.onnx") == store.models_root / "voice-ja" / "model.onnx"

    def test_unknown_file(self, store: ModelStore) -> None:
        """Test files outside the descriptor are rejected."""
        with pytest.raises(KeyError):
            store.file_path("ja", "other.bin")


class TestStateTransitions:
    """Tests for recorded states."""

    def test_downloading_is_reported(self, store: ModelStore) -> None:
        """Test progress is recorded and clamped."""
        store.mark_downloading("ja", 0.5)
        assert store.state_of("ja") == Downloading(progress=0.5)
        store.mark_downloading("ja", 3.0)
        assert store.state_of("ja") == Downloading(progress=1.0)

    def test_failed_is_reported_over_disk(
        self, store: ModelStore, install_model: Callable[[str], Path]
    ) -> None:
        """Test a failed re-download reports Failed while files stay usable."""
        install_model("ja")
        store.mark_failed("ja", "network down")
        assert store.state_of("ja") == Failed("network down")
        assert store.is_installed("ja")

    def test_restore_state(self, store: ModelStore) -> None:
        """Test a captured state can be put back."""
        store.mark_downloading("ja", 0.2)
        store.restore_state("ja", NotInstalled())
        assert store.state_of("ja") == NotInstalled()


class TestInstallFrom:
    """Tests for atomic installation from a staging folder."""

    def _stage(self, store: ModelStore, locale: str, content: bytes = b"new") -> Path:
        staging = store.create_staging_dir(locale)
        for name in store.descriptor_for(locale).required_file_names:
            (staging / name).write_bytes(content)
        return staging

    def test_install(self, store: ModelStore) -> None:
        """Test a complete staging folder becomes the model folder."""
        staging = self._stage(store, "ja")

        store.install_from("ja", staging)

        assert store.is_installed("ja")
        assert store.state_of("ja") == Installed()
        assert not staging.exists()

    def test_replaces_existing(
        self, store: ModelStore, install_model: Callable[[str], Path]
    ) -> None:
        """Test an existing install is replaced and its backup removed."""
        folder = install_model("ja")
        staging = self._stage(store, "ja", b"fresh")

        store.install_from("ja", staging)

        assert (folder / "model.onnx").read_bytes() == b"fresh"
        leftovers = [p.name for p in store.models_root.iterdir() if p.name.startswith(".voice-ja")]
        assert leftovers == []

    def test_incomplete_staging(self, store: ModelStore) -> None:
        """Test incomplete staging folders are refused."""
        staging = store.create_staging_dir("ja")
        (staging / "model.onnx").write_bytes(b"x")

        with pytest.raises(ModelStoreError):
            store.install_from("ja", staging)
        assert not store.is_installed("ja")

    def test_discard_staging(self, store: ModelStore) -> None:
        """Test staging folders can be discarded."""
        staging = self._stage(store, "en")
        store.discard_staging(staging)
        assert not staging.exists()


class TestUninstall:
    """Tests for uninstall."""

    def test_uninstall(self, store: ModelStore, install_model: Callable[[str], Path]) -> None:
        """Test an installed model is removed."""
        folder = install_model("ja")
        assert store.uninstall("ja") is True
        assert not folder.exists()
        assert store.state_of("ja") == NotInstalled()

    def test_uninstall_missing(self, store: ModelStore) -> None:
        """Test removing a missing model reports False."""
        assert store.uninstall("ja") is False

    def test_uninstall_clears_failure(self, store: ModelStore) -> None:
        """Test uninstall resets a failed state."""
        store.mark_failed("ja", "boom")
        store.uninstall("ja")
        assert store.state_of("ja") == NotInstalled()

"""On-disk registry of embedded voice models.

Layout:
    <models_root>/<storage_folder_name>/<required file>...
    <models_root>/.staging/<storage_folder_name>-<id>/   (downloads in flight)

A model folder counts as installed only when it holds exactly the files its
descriptor requires and each of them is non-empty. The check runs on every
read, since files can be removed or truncated outside this process.

Install state is tracked per storage folder: locales that resolve to the
same descriptor (e.g. "fr" falling back to English) share one state and one
lock. Only ModelDownloader drives state transitions, through the mark_* and
install_from methods.
"""

import os
import shutil
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path

from assistant_speech.core.locales import Locale
from assistant_speech.core.logging_system import get_logger
from assistant_speech.models.catalog import ModelCatalog, ModelDescriptor, load_model_catalog
from assistant_speech.settings import SpeechSettings

logger = get_logger(__name__)

STAGING_DIR_NAME = ".staging"


class ModelStoreError(Exception):
    """Raised when a staged model cannot be installed."""


@dataclass(frozen=True)
class ModelInstallState:
    """Base class of the install state variants."""


@dataclass(frozen=True)
class NotInstalled(ModelInstallState):
    """No complete model on disk."""


@dataclass(frozen=True)
class Downloading(ModelInstallState):
    """Download in flight.

    Attributes:
        progress: Fraction of files completed, 0.0 to 1.0.
    """

    progress: float = 0.0


@dataclass(frozen=True)
class Installed(ModelInstallState):
    """All required files present and non-empty."""


@dataclass(frozen=True)
class Failed(ModelInstallState):
    """Last download failed.

    Attributes:
        reason: Human readable failure cause.
    """

    reason: str


class ModelStore:
    """Registry of installable voice models and their install state."""

    def __init__(self, models_root: Path | str, catalog: ModelCatalog | None = None) -> None:
        """Initialize the store.

        Args:
            models_root: Directory holding model folders. Created if missing.
            catalog: Model catalog. Defaults to the built-in table.
        """
        self.models_root = Path(models_root).expanduser()
        self.models_root.mkdir(parents=True, exist_ok=True)
        self.catalog = catalog or ModelCatalog()

        self._guard = threading.Lock()
        self._states: dict[str, ModelInstallState] = {}
        self._locks: dict[str, threading.Lock] = {}

    @classmethod
    def from_settings(cls, settings: SpeechSettings) -> "ModelStore":
        """Create a store from settings (models root and catalog file)."""
        return cls(settings.models_path, load_model_catalog(settings.catalog_path))

    def descriptor_for(self, locale: Locale | str) -> ModelDescriptor:
        """Get the descriptor for a locale, defaulting for unmapped locales."""
        return self.catalog.descriptor_for(locale)

    def model_dir(self, locale: Locale | str) -> Path:
        """Folder holding the locale's model files."""
        return self.models_root / self.descriptor_for(locale).storage_folder_name

    def file_path(self, locale: Locale | str, file_name: str) -> Path:
        """Path of one of the locale's model files.

        Raises:
            KeyError: If file_name is not part of the locale's descriptor.
        """
        descriptor = self.descriptor_for(locale)
        if file_name not in descriptor.required_file_names:
            raise KeyError(f"{file_name} is not part of {descriptor.storage_folder_name}")
        return self.models_root / descriptor.storage_folder_name / file_name

    def lock_for(self, locale: Locale | str) -> threading.Lock:
        """Per-model mutual exclusion lock for writers."""
        key = self.descriptor_for(locale).storage_folder_name
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @staticmethod
    def files_complete(folder: Path, descriptor: ModelDescriptor) -> bool:
        """Check a folder holds exactly the descriptor's files, all non-empty."""
        if not folder.is_dir():
            return False
        try:
            entries = {entry.name: entry for entry in folder.iterdir()}
        except OSError as e:
            logger.warning("Cannot read model folder %s: %s", folder, e)
            return False

        if set(entries) != set(descriptor.required_file_names):
            return False
        try:
            return all(
                entry.is_file() and entry.stat().st_size > 0 for entry in entries.values()
            )
        except OSError:
            return False

    def is_installed(self, locale: Locale | str) -> bool:
        """Check whether a complete model for the locale is on disk."""
        descriptor = self.descriptor_for(locale)
        return self.files_complete(self.models_root / descriptor.storage_folder_name, descriptor)

    def state_of(self, locale: Locale | str) -> ModelInstallState:
        """Get the install state of the locale's model.

        Downloading and Failed are reported as recorded. Otherwise the
        state is derived from the files on disk.
        """
        descriptor = self.descriptor_for(locale)
        key = descriptor.storage_folder_name
        on_disk = self.files_complete(self.models_root / key, descriptor)

        with self._guard:
            recorded = self._states.setdefault(key, NotInstalled())
            if isinstance(recorded, (Downloading, Failed)):
                return recorded
            state: ModelInstallState = Installed() if on_disk else NotInstalled()
            if state != recorded:
                logger.debug("Model %s state on disk is %s", key, type(state).__name__)
            self._states[key] = state
            return state

    def installed_locales(self) -> list[Locale]:
        """Locales of catalog entries whose models are installed."""
        return [d.locale for d in self.catalog.descriptors() if self.is_installed(d.locale)]

    def _set_state(self, locale: Locale | str, state: ModelInstallState) -> None:
        key = self.descriptor_for(locale).storage_folder_name
        with self._guard:
            self._states[key] = state

    def mark_downloading(self, locale: Locale | str, progress: float) -> None:
        """Record download progress (0.0 to 1.0)."""
        self._set_state(locale, Downloading(progress=min(max(progress, 0.0), 1.0)))

    def mark_failed(self, locale: Locale | str, reason: str) -> None:
        """Record a failed download."""
        self._set_state(locale, Failed(reason=reason))

    def restore_state(self, locale: Locale | str, state: ModelInstallState) -> None:
        """Put back a state captured before a cancelled download."""
        self._set_state(locale, state)

    def create_staging_dir(self, locale: Locale | str) -> Path:
        """Create an empty staging folder for a download."""
        descriptor = self.descriptor_for(locale)
        staging = (
            self.models_root
            / STAGING_DIR_NAME
            / f"{descriptor.storage_folder_name}-{uuid.uuid4().hex[:8]}"
        )
        staging.mkdir(parents=True)
        return staging

    def discard_staging(self, staging_dir: Path) -> None:
        """Delete a staging folder and everything in it."""
        shutil.rmtree(staging_dir, ignore_errors=True)
        logger.debug("Discarded staging folder %s", staging_dir)

    def install_from(self, locale: Locale | str, staging_dir: Path) -> None:
        """Atomically replace the locale's model folder with a staged one.

        The staging folder must hold exactly the descriptor's files. Any
        existing install is swapped out only after the new folder is in
        place, then removed.

        Args:
            locale: Locale being installed.
            staging_dir: Completed staging folder (consumed on success).

        Raises:
            ModelStoreError: If the staged files are incomplete or the move fails.
        """
        descriptor = self.descriptor_for(locale)
        if not self.files_complete(staging_dir, descriptor):
            raise ModelStoreError(f"Staged files for {descriptor.storage_folder_name} are incomplete")

        target = self.models_root / descriptor.storage_folder_name
        backup: Path | None = None
        try:
            if target.exists():
                backup = target.with_name(f".{target.name}.old-{uuid.uuid4().hex[:8]}")
                os.replace(target, backup)
            os.replace(staging_dir, target)
        except OSError as e:
            if backup is not None and not target.exists():
                os.replace(backup, target)
            raise ModelStoreError(f"Failed to install {descriptor.storage_folder_name}: {e}") from e

        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)

        self._set_state(locale, Installed())
        logger.info("Installed model %s into %s", descriptor.storage_folder_name, target)

    def uninstall(self, locale: Locale | str) -> bool:
        """Remove the locale's model folder.

        Returns:
            True if a folder was removed.
        """
        target = self.model_dir(locale)
        with self.lock_for(locale):
            existed = target.exists()
            if existed:
                shutil.rmtree(target)
                logger.info("Uninstalled model %s", target.name)
            self._set_state(locale, NotInstalled())
        return existed

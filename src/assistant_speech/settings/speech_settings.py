"""Speech output settings.

This module holds the configuration shared by the model store, the
downloader, the synthesis engine, the playback driver and the
orchestrator. One SpeechSettings object is created by the host
application and passed to each component explicitly.

Settings are stored in the "speech" section of
~/.assistant_speech/settings.json.

Typical usage:
    from assistant_speech.settings import SpeechSettings

    settings = SpeechSettings()
    settings.load()
    settings.update(base_rate_wpm=200)
    settings.save()
"""

import json
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from assistant_speech.core.logging_system import get_logger

logger = get_logger(__name__)

APP_DIR = Path.home() / ".assistant_speech"

# Engines that give the most natural system speech on each platform
PREFERRED_ENGINES: dict[str, str] = {
    "darwin": "nsss",
    "win32": "sapi5",
    "linux": "espeak",
}


def default_preferred_engine() -> str:
    """Get the preferred system speech engine for this platform."""
    return PREFERRED_ENGINES.get(sys.platform, "espeak")


@dataclass
class SpeechSettings:
    """Speech output configuration with JSON persistence.

    Attributes:
        models_root: Directory holding one sub-folder per installed voice model.
        catalog_path: Optional YAML file extending the built-in model catalog.
        preferred_engine: System engine recommended by diagnostics.
        ui_language: Language of diagnostic messages.
        default_locale: Locale tag used when text gives no hint; None uses
            the host locale.
        base_rate_wpm: System engine speaking rate at multiplier 1.0.
        max_workers: Size of the shared background task pool.
        download_timeout: HTTP connect/read timeout in seconds.
        download_chunk_size: Bytes read per chunk while downloading.
        output_device: Audio output device name or index; None for default.
        playback_blocksize: Frames per audio callback.
        log_level: Root log level used by the command-line entry point.
        log_file: Optional rotating log file path.
    """

    models_root: str = str(APP_DIR / "models")
    catalog_path: str | None = None
    preferred_engine: str = field(default_factory=default_preferred_engine)
    ui_language: str = "en"
    default_locale: str | None = None
    base_rate_wpm: int = 180
    max_workers: int = 4
    download_timeout: float = 30.0
    download_chunk_size: int = 65536
    output_device: str | int | None = None
    playback_blocksize: int = 1024
    log_level: str = "INFO"
    log_file: str | None = None
    _settings_path: Path = field(default_factory=lambda: APP_DIR / "settings.json", repr=False)
    _dirty: bool = field(default=False, repr=False)

    @property
    def models_path(self) -> Path:
        """Models root as an expanded Path."""
        return Path(self.models_root).expanduser()

    @property
    def is_dirty(self) -> bool:
        """Check if settings have unsaved changes."""
        return self._dirty

    @classmethod
    def field_names(cls) -> list[str]:
        """Names of the persisted settings."""
        return [f.name for f in fields(cls) if not f.name.startswith("_")]

    def update(self, **changes: Any) -> None:
        """Change one or more settings.

        Args:
            **changes: Setting name -> new value.

        Raises:
            KeyError: If a name is not a known setting.
        """
        known = self.field_names()
        for name, value in changes.items():
            if name not in known:
                raise KeyError(f"Unknown speech setting: {name}")
            setattr(self, name, value)
        if changes:
            self._dirty = True

    def load(self, path: Path | str | None = None) -> bool:
        """Load settings from file.

        Args:
            path: Optional path to settings file.
                 Defaults to ~/.assistant_speech/settings.json.

        Returns:
            True if loaded successfully, False otherwise.
        """
        if path is not None:
            self._settings_path = Path(path)

        if not self._settings_path.exists():
            logger.info("No settings file found, using defaults")
            return False

        try:
            with open(self._settings_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings: %s", e)
            return False

        speech_data = data.get("speech", {}) if isinstance(data, dict) else {}
        known = self.field_names()
        for name, value in speech_data.items():
            if name in known:
                setattr(self, name, value)
            else:
                logger.warning("Ignoring unknown speech setting: %s", name)

        self._dirty = False
        logger.info("Loaded speech settings from %s", self._settings_path)
        return True

    def save(self, path: Path | str | None = None) -> bool:
        """Save settings to file, preserving other sections.

        Args:
            path: Optional path to settings file.

        Returns:
            True if saved successfully, False otherwise.
        """
        if path is not None:
            self._settings_path = Path(path)

        try:
            self._settings_path.parent.mkdir(parents=True, exist_ok=True)

            existing_data: dict[str, Any] = {}
            if self._settings_path.exists():
                with open(self._settings_path, encoding="utf-8") as f:
                    existing_data = json.load(f)

            existing_data["speech"] = self.to_dict()

            with open(self._settings_path, "w", encoding="utf-8") as f:
                json.dump(existing_data, f, indent=2, ensure_ascii=False)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to save settings: %s", e)
            return False

        self._dirty = False
        logger.info("Saved speech settings to %s", self._settings_path)
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {name: getattr(self, name) for name in self.field_names()}

"""Embedded neural speech synthesis using Kokoro ONNX models.

The engine loads the installed model for one locale at a time and turns
text into an AudioClip without touching any audio device:

    engine = SynthesisEngine(store)
    if engine.initialize("ja"):
        clip = engine.generate("こんにちは", speed=1.5)
"""

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from assistant_speech.audio.clip import AudioClip
from assistant_speech.core.locales import Locale
from assistant_speech.core.logging_system import get_logger
from assistant_speech.models.catalog import ModelDescriptor
from assistant_speech.models.store import ModelStore

logger = get_logger(__name__)

# Speed range accepted by Kokoro
MIN_SPEED = 0.5
MAX_SPEED = 2.0

ModelFactory = Callable[[Path, Path], Any]


class SynthesisError(Exception):
    """Base class for embedded synthesis errors."""


class EngineNotInitialized(SynthesisError):
    """Raised when generate() is called before a successful initialize()."""


class SynthesisFailed(SynthesisError):
    """Raised when model inference fails or produces no audio.

    Attributes:
        reason: Description of the failure.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def load_kokoro_model(model_path: Path, voices_path: Path) -> Any:
    """Load a Kokoro ONNX model.

    Args:
        model_path: Path to the .onnx weights file.
        voices_path: Path to the voices file.

    Returns:
        kokoro_onnx.Kokoro instance.
    """
    from kokoro_onnx import Kokoro

    return Kokoro(str(model_path), str(voices_path))


class SynthesisEngine:
    """Wraps one resident neural voice model.

    Attributes:
        loaded_locale: Locale of the resident model, or None.
    """

    def __init__(self, store: ModelStore, model_factory: ModelFactory | None = None) -> None:
        """Initialize the engine (no model loaded yet).

        Args:
            store: Model store to load installed models from.
            model_factory: Callable (model_path, voices_path) -> model with a
                Kokoro-compatible create() method.
        """
        self._store = store
        self._model_factory = model_factory or load_kokoro_model
        self._lock = threading.RLock()
        self._model: Any = None
        self._descriptor: ModelDescriptor | None = None
        self.loaded_locale: Locale | None = None

    @property
    def is_initialized(self) -> bool:
        """Whether a model is resident."""
        return self._model is not None

    def initialize(self, locale: Locale | str) -> bool:
        """Load the installed model for a locale.

        Calling again with a locale that resolves to the resident model is a
        no-op. A different model replaces the resident one; if it cannot be
        loaded the engine is left uninitialized.

        Args:
            locale: Locale to load.

        Returns:
            True if a model for the locale is resident.
        """
        locale = Locale.parse(locale)
        descriptor = self._store.descriptor_for(locale)

        with self._lock:
            if self._model is not None and self._descriptor == descriptor:
                self.loaded_locale = locale
                return True

            self._unload_locked()

            if not self._store.is_installed(locale):
                logger.warning("No installed model for %s", locale)
                return False

            model_path = self._store.file_path(locale, descriptor.model_file)
            voices_path = self._store.file_path(locale, descriptor.voices_file)
            try:
                model = self._model_factory(model_path, voices_path)
            except Exception as e:
                logger.error("Failed to load model %s: %s", descriptor.storage_folder_name, e)
                return False

            self._model = model
            self._descriptor = descriptor
            self.loaded_locale = locale
            logger.info(
                "Synthesis engine initialized for %s (%s)", locale, descriptor.storage_folder_name
            )
            return True

    def generate(self, text: str, speed: float = 1.0) -> AudioClip:
        """Synthesize text with the resident model.

        Args:
            text: Text to speak.
            speed: Rate multiplier, clamped to the model's supported range.

        Returns:
            Mono AudioClip.

        Raises:
            EngineNotInitialized: If no model is resident.
            SynthesisFailed: If inference fails or yields no samples.
        """
        with self._lock:
            if self._model is None or self._descriptor is None:
                raise EngineNotInitialized("initialize() must succeed before generate()")

            descriptor = self._descriptor
            speed = min(max(speed, MIN_SPEED), MAX_SPEED)
            try:
                samples, sample_rate = self._model.create(
                    text,
                    voice=descriptor.voice,
                    speed=speed,
                    lang=descriptor.lang_code,
                )
            except Exception as e:
                raise SynthesisFailed(f"inference error: {e}") from e

        try:
            clip = AudioClip(samples=samples, sample_rate=int(sample_rate))
        except (TypeError, ValueError) as e:
            raise SynthesisFailed(f"invalid model output: {e}") from e

        if clip.is_empty:
            raise SynthesisFailed("model produced an empty waveform")

        logger.debug("Generated %.2fs of audio for: %s", clip.duration, text[:30])
        return clip

    def unload(self) -> None:
        """Drop the resident model."""
        with self._lock:
            self._unload_locked()

    def _unload_locked(self) -> None:
        if self._model is not None and self._descriptor is not None:
            logger.debug("Unloading model %s", self._descriptor.storage_folder_name)
        self._model = None
        self._descriptor = None
        self.loaded_locale = None

"""Host platform speech synthesis (pyttsx3).

The system backend is the fallback path for speech output: it is used when
no embedded model is installed for the text's language, or when the
embedded engine fails. It speaks directly through the platform engine
(NSSpeechSynthesizer, SAPI5 or eSpeak) and also answers the capability
queries made by diagnostics.
"""

import queue
import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from assistant_speech.core.locales import Locale
from assistant_speech.core.logging_system import get_logger

logger = get_logger(__name__)

# pyttsx3 driver used on each platform when none is requested
DEFAULT_DRIVERS: dict[str, str] = {
    "darwin": "nsss",
    "win32": "sapi5",
}

NETWORK_VOICE_MARKERS = ("online", "network", "cloud", "neural2")


class SystemSpeechError(Exception):
    """Raised when the platform speech engine cannot be used."""


@dataclass(frozen=True)
class VoiceInfo:
    """A voice offered by the system engine.

    Attributes:
        id: Engine-specific voice identifier.
        name: Display name.
        languages: Language tags the voice speaks (e.g., "en-us").
        requires_network: Whether synthesis needs a network connection.
    """

    id: str
    name: str
    languages: tuple[str, ...] = ()
    requires_network: bool = False

    def speaks(self, language: str) -> bool:
        """Check whether the voice speaks a language (primary subtag match)."""
        language = language.lower()
        return any(
            tag.replace("_", "-").split("-")[0].lower() == language for tag in self.languages
        )

    @classmethod
    def from_pyttsx3(cls, voice: Any) -> "VoiceInfo":
        """Build from a pyttsx3 Voice object."""
        voice_id = str(getattr(voice, "id", "") or "")
        name = str(getattr(voice, "name", "") or voice_id)

        languages: list[str] = []
        for raw in getattr(voice, "languages", None) or []:
            if isinstance(raw, bytes):
                # eSpeak reports a priority byte followed by the tag
                raw = raw.decode("utf-8", errors="ignore")
            tag = "".join(ch for ch in str(raw) if ch.isprintable()).strip()
            if tag:
                languages.append(tag)

        if not languages:
            # macOS ids look like com.apple.voice.compact.en-US.Samantha
            for part in voice_id.split("."):
                if len(part) == 5 and part[2] in "-_" and part[:2].isalpha():
                    languages.append(part)
                    break

        lowered = f"{voice_id} {name}".lower()
        requires_network = any(marker in lowered for marker in NETWORK_VOICE_MARKERS)
        return cls(
            id=voice_id,
            name=name,
            languages=tuple(languages),
            requires_network=requires_network,
        )


def select_voice(voices: Iterable[VoiceInfo], locale: Locale) -> VoiceInfo | None:
    """Pick the best voice for a locale.

    Preference: an offline voice speaking the language, then any voice
    speaking the language. Returns None when the engine default should be
    kept.
    """
    matching = [v for v in voices if v.speaks(locale.language)]
    for voice in matching:
        if not voice.requires_network:
            return voice
    return matching[0] if matching else None


class SystemSpeechBackend(ABC):
    """Interface of the host speech engine used by the orchestrator."""

    @property
    @abstractmethod
    def engine_name(self) -> str | None:
        """Identity of the active engine, or None if no engine can be started."""

    @abstractmethod
    def list_voices(self) -> list[VoiceInfo]:
        """List installed voices."""

    @abstractmethod
    def set_locale(self, locale: Locale) -> bool:
        """Switch language; returns False if no installed voice speaks it."""

    @abstractmethod
    def set_voice(self, voice_id: str) -> None:
        """Select a voice by id."""

    @abstractmethod
    def set_rate(self, multiplier: float) -> None:
        """Set speaking rate relative to the engine's normal rate."""

    @abstractmethod
    def speak(self, text: str, cancelled: Callable[[], bool] | None = None) -> bool:
        """Speak text, blocking until done.

        Args:
            text: Text to speak.
            cancelled: Checked right before the utterance starts; speech is
                skipped when it returns True.

        Returns:
            False if the utterance was skipped or stopped early.
        """

    @abstractmethod
    def stop(self) -> None:
        """Interrupt speech in progress."""

    def close(self) -> None:
        """Release the engine."""

    def is_language_available(self, locale: Locale) -> bool:
        """Check whether an installed voice speaks the locale's language."""
        try:
            return any(v.speaks(locale.language) for v in self.list_voices())
        except SystemSpeechError as e:
            logger.warning("Cannot list system voices: %s", e)
            return False


class Pyttsx3Backend(SystemSpeechBackend):
    """System speech through pyttsx3.

    Every pyttsx3 call runs on one dedicated engine thread; the platform
    drivers must not be driven from several threads. Queries made while an
    utterance is playing are answered from the voice snapshot taken at the
    last probe, so diagnostics never wait for speech to finish.
    """

    def __init__(
        self,
        base_rate_wpm: int = 180,
        driver_name: str | None = None,
        engine_factory: Callable[[str | None], Any] | None = None,
        query_poll_interval: float = 0.05,
    ) -> None:
        """Initialize the backend (engine thread is started on first use).

        Args:
            base_rate_wpm: Words per minute at rate multiplier 1.0.
            driver_name: pyttsx3 driver ("nsss", "sapi5", "espeak"); None
                for the platform default.
            engine_factory: Callable driver_name -> engine, for pyttsx3.init.
            query_poll_interval: Seconds between checks for speech in
                progress while a query waits for the engine thread.
        """
        self.base_rate_wpm = base_rate_wpm
        self._driver_name = driver_name
        self._engine_factory = engine_factory
        self._query_poll_interval = query_poll_interval

        # Owned by the engine thread
        self._engine: Any = None

        self._engine_label: str | None = None
        self._voices: list[VoiceInfo] = []
        self._locale: Locale | None = None

        self._lock = threading.Lock()
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._closed = False
        self._speaking = threading.Event()
        self._utterance_stop: threading.Event | None = None

    @property
    def engine_name(self) -> str | None:
        """Identity of the engine, probed again on every access."""
        try:
            self._query(self._probe)
        except SystemSpeechError as e:
            logger.debug("No system speech engine: %s", e)
            return None
        return self._engine_label

    @property
    def locale(self) -> Locale | None:
        """Locale last selected with set_locale()."""
        return self._locale

    @property
    def is_speaking(self) -> bool:
        """Whether an utterance is playing."""
        return self._speaking.is_set()

    def list_voices(self) -> list[VoiceInfo]:
        return list(self._query(self._probe))

    def set_locale(self, locale: Locale) -> bool:
        return self._call(self._select_locale, locale)

    def set_voice(self, voice_id: str) -> None:
        self._call(self._set_property, "voice", voice_id)
        logger.debug("System voice: %s", voice_id)

    def set_rate(self, multiplier: float) -> None:
        self._call(self._set_property, "rate", int(round(self.base_rate_wpm * multiplier)))

    def speak(self, text: str, cancelled: Callable[[], bool] | None = None) -> bool:
        return self._call(self._say, text, cancelled)

    def stop(self) -> None:
        with self._lock:
            stop_event = self._utterance_stop
        if stop_event is not None:
            # The engine thread ends the run loop at its next word callback
            stop_event.set()

    def close(self) -> None:
        """Stop speech and end the engine thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        self.stop()
        if thread is not None:
            self._queue.put(None)
            thread.join(timeout=5.0)
        logger.info("System speech backend closed")

    # Calling threads

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise SystemSpeechError("System speech backend is closed")
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._process_loop, name="SystemSpeech", daemon=True
                )
                self._thread.start()
            self._queue.put((fn, args, future))
        return future

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return self._submit(fn, *args).result()

    def _query(self, fn: Callable[[], list[VoiceInfo]]) -> list[VoiceInfo]:
        future = self._submit(fn)
        while True:
            try:
                return future.result(timeout=self._query_poll_interval)
            except TimeoutError:
                if self._speaking.is_set() and self._engine_label is not None:
                    return list(self._voices)

    # Engine thread

    def _process_loop(self) -> None:
        """Run queued engine calls until close()."""
        while True:
            item = self._queue.get()
            if item is None:
                break
            fn, args, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)

    def _ensure_engine(self) -> Any:
        if self._engine is not None:
            return self._engine
        try:
            if self._engine_factory is not None:
                engine = self._engine_factory(self._driver_name)
            else:
                import pyttsx3

                engine = pyttsx3.init(self._driver_name)
            engine.connect("started-utterance", self._on_started_utterance)
            engine.connect("started-word", self._on_started_word)
        except Exception as e:
            raise SystemSpeechError(f"System speech engine unavailable: {e}") from e
        self._engine = engine
        return engine

    def _probe(self) -> list[VoiceInfo]:
        """Start the engine if needed and refresh the voice snapshot."""
        engine = self._ensure_engine()
        try:
            voices = [VoiceInfo.from_pyttsx3(v) for v in engine.getProperty("voices") or []]
        except Exception as e:
            self._engine = None
            self._engine_label = None
            raise SystemSpeechError(f"System speech engine stopped responding: {e}") from e
        self._voices = voices
        self._engine_label = self._driver_name or DEFAULT_DRIVERS.get(sys.platform, "espeak")
        return voices

    def _select_locale(self, locale: Locale) -> bool:
        voice = select_voice(self._probe(), locale)
        if voice is None:
            logger.warning("No system voice speaks %s", locale)
            return False
        self._set_property("voice", voice.id)
        self._locale = locale
        return True

    def _set_property(self, name: str, value: Any) -> None:
        self._ensure_engine().setProperty(name, value)

    def _say(self, text: str, cancelled: Callable[[], bool] | None) -> bool:
        engine = self._ensure_engine()
        if self._engine_label is None:
            self._probe()

        with self._lock:
            # Checked under the lock so a stop() issued before this point is never lost
            if cancelled is not None and cancelled():
                logger.debug("System speech skipped: %s", text[:30])
                return False
            stop_event = threading.Event()
            self._utterance_stop = stop_event
            self._speaking.set()

        try:
            engine.say(text)
            engine.runAndWait()
        except RuntimeError as e:
            raise SystemSpeechError(f"System speech failed: {e}") from e
        finally:
            with self._lock:
                self._utterance_stop = None
                self._speaking.clear()
        return not stop_event.is_set()

    def _on_started_utterance(self, name: Any = None) -> None:
        self._stop_if_requested()

    def _on_started_word(self, name: Any = None, location: int = 0, length: int = 0) -> None:
        self._stop_if_requested()

    def _stop_if_requested(self) -> None:
        stop_event = self._utterance_stop
        if stop_event is not None and stop_event.is_set() and self._engine is not None:
            try:
                self._engine.stop()
            except Exception as e:
                logger.warning("Error stopping system speech: %s", e)

"""Speech output facade for the voice assistant.

This module is the entry point for everything that speaks. It hides
backend choice, voice adaptation and threading from callers:
- The text's script picks locale and speaking rate
- An installed embedded model is preferred; otherwise system speech is used
- Embedded failures fall back to system speech for that request
- A new request preempts the one currently speaking

Typical usage:
    from assistant_speech.audio.speech_output import SpeechOutputOrchestrator

    # At application startup
    speech = SpeechOutputOrchestrator.from_settings(settings)

    # From the chat layer
    future = speech.speak("こんにちは")
    outcome = future.result()

    # From the settings screen
    report = speech.get_diagnostic()
    speech.download_model("ja", on_progress=show, on_complete=done)

    # At shutdown
    speech.shutdown()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from assistant_speech.audio.playback_driver import AudioPlaybackDriver, PlaybackError
from assistant_speech.audio.synthesis_engine import SynthesisEngine, SynthesisError
from assistant_speech.audio.system_backend import (
    Pyttsx3Backend,
    SystemSpeechBackend,
    SystemSpeechError,
)
from assistant_speech.core.locales import US_ENGLISH, Locale, VoiceProfile, infer_voice_profile
from assistant_speech.core.logging_system import get_logger
from assistant_speech.diagnostics.voice_diagnostics import CapabilityDiagnostics, VoiceDiagnostic
from assistant_speech.models.store import ModelStore
from assistant_speech.services.model_downloader import (
    CompleteCallback,
    DownloadHandle,
    ModelDownloader,
    ProgressCallback,
)
from assistant_speech.settings import SpeechSettings

logger = get_logger(__name__)


class SpeechBackendKind(Enum):
    """Backend that produced (or tried to produce) the speech."""

    EMBEDDED = "embedded"
    SYSTEM = "system"
    NONE = "none"


class SpeechStatus(Enum):
    """Final status of one speak() call."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"  # Preempted by a newer request or stop()
    FAILED = "failed"
    SKIPPED = "skipped"  # Nothing to say


@dataclass(frozen=True)
class SpeechRequest:
    """One call to speak()."""

    text: str
    locale_hint: Locale | None = None


@dataclass(frozen=True)
class SpeechOutcome:
    """Result delivered through the future returned by speak().

    Attributes:
        request: The request this outcome belongs to.
        status: How the request ended.
        backend: Backend that spoke (or last tried to).
        profile: Locale and rate chosen for the text.
        error: Failure description, including embedded errors that caused
            a fallback to system speech.
    """

    request: SpeechRequest
    status: SpeechStatus
    backend: SpeechBackendKind = SpeechBackendKind.NONE
    profile: VoiceProfile | None = None
    error: str | None = None


class SpeechOutputOrchestrator:
    """Speech output facade - the only interface callers interact with.

    Thread Safety:
        - speak(), stop(), get_diagnostic() and download_model() can be
          called from any thread
        - speak() work runs on the shared background pool
        - Outcome callbacks run on pool threads
    """

    def __init__(
        self,
        store: ModelStore,
        engine: SynthesisEngine,
        driver: AudioPlaybackDriver,
        system_backend: SystemSpeechBackend,
        diagnostics: CapabilityDiagnostics,
        downloader: ModelDownloader | None = None,
        executor: Executor | None = None,
        default_locale: Locale | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Embedded model store.
            engine: Embedded synthesis engine.
            driver: Audio playback driver for embedded clips.
            system_backend: Host speech engine.
            diagnostics: Capability diagnostics.
            downloader: Model downloader; created on the shared pool if None.
            executor: Shared background pool; a private one is created if None.
            default_locale: Locale for text without a recognizable script
                and no hint. None uses the host locale.
        """
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="SpeechOutput"
        )
        self._store = store
        self._engine = engine
        self._driver = driver
        self._system = system_backend
        self._diagnostics = diagnostics
        self._downloader = downloader or ModelDownloader(store, self._executor)
        self._default_locale = default_locale

        self._lock = threading.Lock()
        self._system_lock = threading.Lock()
        self._generation = 0
        self._is_shutdown = False

    @classmethod
    def from_settings(
        cls,
        settings: SpeechSettings,
        system_backend: SystemSpeechBackend | None = None,
    ) -> SpeechOutputOrchestrator:
        """Build the full speech output stack from settings.

        Args:
            settings: Speech settings.
            system_backend: Host speech engine; pyttsx3 if None.

        Returns:
            Orchestrator owning a shared pool of settings.max_workers threads.
        """
        executor = ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="SpeechOutput"
        )
        store = ModelStore.from_settings(settings)
        backend = system_backend or Pyttsx3Backend(base_rate_wpm=settings.base_rate_wpm)
        orchestrator = cls(
            store=store,
            engine=SynthesisEngine(store),
            driver=AudioPlaybackDriver.from_settings(settings),
            system_backend=backend,
            diagnostics=CapabilityDiagnostics.from_settings(settings, backend),
            downloader=ModelDownloader.from_settings(store, settings, executor),
            executor=executor,
            default_locale=Locale.parse(settings.default_locale) if settings.default_locale else None,
        )
        orchestrator._owns_executor = True
        return orchestrator

    @property
    def store(self) -> ModelStore:
        """Embedded model store."""
        return self._store

    def speak(
        self,
        text: str,
        locale_hint: Locale | str | None = None,
        on_complete: Callable[[SpeechOutcome], None] | None = None,
    ) -> Future[SpeechOutcome]:
        """Speak text asynchronously.

        Any request still speaking is stopped first.

        Args:
            text: Text to speak.
            locale_hint: Locale to use when the text's script is not
                recognized.
            on_complete: Called with the outcome when the request ends.

        Returns:
            Future resolving to the SpeechOutcome.

        Raises:
            RuntimeError: If the orchestrator has been shut down.
        """
        if self._is_shutdown:
            raise RuntimeError("SpeechOutputOrchestrator has been shut down")

        hint = Locale.parse(locale_hint) if locale_hint else None
        request = SpeechRequest(text=text, locale_hint=hint)

        if not text or not text.strip():
            future: Future[SpeechOutcome] = Future()
            future.set_result(SpeechOutcome(request=request, status=SpeechStatus.SKIPPED))
            self._attach_callback(future, on_complete)
            return future

        with self._lock:
            self._generation += 1
            generation = self._generation
        self._interrupt()

        future = self._executor.submit(self._run_request, request, generation)
        self._attach_callback(future, on_complete)
        logger.debug("Speech queued: %s", text[:30])
        return future

    def stop(self) -> None:
        """Stop any speech in progress."""
        with self._lock:
            self._generation += 1
        self._interrupt()

    def get_diagnostic(self) -> VoiceDiagnostic:
        """Run a fresh capability check."""
        return self._diagnostics.perform_full_check()

    def is_model_installed(self, locale: Locale | str) -> bool:
        """Check whether an embedded model for the locale is installed."""
        return self._store.is_installed(locale)

    def download_model(
        self,
        locale: Locale | str,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> DownloadHandle:
        """Download (or join the download of) the locale's embedded model."""
        return self._downloader.download(locale, on_progress, on_complete)

    def shutdown(self, wait: bool = True) -> None:
        """Stop speech, cancel downloads and release the pool if owned."""
        if self._is_shutdown:
            return
        self._is_shutdown = True
        logger.info("Shutting down speech output...")
        self.stop()
        self._downloader.cancel_all()
        self._engine.unload()
        self._system.close()
        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    def _interrupt(self) -> None:
        self._driver.stop()
        self._system.stop()

    def _superseded(self, generation: int) -> bool:
        return generation != self._generation

    def _attach_callback(
        self,
        future: Future[SpeechOutcome],
        callback: Callable[[SpeechOutcome], None] | None,
    ) -> None:
        if callback is None:
            return

        def invoke(done: Future[SpeechOutcome]) -> None:
            try:
                callback(done.result())
            except Exception as e:
                logger.error("Speech outcome callback error: %s", e)

        future.add_done_callback(invoke)

    def _run_request(self, request: SpeechRequest, generation: int) -> SpeechOutcome:
        """Worker for one speak() call."""
        profile: VoiceProfile | None = None
        try:
            profile = infer_voice_profile(request.text, request.locale_hint, self._default_locale)
            if self._superseded(generation):
                return SpeechOutcome(request, SpeechStatus.CANCELLED, profile=profile)

            embedded_error: str | None = None
            if self._store.is_installed(profile.locale):
                try:
                    return self._speak_embedded(request, profile, generation)
                except (SynthesisError, PlaybackError) as e:
                    embedded_error = f"{type(e).__name__}: {e}"
                    logger.warning("Embedded speech failed (%s), using system speech", embedded_error)

            return self._speak_system(request, profile, generation, embedded_error)

        except Exception as e:
            logger.exception("Speech request failed")
            return SpeechOutcome(request, SpeechStatus.FAILED, profile=profile, error=str(e))

    def _speak_embedded(
        self,
        request: SpeechRequest,
        profile: VoiceProfile,
        generation: int,
    ) -> SpeechOutcome:
        self._engine.initialize(profile.locale)
        clip = self._engine.generate(request.text, speed=profile.rate)

        with self._lock:
            # Checked under the lock so an older request never preempts a newer one
            if self._superseded(generation):
                return SpeechOutcome(
                    request, SpeechStatus.CANCELLED, SpeechBackendKind.EMBEDDED, profile
                )
            handle = self._driver.play(clip)

        handle.wait()
        status = SpeechStatus.COMPLETED if handle.completed else SpeechStatus.CANCELLED
        logger.debug("Embedded speech %s: %s", status.value, request.text[:30])
        return SpeechOutcome(request, status, SpeechBackendKind.EMBEDDED, profile)

    def _speak_system(
        self,
        request: SpeechRequest,
        profile: VoiceProfile,
        generation: int,
        embedded_error: str | None = None,
    ) -> SpeechOutcome:
        def cancelled() -> bool:
            return self._superseded(generation)

        try:
            # One request drives the engine at a time; a newer one stops it first
            with self._system_lock:
                if cancelled():
                    return SpeechOutcome(
                        request,
                        SpeechStatus.CANCELLED,
                        SpeechBackendKind.SYSTEM,
                        profile,
                        embedded_error,
                    )
                self._apply_system_voice(profile)
                finished = self._system.speak(request.text, cancelled=cancelled)
        except SystemSpeechError as e:
            logger.error("System speech failed: %s", e)
            error = f"{embedded_error}; {e}" if embedded_error else str(e)
            return SpeechOutcome(
                request, SpeechStatus.FAILED, SpeechBackendKind.SYSTEM, profile, error
            )

        status = SpeechStatus.COMPLETED if finished else SpeechStatus.CANCELLED
        return SpeechOutcome(request, status, SpeechBackendKind.SYSTEM, profile, embedded_error)

    def _apply_system_voice(self, profile: VoiceProfile) -> None:
        locale = profile.locale
        if not self._system.set_locale(locale) and locale.language != US_ENGLISH.language:
            logger.info("No system voice for %s, falling back to %s", locale, US_ENGLISH)
            self._system.set_locale(US_ENGLISH)
        self._system.set_rate(profile.rate)

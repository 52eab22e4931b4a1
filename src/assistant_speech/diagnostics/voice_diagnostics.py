"""Speech capability diagnostics.

Checks whether speech recognition and speech synthesis are usable on this
host and explains what to change when they are not. Each check produces a
fresh VoiceDiagnostic snapshot; nothing is cached because engines and
language data can be installed at any time.

Typical usage:
    diagnostics = CapabilityDiagnostics.from_settings(settings, backend)
    report = diagnostics.perform_full_check()
    if report.tts_status is DiagnosticStatus.ERROR:
        for suggestion in report.suggestions:
            print(suggestion.message)
"""

import importlib.util
import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from assistant_speech.audio.system_backend import SystemSpeechBackend
from assistant_speech.core.i18n import Translator
from assistant_speech.core.locales import Locale, system_default_locale
from assistant_speech.core.logging_system import get_logger
from assistant_speech.settings import SpeechSettings

logger = get_logger(__name__)

RECOGNITION_PACKAGE = "faster_whisper"
RECOGNITION_ENGINE_NAME = "faster-whisper"

# Executables that indicate a system engine is installed
ENGINE_BINARIES: dict[str, tuple[str, ...]] = {
    "espeak": ("espeak-ng", "espeak"),
    "nsss": ("say",),
}


class DiagnosticStatus(Enum):
    """Health of one capability."""

    READY = "ready"
    WARNING = "warning"  # Usable, but degraded
    ERROR = "error"  # Not usable


class SettingsTarget(Enum):
    """System settings screen a suggestion points at."""

    TTS_SETTINGS = "tts_settings"
    RECOGNITION_PROVIDER_STORE = "recognition_provider_store"


@dataclass(frozen=True)
class DiagnosticSuggestion:
    """User-actionable remediation step.

    Attributes:
        message: What is wrong and what to do.
        action_label: Label for the action button, if any.
        remediation: Settings target the action opens, if any.
        is_system_setting: Whether the fix happens in system settings.
    """

    message: str
    action_label: str | None = None
    remediation: SettingsTarget | None = None
    is_system_setting: bool = False


@dataclass(frozen=True)
class VoiceDiagnostic:
    """Snapshot of speech capability health."""

    stt_status: DiagnosticStatus
    tts_status: DiagnosticStatus
    stt_engine: str | None = None
    tts_engine: str | None = None
    missing_languages: tuple[str, ...] = ()
    suggestions: tuple[DiagnosticSuggestion, ...] = ()

    @property
    def is_ready(self) -> bool:
        """Whether both capabilities are fully ready."""
        return (
            self.stt_status is DiagnosticStatus.READY
            and self.tts_status is DiagnosticStatus.READY
        )


class SpeechCapabilityProbe(Protocol):
    """Read-only view of the host's speech capabilities."""

    def is_recognition_available(self) -> bool: ...

    def recognition_engine_name(self) -> str | None: ...

    def default_engine(self) -> str | None: ...

    def is_engine_installed(self, engine: str) -> bool: ...

    def is_language_available(self, locale: Locale) -> bool: ...

    def system_locale(self) -> Locale: ...


class HostCapabilityProbe:
    """Probe backed by installed packages, executables and the system backend."""

    def __init__(self, backend: SystemSpeechBackend, default_locale: Locale | None = None) -> None:
        self._backend = backend
        self._default_locale = default_locale

    def is_recognition_available(self) -> bool:
        return importlib.util.find_spec(RECOGNITION_PACKAGE) is not None

    def recognition_engine_name(self) -> str | None:
        return RECOGNITION_ENGINE_NAME if self.is_recognition_available() else None

    def default_engine(self) -> str | None:
        return self._backend.engine_name

    def is_engine_installed(self, engine: str) -> bool:
        if engine == "sapi5":
            return sys.platform == "win32"
        return any(shutil.which(binary) for binary in ENGINE_BINARIES.get(engine, (engine,)))

    def is_language_available(self, locale: Locale) -> bool:
        return self._backend.is_language_available(locale)

    def system_locale(self) -> Locale:
        return self._default_locale or system_default_locale()


@dataclass
class _ComponentCheck:
    status: DiagnosticStatus
    engine: str | None = None
    suggestions: tuple[DiagnosticSuggestion, ...] = ()
    missing_languages: tuple[str, ...] = ()


class CapabilityDiagnostics:
    """Produces VoiceDiagnostic snapshots."""

    def __init__(
        self,
        probe: SpeechCapabilityProbe,
        preferred_engine: str,
        translator: Translator | None = None,
    ) -> None:
        """Initialize diagnostics.

        Args:
            probe: Source of capability facts.
            preferred_engine: Engine recommended for natural speech.
            translator: Message catalog; English if None.
        """
        self._probe = probe
        self._preferred_engine = preferred_engine
        self._t = (translator or Translator()).translate

    @classmethod
    def from_settings(
        cls, settings: SpeechSettings, backend: SystemSpeechBackend
    ) -> "CapabilityDiagnostics":
        """Create diagnostics probing the host through a system backend."""
        default_locale = Locale.parse(settings.default_locale) if settings.default_locale else None
        return cls(
            HostCapabilityProbe(backend, default_locale),
            settings.preferred_engine,
            Translator(settings.ui_language),
        )

    def perform_full_check(self) -> VoiceDiagnostic:
        """Check recognition, then synthesis.

        Returns:
            Fresh diagnostic snapshot. Suggestions list recognition issues
            first, then synthesis issues.
        """
        stt = self._check_stt()
        tts = self._check_tts()

        diagnostic = VoiceDiagnostic(
            stt_status=stt.status,
            tts_status=tts.status,
            stt_engine=stt.engine,
            tts_engine=tts.engine,
            missing_languages=tts.missing_languages,
            suggestions=stt.suggestions + tts.suggestions,
        )
        logger.info(
            "Voice diagnostic: stt=%s tts=%s (%d suggestions)",
            diagnostic.stt_status.value,
            diagnostic.tts_status.value,
            len(diagnostic.suggestions),
        )
        return diagnostic

    def _check_stt(self) -> _ComponentCheck:
        if not self._probe.is_recognition_available():
            return _ComponentCheck(
                status=DiagnosticStatus.ERROR,
                suggestions=(
                    DiagnosticSuggestion(
                        self._t("diagnostics.stt.not_found"),
                        self._t("diagnostics.stt.open_store"),
                        SettingsTarget.RECOGNITION_PROVIDER_STORE,
                    ),
                ),
            )
        return _ComponentCheck(
            status=DiagnosticStatus.READY,
            engine=self._probe.recognition_engine_name() or self._t("diagnostics.system_default"),
        )

    def _check_tts(self) -> _ComponentCheck:
        engine = self._probe.default_engine()
        if engine is None:
            # Tell "installed but not selectable" apart from "not installed"
            if self._probe.is_engine_installed(self._preferred_engine):
                message = self._t("diagnostics.tts.engine_hidden", engine=self._preferred_engine)
            else:
                message = self._t("diagnostics.tts.engine_not_initialized")
            return _ComponentCheck(
                status=DiagnosticStatus.ERROR,
                engine=self._t("diagnostics.engine_unavailable"),
                suggestions=(
                    DiagnosticSuggestion(
                        message,
                        self._t("diagnostics.tts.fix_in_settings"),
                        SettingsTarget.TTS_SETTINGS,
                        is_system_setting=True,
                    ),
                ),
            )

        status = DiagnosticStatus.READY
        suggestions: list[DiagnosticSuggestion] = []
        missing: list[str] = []

        current_locale = self._probe.system_locale()
        if not self._probe.is_language_available(current_locale):
            status = DiagnosticStatus.WARNING
            missing.append(current_locale.display_name)
            suggestions.append(
                DiagnosticSuggestion(
                    self._t(
                        "diagnostics.tts.voice_data_missing",
                        language=current_locale.display_name,
                        engine=engine,
                    ),
                    self._t("diagnostics.tts.manage_data"),
                    SettingsTarget.TTS_SETTINGS,
                )
            )

        if engine != self._preferred_engine:
            suggestions.append(
                DiagnosticSuggestion(
                    self._t(
                        "diagnostics.tts.switch_engine",
                        engine=engine,
                        preferred=self._preferred_engine,
                    ),
                    self._t("diagnostics.tts.select_engine", preferred=self._preferred_engine),
                    SettingsTarget.TTS_SETTINGS,
                )
            )

        return _ComponentCheck(
            status=status,
            engine=engine,
            suggestions=tuple(suggestions),
            missing_languages=tuple(missing),
        )
